from __future__ import annotations

"""Docker Registry HTTP API v2 client for listing repository tags."""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from vmonitor.foundation.common import AsyncCircuitBreaker, CircuitOpenError
from vmonitor.foundation.errors import RegistryError, RegistryNotFound, RegistryUnavailable

from .transport import BreakerRetryTransport

logger = logging.getLogger(__name__)

CLIENT_ID = "vmonitor"
MAX_PAGES = 50

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')
_NEXT_LINK_RE = re.compile(r'<([^>]+)>\s*;\s*rel="?next"?')


@dataclass(frozen=True)
class BearerChallenge:
    realm: str
    service: str | None = None
    scope: str | None = None

    @classmethod
    def parse(cls, header: str) -> "BearerChallenge | None":
        """Parse a ``WWW-Authenticate: Bearer realm=..,service=..,scope=..``."""
        scheme, _, rest = header.strip().partition(" ")
        if scheme.lower() != "bearer":
            return None
        params = dict(_CHALLENGE_PARAM_RE.findall(rest))
        realm = params.get("realm")
        if not realm:
            return None
        return cls(realm=realm, service=params.get("service"), scope=params.get("scope"))


@dataclass
class _Token:
    value: str
    expires_at: float


def next_page_url(current: str, link_header: str | None) -> str | None:
    if not link_header:
        return None
    match = _NEXT_LINK_RE.search(link_header)
    if match is None:
        return None
    return str(httpx.URL(current).join(match.group(1)))


class RegistryClient:
    """List tags of ``(origin, repository)`` pairs.

    Public registries such as Docker Hub answer the first request with a
    bearer challenge; the client fetches an anonymous token from the
    advertised realm and retries once. Tokens are cached per scope until they
    expire. Each origin gets its own circuit breaker so one unreachable
    registry fails fast without affecting the others.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        retries: int = 1,
        scheme: str = "https",
        client: httpx.AsyncClient | None = None,
        breaker_factory: Callable[[], AsyncCircuitBreaker] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timeout = timeout
        self._retries = retries
        self._scheme = scheme
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._breaker_factory = breaker_factory or (
            lambda: AsyncCircuitBreaker(max_failures=5, reset_after=60.0)
        )
        self._transports: Dict[str, BreakerRetryTransport] = {}
        self._tokens: Dict[tuple[str, str | None, str | None], _Token] = {}
        self._clock = clock

    def _transport(self, origin: str) -> BreakerRetryTransport:
        transport = self._transports.get(origin)
        if transport is None:
            transport = BreakerRetryTransport(
                self._client,
                self._breaker_factory(),
                timeout=self._timeout,
                retries=self._retries,
            )
            self._transports[origin] = transport
        return transport

    async def _get(
        self, origin: str, url: str, headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        try:
            return await self._transport(origin).request("GET", url, headers=headers)
        except CircuitOpenError as exc:
            raise RegistryUnavailable(f"circuit open for registry {origin}") from exc
        except httpx.TimeoutException as exc:
            raise RegistryUnavailable(f"registry {origin} timed out") from exc
        except httpx.HTTPError as exc:
            raise RegistryUnavailable(f"registry {origin} unreachable: {exc}") from exc

    async def _token(self, origin: str, challenge: BearerChallenge) -> str:
        key = (challenge.realm, challenge.service, challenge.scope)
        cached = self._tokens.get(key)
        if cached is not None and cached.expires_at > self._clock():
            return cached.value

        params: Dict[str, Any] = {"client_id": CLIENT_ID}
        if challenge.service:
            params["service"] = challenge.service
        if challenge.scope:
            params["scope"] = challenge.scope
        try:
            resp = await self._client.get(challenge.realm, params=params, timeout=self._timeout)
        except httpx.HTTPError as exc:
            raise RegistryUnavailable(f"token endpoint for {origin} unreachable: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise RegistryUnavailable(
                f"token endpoint for {origin} returned HTTP {resp.status_code}",
                status=resp.status_code,
            )
        if resp.status_code >= 400:
            raise RegistryError(
                f"token endpoint for {origin} returned HTTP {resp.status_code}",
                status=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise RegistryError(f"token endpoint for {origin} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise RegistryError(f"token endpoint for {origin} returned no token")
        token = body.get("token") or body.get("access_token")
        if not isinstance(token, str) or not token:
            raise RegistryError(f"token endpoint for {origin} returned no token")
        expires_in = body.get("expires_in", 60)
        try:
            ttl = max(float(expires_in) - 5.0, 0.0)
        except (TypeError, ValueError):
            ttl = 55.0
        self._tokens[key] = _Token(token, self._clock() + ttl)
        return token

    async def list_tags(self, origin: str, repository: str) -> list[str]:
        """Return all tags published for ``repository`` on ``origin``.

        Raises :class:`RegistryNotFound` for unknown repositories,
        :class:`RegistryUnavailable` for network failures, rate limiting and
        server errors, and :class:`RegistryError` for any other rejection.
        """
        url: str | None = f"{self._scheme}://{origin}/v2/{repository}/tags/list"
        headers: Dict[str, str] = {}
        tags: list[str] = []
        authenticated = False
        pages = 0

        while url is not None:
            resp = await self._get(origin, url, headers or None)
            if resp.status_code == 401 and not authenticated:
                challenge = BearerChallenge.parse(resp.headers.get("www-authenticate", ""))
                if challenge is None:
                    raise RegistryError(
                        f"registry {origin} requires unsupported authentication", status=401
                    )
                headers = {"Authorization": f"Bearer {await self._token(origin, challenge)}"}
                authenticated = True
                continue
            self._raise_for_status(origin, repository, resp)
            tags.extend(self._parse_tags(origin, repository, resp))
            pages += 1
            if pages >= MAX_PAGES:
                logger.warning(
                    "Stopping tag listing for %s/%s after %d pages", origin, repository, pages
                )
                break
            url = next_page_url(url, resp.headers.get("link"))
        return tags

    @staticmethod
    def _raise_for_status(origin: str, repository: str, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return
        target = f"{origin}/{repository}"
        if status == 404:
            raise RegistryNotFound(f"repository {target} not found", status=status)
        if status == 429 or status >= 500:
            raise RegistryUnavailable(f"registry returned HTTP {status} for {target}", status=status)
        raise RegistryError(f"registry returned HTTP {status} for {target}", status=status)

    @staticmethod
    def _parse_tags(origin: str, repository: str, resp: httpx.Response) -> list[str]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise RegistryError(f"invalid tag list JSON for {origin}/{repository}") from exc
        if not isinstance(body, dict):
            raise RegistryError(f"unexpected tag list payload for {origin}/{repository}")
        raw_tags = body.get("tags") or []
        if not isinstance(raw_tags, list):
            raise RegistryError(f"unexpected tag list payload for {origin}/{repository}")
        return [tag for tag in raw_tags if isinstance(tag, str)]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["BearerChallenge", "RegistryClient", "next_page_url"]
