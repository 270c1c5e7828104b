from __future__ import annotations

import json

import httpx
import pytest

from vmonitor.foundation.errors import SchedulerError
from vmonitor.services.reconciler.nomad_client import NomadClient

BASE = "http://nomad.test:4646"


def _client(handler, **kwargs) -> NomadClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NomadClient(BASE, client=http, retries=0, **kwargs)


@pytest.mark.asyncio
async def test_list_and_read_jobs():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/jobs":
            return httpx.Response(200, json=[{"ID": "web", "Name": "web", "Status": "running"}])
        if request.url.path == "/v1/job/web":
            return httpx.Response(200, json={"ID": "web", "Name": "web", "TaskGroups": []})
        return httpx.Response(404)

    client = _client(handler)
    assert await client.list_jobs() == [{"ID": "web", "Name": "web", "Status": "running"}]
    assert (await client.read_job("web"))["ID"] == "web"


@pytest.mark.asyncio
async def test_namespace_is_sent_and_job_id_quoted():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ID": "a/b", "Name": "a/b"})

    client = _client(handler, namespace="prod")
    await client.read_job("a/b")
    assert seen[0].url.params["namespace"] == "prod"
    assert seen[0].url.raw_path.startswith(b"/v1/job/a%2Fb")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(403),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"not": "a list"}),
    ],
)
async def test_list_jobs_failures_raise_scheduler_error(response):
    client = _client(lambda request: response)
    with pytest.raises(SchedulerError):
        await client.list_jobs()


@pytest.mark.asyncio
async def test_unreachable_agent_raises_scheduler_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(SchedulerError):
        await client.list_jobs()


@pytest.mark.asyncio
async def test_stream_events_skips_heartbeats_and_bad_frames():
    frames = [
        {"Index": 10, "Events": [{"Topic": "Job", "Type": "JobRegistered", "Key": "web"}]},
        {},
        {"Index": 11, "Events": []},
    ]
    body = "\n".join(json.dumps(frame) for frame in frames) + "\n{broken\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/event/stream"
        assert request.url.params["index"] == "7"
        assert request.url.params.get_list("topic") == ["Job"]
        return httpx.Response(200, content=body.encode())

    client = _client(handler)
    received = [frame async for frame in client.stream_events(index=7)]
    assert [frame["Index"] for frame in received] == [10, 11]


@pytest.mark.asyncio
async def test_stream_events_error_status():
    client = _client(lambda request: httpx.Response(503))
    with pytest.raises(SchedulerError):
        async for _ in client.stream_events():
            pass
