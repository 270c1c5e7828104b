"""Shared fixtures for the vmonitor test suite."""

from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry

from vmonitor.foundation.errors import ResolutionError
from vmonitor.services.reconciler.store import DriftStore


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def store() -> DriftStore:
    return DriftStore()


@pytest.fixture
def transient_error() -> ResolutionError:
    return ResolutionError.transient("registry timed out", reason="registry-unavailable")
