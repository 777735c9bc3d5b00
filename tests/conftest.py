"""Shared fixtures for emcy_telemetry tests."""

from __future__ import annotations

import asyncio

import pytest

from emcy_telemetry.collector.models import TelemetryBatch, ToolInvocation
from emcy_telemetry.collector.telemetry import EmcyTelemetry
from emcy_telemetry.lifecycle.interface import ManualTerminationHooks
from emcy_telemetry.transport.memory import MemoryTransport


def make_invocation(n: int = 1, **overrides) -> ToolInvocation:
    defaults = dict(
        invocation_id=f"inv-{n}",
        tool_name=f"tool{n}",
        timestamp="2024-01-01T00:00:00.000Z",
        duration=100 * n,
        success=True,
    )
    defaults.update(overrides)
    return ToolInvocation(**defaults)


def make_batch(**overrides) -> TelemetryBatch:
    defaults = dict(
        api_key="test-api-key",
        timestamp="2024-01-01T00:00:00.000Z",
        invocations=[make_invocation()],
    )
    defaults.update(overrides)
    return TelemetryBatch(**defaults)


async def settle() -> None:
    """Give scheduled fire-and-forget tasks a few loop turns to finish."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def hooks():
    return ManualTerminationHooks()


@pytest.fixture
def memory_transport():
    return MemoryTransport()


@pytest.fixture
async def make_telemetry(hooks, memory_transport):
    """Factory for collectors wired to an in-memory transport; shut down after the test."""
    created: list[EmcyTelemetry] = []

    def _make(**options) -> EmcyTelemetry:
        options.setdefault("api_key", "test-key")
        options.setdefault("flush_interval", 60.0)  # keep the timer out of the way
        options.setdefault("transport", memory_transport)
        options.setdefault("hooks", hooks)
        telemetry = EmcyTelemetry.from_options(**options)
        created.append(telemetry)
        return telemetry

    yield _make

    for telemetry in created:
        await telemetry.shutdown()
