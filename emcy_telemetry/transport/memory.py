"""In-memory transport — records batches instead of sending them. Used in unit tests."""

from __future__ import annotations

from typing import Iterable

from emcy_telemetry.collector.models import TelemetryBatch
from emcy_telemetry.transport.interface import Transport


class MemoryTransport(Transport):
    """Keeps every batch it is given.

    ``outcomes`` scripts the return value of successive ``send`` calls;
    once exhausted (or when omitted) every send reports delivered.
    """

    def __init__(self, outcomes: Iterable[bool] | None = None) -> None:
        self.batches: list[TelemetryBatch] = []
        self._outcomes = list(outcomes or [])

    async def send(self, batch: TelemetryBatch) -> bool:
        self.batches.append(batch)
        if self._outcomes:
            return self._outcomes.pop(0)
        return True

    @property
    def call_count(self) -> int:
        return len(self.batches)

    @property
    def invocations(self) -> list:
        return [inv for batch in self.batches for inv in batch.invocations]
