"""Transport ABC — depends only on collector.models."""

from __future__ import annotations

from abc import ABC, abstractmethod

from emcy_telemetry.collector.models import TelemetryBatch


class Transport(ABC):
    """Delivers exactly one batch and reports whether it arrived.

    Implementations must not raise for delivery failures; they log and
    return ``False``. The collector never re-queues a failed batch.
    """

    @abstractmethod
    async def send(self, batch: TelemetryBatch) -> bool: ...
