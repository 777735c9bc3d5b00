"""JSONL file-based transport."""

from __future__ import annotations

import logging
from pathlib import Path

from emcy_telemetry.collector.models import TelemetryBatch
from emcy_telemetry.transport.interface import Transport

logger = logging.getLogger(__name__)


class JSONLTransport(Transport):
    """Appends every batch as a single JSON line to ``path``.

    Handy for self-hosted pipelines that tail a file, and for inspecting
    exactly what would have gone over the wire.
    """

    def __init__(self, path: str = "./telemetry/batches.jsonl", debug: bool = False) -> None:
        self._path = Path(path)
        self._debug = debug

    async def send(self, batch: TelemetryBatch) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a") as f:
                f.write(batch.to_json() + "\n")
        except OSError as exc:
            logger.error("[emcy] Failed to write batch to %s: %s", self._path, exc)
            return False

        if self._debug:
            logger.info("[emcy] Wrote %d invocations to %s", len(batch.invocations), self._path)
        return True
