"""TerminationHooks ABC + a manually fired implementation."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

TerminateCallback = Callable[[], Awaitable[None]]


class TerminationHooks(ABC):
    """Lets the host tell the collector that the process is going away."""

    @abstractmethod
    def on_terminate(self, callback: TerminateCallback) -> None: ...


async def run_callbacks(callbacks: list[TerminateCallback]) -> None:
    """Run every callback concurrently; failures are logged, never raised."""
    results = await asyncio.gather(*(cb() for cb in callbacks), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            logger.error("Termination callback failed: %r", result)


class ManualTerminationHooks(TerminationHooks):
    """Hooks fired explicitly by the host via ``await hooks.terminate()``.

    Use this when something else already owns the process lifecycle
    (an ASGI lifespan handler, a test).
    """

    def __init__(self) -> None:
        self.callbacks: list[TerminateCallback] = []

    def on_terminate(self, callback: TerminateCallback) -> None:
        self.callbacks.append(callback)

    async def terminate(self) -> None:
        await run_callbacks(list(self.callbacks))
