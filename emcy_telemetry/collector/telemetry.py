"""EmcyTelemetry — the collector: queue, flush triggers, and trace wrapper."""

from __future__ import annotations

import asyncio
import logging
import time
import traceback
import uuid
from typing import Any, Awaitable, Callable, TypeVar

from emcy_telemetry.collector.models import (
    InvocationError,
    InvocationMetadata,
    InvocationOutput,
    StatusResult,
    TelemetryBatch,
    TelemetryConfig,
    ToolInvocation,
    TraceOptions,
    utc_timestamp,
)
from emcy_telemetry.lifecycle.interface import TerminationHooks
from emcy_telemetry.lifecycle.process import ProcessTerminationHooks
from emcy_telemetry.transport.http import HttpTransport
from emcy_telemetry.transport.interface import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Result / error normalisation
# ---------------------------------------------------------------------------

def extract_output(result: Any) -> InvocationOutput:
    if isinstance(result, StatusResult):
        return InvocationOutput(status=result.status, body=result.data)
    return InvocationOutput(body=result)


def extract_error(error: Any) -> InvocationError:
    """Normalise whatever was raised into ``{message, code?, stack?}``."""
    if not isinstance(error, BaseException):
        return InvocationError(message=str(error))

    code = getattr(error, "code", None)
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return InvocationError(
        message=str(error) or type(error).__name__,
        code=str(code) if code is not None else None,
        stack=stack,
    )


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class EmcyTelemetry:
    """Public API: ``await telemetry.trace("tool", op)`` / ``telemetry.log(inv)``.

    Invocations accumulate in memory and leave in batches, whichever comes
    first of: the queue reaching ``batch_size``, the periodic timer, or
    ``shutdown()``. All three drain the queue with the same synchronous swap,
    so a record belongs to exactly one batch. A batch the transport fails to
    deliver is dropped, never re-queued.
    """

    def __init__(
        self,
        config: TelemetryConfig,
        transport: Transport | None = None,
        hooks: TerminationHooks | None = None,
    ) -> None:
        self._config = config
        self._transport = transport or HttpTransport(endpoint=config.endpoint, debug=config.debug)
        self._queue: list[ToolInvocation] = []
        self._server_metadata: dict[str, str] = {}
        if config.mcp_server_id:
            self._server_metadata["mcp_server_id"] = config.mcp_server_id

        self._flush_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self._closed = False
        self._stats = {
            "batches_sent": 0,
            "batches_failed": 0,
            "events_sent": 0,
            "events_dropped": 0,
        }

        self._start_flush_timer()

        self._hooks = hooks if hooks is not None else ProcessTerminationHooks()
        self._hooks.on_terminate(self.shutdown)

    @classmethod
    def from_options(
        cls,
        api_key: str,
        endpoint: str | None = None,
        mcp_server_id: str | None = None,
        batch_size: int | None = None,
        flush_interval: float | None = None,
        debug: bool = False,
        *,
        transport: Transport | None = None,
        hooks: TerminationHooks | None = None,
    ) -> EmcyTelemetry:
        options: dict[str, Any] = {"api_key": api_key, "mcp_server_id": mcp_server_id, "debug": debug}
        if endpoint:
            options["endpoint"] = endpoint
        if batch_size is not None:
            options["batch_size"] = batch_size
        if flush_interval is not None:
            options["flush_interval"] = flush_interval
        return cls(TelemetryConfig(**options), transport=transport, hooks=hooks)

    # ------------------------------------------------------------------
    # Caller API
    # ------------------------------------------------------------------

    def set_server_info(self, name: str, version: str) -> None:
        """Stamp ``serverName``/``serverVersion`` on every invocation traced from now on."""
        self._server_metadata["server_name"] = name
        self._server_metadata["server_version"] = version

    async def trace(
        self,
        tool_name: str,
        operation: Callable[[], Awaitable[T]],
        options: TraceOptions | None = None,
    ) -> T:
        """Await ``operation()`` and record it; the result or exception passes through untouched."""
        options = options or TraceOptions()
        invocation_id = str(uuid.uuid4())
        started = time.perf_counter()

        try:
            result = await operation()
        except Exception as exc:
            self.log(ToolInvocation(
                invocation_id=invocation_id,
                tool_name=tool_name,
                timestamp=utc_timestamp(),
                duration=self._elapsed_ms(started),
                success=False,
                input=options.input,
                error=extract_error(exc),
                metadata=self._merge_metadata(options),
            ))
            raise

        self.log(ToolInvocation(
            invocation_id=invocation_id,
            tool_name=tool_name,
            timestamp=utc_timestamp(),
            duration=self._elapsed_ms(started),
            success=True,
            input=options.input,
            output=extract_output(result),
            metadata=self._merge_metadata(options),
        ))
        return result

    def log(self, invocation: ToolInvocation) -> None:
        self._queue.append(invocation)

        if self._config.debug:
            logger.info(
                "[emcy] Logged: %s (%dms, %s)",
                invocation.tool_name, invocation.duration,
                "success" if invocation.success else "error",
            )

        self._start_flush_timer()
        if len(self._queue) >= self._config.batch_size:
            self._schedule_flush()

    async def flush(self) -> bool | None:
        """Send everything queued as one batch.

        Returns ``None`` when there was nothing to send, otherwise whether
        the transport reported delivery.
        """
        self._start_flush_timer()
        batch = self._drain()
        if batch is None:
            return None
        return await self._deliver(batch)

    async def shutdown(self) -> None:
        """Stop the periodic flush, wait for in-flight batches, then flush what is left."""
        self._closed = True
        self._stop_flush_timer()

        loop = asyncio.get_running_loop()
        in_flight = [t for t in self._in_flight if not t.done() and t.get_loop() is loop]
        stranded = [t for t in self._in_flight if not t.done() and t.get_loop() is not loop]
        if stranded:
            # Owned by a loop that stopped or closed; they can never finish here.
            logger.warning("[emcy] Abandoning %d batches left on a stopped event loop", len(stranded))
            self._in_flight.difference_update(stranded)
        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)

        await self.flush()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, "queue_size": self.queue_size, "in_flight": len(self._in_flight)}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drain(self) -> TelemetryBatch | None:
        # Synchronous swap: nothing logged after this line can join this batch.
        if not self._queue:
            return None
        invocations, self._queue = self._queue, []
        return TelemetryBatch(
            api_key=self._config.api_key,
            mcp_server_id=self._config.mcp_server_id,
            timestamp=utc_timestamp(),
            invocations=invocations,
        )

    async def _deliver(self, batch: TelemetryBatch) -> bool:
        count = len(batch.invocations)
        try:
            delivered = await self._transport.send(batch)
        except Exception:
            logger.exception("[emcy] Transport raised while sending %d invocations", count)
            delivered = False

        if delivered:
            self._stats["batches_sent"] += 1
            self._stats["events_sent"] += count
        else:
            self._stats["batches_failed"] += 1
            self._stats["events_dropped"] += count
        return delivered

    def _schedule_flush(self) -> None:
        """Fire-and-forget flush; the drain happens now, the network call later."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("[emcy] No running event loop; %d invocations stay queued", len(self._queue))
            return

        batch = self._drain()
        if batch is None:
            return
        task = loop.create_task(self._deliver(batch))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    def _start_flush_timer(self) -> None:
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # started by the first log/trace/flush made inside a loop

        task = self._flush_task
        if task is not None and not task.done() and task.get_loop() is loop:
            return
        # Missing, finished, or left behind by an earlier loop.
        self._stop_flush_timer()
        self._flush_task = loop.create_task(self._flush_loop())

    def _stop_flush_timer(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is None or task.done():
            return
        # cancel() on a task whose loop is closed raises RuntimeError
        if not task.get_loop().is_closed():
            task.cancel()

    async def _flush_loop(self) -> None:
        # Only the sleep is ever cancelled; sends run as separate in-flight tasks.
        while True:
            await asyncio.sleep(self._config.flush_interval)
            self._schedule_flush()

    def _merge_metadata(self, options: TraceOptions) -> InvocationMetadata:
        per_call = {
            "session_id": options.session_id,
            "agent_id": options.agent_id,
            "user_id": options.user_id,
        }
        merged = {k: v for k, v in per_call.items() if v is not None}
        merged.update(self._server_metadata)
        return InvocationMetadata(**merged)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(0, round((time.perf_counter() - started) * 1000))
