"""Process-level termination hooks: interpreter exit and SIGINT/SIGTERM."""

from __future__ import annotations

import asyncio
import atexit
import logging
import signal
import weakref
from typing import Any

from emcy_telemetry.lifecycle.interface import (
    TerminateCallback,
    TerminationHooks,
    run_callbacks,
)

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class _SignalRelay:
    """The single loop-level handler per signal, shared by every hooks instance on that loop.

    A loop keeps one handler per signal, so instances join the relay instead
    of installing their own. When a signal arrives, every member's callbacks
    run, the dispositions the host had before are put back, and the signal
    is raised again for the host to handle.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop
        self.members: list[ProcessTerminationHooks] = []
        self.previous: dict[signal.Signals, Any] = {}
        self.tasks: set[asyncio.Task] = set()

    def install(self, signals: tuple[signal.Signals, ...]) -> None:
        for sig in signals:
            if sig in self.previous:
                continue
            previous = signal.getsignal(sig)
            try:
                self.loop.add_signal_handler(sig, self.handle, sig)
            except (NotImplementedError, RuntimeError, ValueError) as exc:
                logger.debug("Cannot hook %s: %s", sig.name, exc)
                continue
            self.previous[sig] = previous

    def restore(self) -> None:
        for sig, previous in self.previous.items():
            self.loop.remove_signal_handler(sig)
            # None means the disposition was set outside Python
            signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
        self.previous.clear()

    def handle(self, sig: signal.Signals) -> None:
        logger.info("Received %s, flushing telemetry before exit", sig.name)
        task = self.loop.create_task(self._terminate_then_reraise(sig))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def _terminate_then_reraise(self, sig: signal.Signals) -> None:
        callbacks = [cb for member in self.members for cb in member.callbacks]
        await run_callbacks(callbacks)
        self.restore()
        if _relays.get(self.loop) is self:
            del _relays[self.loop]
        signal.raise_signal(sig)


_relays: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, _SignalRelay] = weakref.WeakKeyDictionary()


def _relay_for(loop: asyncio.AbstractEventLoop) -> _SignalRelay:
    relay = _relays.get(loop)
    if relay is None:
        relay = _relays[loop] = _SignalRelay(loop)
    return relay


class ProcessTerminationHooks(TerminationHooks):
    """Runs callbacks on normal interpreter exit and on termination signals.

    * ``atexit``: callbacks run on a fresh event loop, since the
      application's loop is already closed by then.
    * signals: handled on whichever loop is running when a callback is
      registered (none outside a loop, none on platforms without
      ``add_signal_handler``). After the callbacks finish, the host's
      previous handlers are put back and the signal is raised again, so the
      process reacts the way it would have without us.
    """

    def __init__(self, signals: tuple[signal.Signals, ...] = DEFAULT_SIGNALS) -> None:
        self.callbacks: list[TerminateCallback] = []
        self._signals = signals
        self._atexit_registered = False
        self._relay: _SignalRelay | None = None

    def on_terminate(self, callback: TerminateCallback) -> None:
        self.callbacks.append(callback)
        if not self._atexit_registered:
            atexit.register(self._run_at_exit)
            self._atexit_registered = True
        self._join_signal_relay()

    def _join_signal_relay(self) -> None:
        if not self._signals:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; signal hooks not installed")
            return
        if self._relay is not None and self._relay.loop is loop:
            return

        relay = _relay_for(loop)
        relay.install(self._signals)
        if self not in relay.members:
            relay.members.append(self)
        self._relay = relay

    def _run_at_exit(self) -> None:
        if not self.callbacks:
            return
        try:
            asyncio.run(run_callbacks(list(self.callbacks)))
        except Exception:
            logger.exception("Final telemetry flush at exit failed")
