"""SIGINT/SIGTERM handling for running servers.

Signal handlers belong to the process, so one dispatcher per event loop
owns them and fans each signal out to every subscribed server.
``shutdown_signals()`` subscribes for the duration of a ``with`` block,
which ``Server.start()`` wraps around its serving tasks. The loop handlers
are installed with the first subscriber and removed after the last one
leaves. Platforms or threads where the loop can't take signal handlers
get a warning and no handler.
"""

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)

SignalCallback = Callable[[signal.Signals], None]

# add_signal_handler raises ValueError off the main thread and
# NotImplementedError on Windows loops.
_UNSUPPORTED = (ValueError, RuntimeError, NotImplementedError)


def install(
    loop: asyncio.AbstractEventLoop, on_signal: SignalCallback
) -> list[signal.Signals]:
    """Route each shutdown signal to on_signal(sig); return the ones that took."""
    installed = []
    for sig in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except _UNSUPPORTED as e:
            logger.warning("Cannot handle %s on this loop: %s", sig.name, e)
            continue
        installed.append(sig)
    logger.debug("Handling %s", ", ".join(sig.name for sig in installed) or "nothing")
    return installed


def uninstall(loop: asyncio.AbstractEventLoop, sigs: list[signal.Signals]) -> None:
    for sig in sigs:
        # A loop that is already closing has dropped its handlers.
        with contextlib.suppress(*_UNSUPPORTED):
            loop.remove_signal_handler(sig)


class SignalDispatcher:
    """Shares one set of loop signal handlers between subscribers."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop
        self.installed: list[signal.Signals] = []
        self._subscribers: list[SignalCallback] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: SignalCallback) -> None:
        if not self._subscribers:
            self.installed = install(self.loop, self.dispatch)
        self._subscribers.append(callback)

    def unsubscribe(self, callback: SignalCallback) -> None:
        self._subscribers.remove(callback)
        if not self._subscribers:
            uninstall(self.loop, self.installed)
            self.installed = []

    def dispatch(self, sig: signal.Signals) -> None:
        for callback in list(self._subscribers):
            try:
                callback(sig)
            except Exception:
                logger.exception("Signal callback failed for %s", sig.name)


_dispatchers: dict[asyncio.AbstractEventLoop, SignalDispatcher] = {}


@contextlib.contextmanager
def shutdown_signals(
    on_signal: SignalCallback,
    loop: asyncio.AbstractEventLoop | None = None,
) -> Iterator[list[signal.Signals]]:
    """Deliver SIGINT and SIGTERM to on_signal inside the block.

    Every block open on the same loop receives every signal.
    """
    if loop is None:
        loop = asyncio.get_running_loop()
    dispatcher = _dispatchers.get(loop)
    if dispatcher is None:
        dispatcher = _dispatchers[loop] = SignalDispatcher(loop)
    dispatcher.subscribe(on_signal)
    try:
        yield dispatcher.installed
    finally:
        dispatcher.unsubscribe(on_signal)
        if not dispatcher:
            del _dispatchers[loop]
