"""Server lifecycle state.

This module provides the state machine a server instance moves through
(not started, running, shutting down, stopped), shutdown deadline
tracking, and the in-flight request counter that graceful shutdown
waits on.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from graceserve.errors import ServerStartError

logger = logging.getLogger(__name__)


class ServerState(str, Enum):
    """Lifecycle states of a server instance."""

    NOT_STARTED = "not-started"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


_TRANSITIONS: dict[ServerState, frozenset[ServerState]] = {
    ServerState.NOT_STARTED: frozenset({ServerState.RUNNING}),
    ServerState.RUNNING: frozenset({ServerState.SHUTTING_DOWN, ServerState.STOPPED}),
    ServerState.SHUTTING_DOWN: frozenset({ServerState.STOPPED}),
    ServerState.STOPPED: frozenset(),
}


@dataclass
class DrainState:
    """Graceful shutdown bookkeeping, on the monotonic clock."""

    started: float | None = None
    deadline: float | None = None
    in_flight_at_start: int = 0

    @property
    def active(self) -> bool:
        return self.started is not None

    def remaining(self) -> float:
        """Seconds left before the grace period runs out; inf if not draining."""
        if self.deadline is None:
            return math.inf
        return max(0.0, self.deadline - time.monotonic())


@dataclass
class ServerLifecycle:
    """Lifecycle observable owned by one server instance.

    Only the owning server mutates it. Request accounting is done from
    the request-tracking middleware on the event loop thread, so no
    locking is needed.
    """

    state: ServerState = ServerState.NOT_STARTED
    """Current lifecycle state."""

    start_time: datetime | None = None
    """UTC timestamp when the server started running."""

    drain: DrainState = field(default_factory=DrainState)

    _in_flight: int = field(default=0, init=False, repr=False)
    _idle: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    def __post_init__(self) -> None:
        self._idle.set()

    @property
    def requests_in_flight(self) -> int:
        return self._in_flight

    def can_transition(self, target: ServerState) -> bool:
        return target in _TRANSITIONS[self.state]

    def _transition(self, target: ServerState) -> None:
        if not self.can_transition(target):
            raise RuntimeError(
                f"illegal lifecycle transition {self.state.value} -> {target.value}"
            )
        logger.debug("Lifecycle %s -> %s", self.state.value, target.value)
        self.state = target

    def mark_running(self) -> None:
        """Enter the running state.

        Raises:
            ServerStartError: If the server was already started. A second
                start is reported the same way as a bind failure.
        """
        if not self.can_transition(ServerState.RUNNING):
            raise ServerStartError(
                f"server failed to start: listener unavailable (state "
                f"{self.state.value})"
            )
        self._transition(ServerState.RUNNING)
        self.start_time = datetime.now(timezone.utc)

    def begin_drain(self, timeout: float) -> DrainState:
        """Move to shutting down and start the grace period clock.

        Only the first call sets the deadline; later calls return the
        drain already in progress.
        """
        if not self.drain.active:
            now = time.monotonic()
            self.drain = DrainState(
                started=now,
                deadline=now + timeout,
                in_flight_at_start=self._in_flight,
            )
            if self.state is ServerState.RUNNING:
                self._transition(ServerState.SHUTTING_DOWN)
        return self.drain

    def mark_stopped(self) -> None:
        if self.state is ServerState.STOPPED:
            return
        self._transition(ServerState.STOPPED)

    def request_started(self) -> None:
        self._in_flight += 1
        self._idle.clear()

    def request_finished(self) -> None:
        self._in_flight -= 1
        if self._in_flight <= 0:
            self._in_flight = 0
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until no requests are in flight."""
        await self._idle.wait()
