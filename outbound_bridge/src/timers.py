"""
Per-call deadlines: idle warning/hangup and max-duration warning/hangup.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import TimerConfig

logger = logging.getLogger(__name__)


class TimerKind(str, Enum):
    IDLE_WARNING = "idle_warning"
    IDLE_HANGUP = "idle_hangup"
    MAX_DURATION_WARNING = "max_duration_warning"
    MAX_DURATION_HANGUP = "max_duration_hangup"


@dataclass
class TimerDeadline:
    """A scheduled deadline; fire_at is in event-loop time (seconds)."""
    kind: TimerKind
    fire_at: float
    handle: asyncio.TimerHandle


class TimerSet:
    """
    Owns the four cancellable deadlines of one call.

    Firing never touches session state directly: ``on_fire`` is called with
    the timer kind and is expected to enqueue it for the session.
    """

    def __init__(
        self,
        config: TimerConfig,
        on_fire: Callable[[TimerKind], None],
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.config = config
        self._on_fire = on_fire
        self._loop = loop
        self._deadlines: dict[TimerKind, TimerDeadline] = {}
        self._max_duration_armed = False
        self._cancelled = False

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    @property
    def deadlines(self) -> dict[TimerKind, TimerDeadline]:
        return dict(self._deadlines)

    def is_armed(self, kind: TimerKind) -> bool:
        return kind in self._deadlines

    def _schedule(self, kind: TimerKind, delay_ms: int) -> None:
        self._cancel(kind)
        delay = delay_ms / 1000
        handle = self.loop.call_later(delay, self._fire, kind)
        self._deadlines[kind] = TimerDeadline(kind=kind, fire_at=self.loop.time() + delay, handle=handle)

    def _cancel(self, kind: TimerKind) -> None:
        deadline = self._deadlines.pop(kind, None)
        if deadline:
            deadline.handle.cancel()

    def _fire(self, kind: TimerKind) -> None:
        self._deadlines.pop(kind, None)
        if self._cancelled:
            return
        logger.debug(f"Timer fired: {kind.value}")
        self._on_fire(kind)

    def reset_idle(self) -> None:
        """Cancel and reschedule both idle deadlines from now."""
        if self._cancelled:
            return
        self._schedule(TimerKind.IDLE_WARNING, self.config.idle_warning_ms)
        self._schedule(
            TimerKind.IDLE_HANGUP,
            self.config.idle_warning_ms + self.config.idle_hangup_ms,
        )

    def arm_max_duration(self) -> None:
        """Arm the max-duration deadlines. Later calls are no-ops."""
        if self._cancelled or self._max_duration_armed:
            return
        self._max_duration_armed = True
        if self.config.max_call_warning_ms > 0:
            self._schedule(
                TimerKind.MAX_DURATION_WARNING,
                self.config.max_call_ms - self.config.max_call_warning_ms,
            )
        self._schedule(TimerKind.MAX_DURATION_HANGUP, self.config.max_call_ms)

    def cancel_all(self) -> None:
        """Cancel every deadline; the set can no longer be armed."""
        self._cancelled = True
        for kind in list(self._deadlines):
            self._cancel(kind)
