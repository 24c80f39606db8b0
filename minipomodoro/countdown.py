"""
Countdown engine: keeps a single countdown accurate on top of an imprecise
one-shot timer.

Every tick compares the nominal elapsed time against the wall clock. Late ticks
shorten the delay to the next one; a gap larger than a tick (suspended process,
sleeping laptop) makes the elapsed time jump to the most recent whole tick.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional, Protocol, Union

from minipomodoro.errors import AlreadyRunningError

logger = logging.getLogger(__name__)

TICK_SIZE_MS = 1000
DEFAULT_DURATION_MS = 25 * 60 * 1000


# --- Events ---

@dataclass(frozen=True)
class Started:
    timestamp: int


@dataclass(frozen=True)
class Tick:
    time_left_ms: int
    elapsed_ms: int
    duration_ms: int


@dataclass(frozen=True)
class Completed:
    pass


@dataclass(frozen=True)
class Stopped:
    pass


CountdownEvent = Union[Started, Tick, Completed, Stopped]


class Cancellable(Protocol):
    def cancel(self) -> None: ...


Clock = Callable[[], int]
Scheduler = Callable[[int, Callable[[], None]], Cancellable]


def epoch_ms() -> int:
    return int(time.time() * 1000)


def loop_scheduler(delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Schedule a one-shot callback on the running event loop."""
    return asyncio.get_running_loop().call_later(max(delay_ms, 0) / 1000, callback)


def format_duration(duration_ms: int) -> str:
    """Format milliseconds as [-]HH:MM:SS."""
    sign = "-" if duration_ms < 0 else ""
    total_seconds = abs(duration_ms) // 1000
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


class CountdownEngine:
    """
    One countdown: Idle -> Running -> (Completed | Stopped) -> Idle.

    `clock` returns epoch milliseconds and `scheduler(delay_ms, callback)`
    returns a handle with `cancel()`. Both default to the real wall clock and
    the running asyncio loop.
    """

    def __init__(
        self,
        duration_ms: int = DEFAULT_DURATION_MS,
        *,
        tick_size_ms: int = TICK_SIZE_MS,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.duration_ms = duration_ms
        self._tick_size_ms = _positive_int(tick_size_ms, "Tick size")
        self._clock = clock or epoch_ms
        self._scheduler = scheduler or loop_scheduler

        self._start_timestamp: Optional[int] = None
        self._pending_tick: Optional[Cancellable] = None

    @property
    def duration_ms(self) -> int:
        return self._duration_ms

    @duration_ms.setter
    def duration_ms(self, value: int) -> None:
        self._duration_ms = _positive_int(value, "Duration")

    @property
    def tick_size_ms(self) -> int:
        return self._tick_size_ms

    @property
    def is_running(self) -> bool:
        return self._start_timestamp is not None

    @property
    def start_timestamp(self) -> Optional[int]:
        return self._start_timestamp

    @property
    def pending_tick(self) -> Optional[Cancellable]:
        return self._pending_tick

    def now(self) -> int:
        return self._clock()

    def start(
        self,
        on_start: Callable[[Started], None],
        on_complete: Callable[[Completed], None],
        on_tick: Callable[[Tick], None],
    ) -> int:
        """Start a new countdown from now and return its start timestamp."""
        if self.is_running:
            raise AlreadyRunningError("Countdown already running")

        start_timestamp = self._clock()
        self._start_timestamp = start_timestamp
        logger.debug("countdown started at %d for %d ms", start_timestamp, self._duration_ms)

        on_start(Started(start_timestamp))
        # on_start may have stopped us again
        if self._start_timestamp == start_timestamp:
            self._tick(start_timestamp, 0, on_tick, on_complete)
        return start_timestamp

    def resume(
        self,
        start_timestamp: int,
        on_complete: Callable[[Completed], None],
        on_tick: Callable[[Tick], None],
    ) -> None:
        """
        Continue a countdown that started at `start_timestamp`.

        No start event fires. The first tick snaps the elapsed time onto the
        tick grid of the saved start.
        """
        if self.is_running:
            raise AlreadyRunningError("Countdown already running")

        self._start_timestamp = start_timestamp
        logger.debug("countdown resumed from %d", start_timestamp)
        self._tick(start_timestamp, 0, on_tick, on_complete)

    def stop(self) -> Optional[Stopped]:
        """Cancel the pending tick. Returns None when nothing was running."""
        if not self.is_running:
            return None
        self._cancel()
        logger.debug("countdown stopped")
        return Stopped()

    def _cancel(self) -> None:
        if self._pending_tick is not None:
            self._pending_tick.cancel()
            self._pending_tick = None
        self._start_timestamp = None

    def _tick(
        self,
        start_timestamp: int,
        elapsed_ms: int,
        on_tick: Callable[[Tick], None],
        on_complete: Callable[[Completed], None],
    ) -> None:
        self._pending_tick = None
        tick_size = self._tick_size_ms

        inaccuracy = (self._clock() - start_timestamp) - elapsed_ms
        if inaccuracy > tick_size:
            remainder = inaccuracy % tick_size
            elapsed_ms += inaccuracy - remainder
            inaccuracy = remainder

        if elapsed_ms >= self._duration_ms:
            self._cancel()
            logger.debug("countdown completed after %d ms", elapsed_ms)
            on_complete(Completed())
            return

        on_tick(Tick(self._duration_ms - elapsed_ms, elapsed_ms, self._duration_ms))

        # on_tick may have stopped or restarted the countdown
        if self._start_timestamp != start_timestamp or self._pending_tick is not None:
            return

        self._pending_tick = self._scheduler(
            tick_size - inaccuracy,
            partial(self._tick, start_timestamp, elapsed_ms + tick_size, on_tick, on_complete),
        )


def _positive_int(value: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer")
    return value
