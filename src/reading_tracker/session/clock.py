"""Pausable stopwatch for the active reading session."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from reading_tracker.cli.logging_utils import CLOCK_LOG_LABEL, LOGGER
from reading_tracker.config import CLOCK_TICK_INTERVAL_SECONDS

TimeSource = Callable[[], float]


def format_elapsed(seconds: float) -> str:
    """Render ``seconds`` as ``MM:SS``, or ``H:MM:SS`` from one hour on."""

    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class SessionClock:
    """
    Elapsed active time, refreshed once per tick while running.

    ``resume`` back-dates the reference instant by the elapsed time so paused
    intervals are never counted. ``stop`` is final for the instance.
    """

    def __init__(
        self,
        *,
        time_source: TimeSource = time.monotonic,
        tick_interval: float = CLOCK_TICK_INTERVAL_SECONDS,
        on_tick: Optional[Callable[[float], None]] = None,
    ):
        self._now = time_source
        self._tick_interval = tick_interval
        self._on_tick = on_tick
        self._reference: Optional[float] = None
        self._elapsed = 0.0
        self._running = False
        self._stopped = False
        self._ticker: Optional[asyncio.Task] = None

    @property
    def elapsed(self) -> float:
        return self._elapsed

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        if self._stopped or self._running:
            LOGGER.verbose(CLOCK_LOG_LABEL, "Ignoring start; clock already running or stopped")
            return
        self._reference = self._now()
        self._elapsed = 0.0
        self._begin_ticking()
        LOGGER.verbose(CLOCK_LOG_LABEL, "Clock started")

    def pause(self) -> None:
        if not self._running:
            return
        self._refresh()
        self._halt_ticking()
        LOGGER.verbose(CLOCK_LOG_LABEL, f"Clock paused at {format_elapsed(self._elapsed)}")

    def resume(self) -> None:
        if self._stopped or self._running:
            return
        self._reference = self._now() - self._elapsed
        self._begin_ticking()
        LOGGER.verbose(CLOCK_LOG_LABEL, f"Clock resumed from {format_elapsed(self._elapsed)}")

    def stop(self) -> float:
        """Halt permanently and return the final elapsed seconds."""

        if self._running:
            self._refresh()
        self._halt_ticking()
        self._stopped = True
        return self._elapsed

    def _refresh(self) -> None:
        if self._reference is not None:
            self._elapsed = max(0.0, self._now() - self._reference)

    def _begin_ticking(self) -> None:
        self._running = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Without a loop the clock still answers reads through pause/stop.
            return
        self._ticker = loop.create_task(self._tick_forever())

    def _halt_ticking(self) -> None:
        self._running = False
        ticker = self._ticker
        self._ticker = None
        if ticker is not None:
            ticker.cancel()

    async def _tick_forever(self) -> None:
        while self._running:
            await asyncio.sleep(self._tick_interval)
            if not self._running:
                return
            self._refresh()
            if self._on_tick is not None:
                self._on_tick(self._elapsed)
