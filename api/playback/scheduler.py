"""
Fixed-period tick scheduler for playback.

At most one tick task is alive per scheduler. Every task is tagged with the
generation of the timeline it was started for; the tick callback receives that
generation and is expected to refuse the tick when the live timeline has moved
on, so a timer that outlives a reset can never advance the wrong cursor.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Set

from ..shared.logger import get_logger

logger = get_logger(__name__)

# Called once per tick with the generation the timer was created for.
# Returns False to stop the timer (end reached or generation stale).
TickCallback = Callable[[int], Awaitable[bool]]


class PlaybackScheduler:
    """Owns the single tick task of a playback session."""

    def __init__(self, base_tick_ms: float = 500.0, name: str = "playback"):
        """Initialize the scheduler.

        Args:
            base_tick_ms: Tick period at 1x speed, in milliseconds
            name: Label used in task names and log lines
        """
        self.base_tick_ms = base_tick_ms
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._task_generation: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()

    def interval_seconds(self, speed_multiplier: int) -> float:
        """Tick period for a speed multiplier."""
        return self.base_tick_ms / max(speed_multiplier, 1) / 1000.0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def active_timers(self) -> int:
        """Number of tick tasks not yet finished (cancelled ones drain on the next loop turn)."""
        return sum(1 for task in self._tasks if not task.done())

    @property
    def generation(self) -> Optional[int]:
        """Generation the current timer was started for, None when idle."""
        return self._task_generation if self.is_running else None

    def start(self, generation: int, speed_multiplier: int, on_tick: TickCallback) -> None:
        """Cancel any running timer and start a new one.

        Must be called from within a running event loop.

        Args:
            generation: Generation of the timeline this timer drives
            speed_multiplier: Current playback speed
            on_tick: Coroutine called on every tick
        """
        self.cancel()
        interval = self.interval_seconds(speed_multiplier)
        task = asyncio.get_running_loop().create_task(
            self._run(generation, interval, on_tick),
            name=f"{self.name}-tick-g{generation}",
        )
        self._task = task
        self._task_generation = generation
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("%s: timer started (generation=%d, interval=%.3fs)", self.name, generation, interval)

    def cancel(self) -> bool:
        """Cancel the running timer.

        Returns:
            True if a timer was running
        """
        task = self._task
        self._task = None
        self._task_generation = None
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("%s: timer cancelled", self.name)
        return True

    async def shutdown(self) -> None:
        """Cancel every timer and wait for them to finish."""
        self.cancel()
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, generation: int, interval: float, on_tick: TickCallback) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                keep_going = await on_tick(generation)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("%s: tick failed, stopping timer: %s", self.name, e)
                keep_going = False

            if not keep_going:
                break

        if self._task is asyncio.current_task():
            self._task = None
            self._task_generation = None
