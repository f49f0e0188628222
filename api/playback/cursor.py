"""
Playback cursor.

``CursorState`` is an immutable value; every operation returns a new state.
The hosting session swaps its cursor reference atomically, so a reader never
observes a half-applied transition.
"""

import math
from dataclasses import dataclass, replace

DEFAULT_MAX_SPEED = 20


@dataclass(frozen=True)
class CursorState:
    """Pointer into a frame sequence plus play/pause and speed flags."""

    frame_count: int = 0
    current_index: int = 0
    playing: bool = False
    speed_multiplier: int = 1
    generation: int = 0
    max_speed: int = DEFAULT_MAX_SPEED

    @property
    def is_empty(self) -> bool:
        return self.frame_count <= 0

    @property
    def last_index(self) -> int:
        return max(self.frame_count - 1, 0)

    @property
    def at_end(self) -> bool:
        return self.is_empty or self.current_index >= self.last_index

    @property
    def progress_percent(self) -> float:
        """Position in the sequence as 0..100; 0 for empty or single-frame sequences."""
        if self.frame_count <= 1:
            return 0.0
        return self.current_index / (self.frame_count - 1) * 100

    def to_dict(self):
        return {
            "frame_count": self.frame_count,
            "current_index": self.current_index,
            "playing": self.playing,
            "speed_multiplier": self.speed_multiplier,
            "generation": self.generation,
            "progress_percent": self.progress_percent,
        }

    # ----- transitions -----

    def play(self) -> "CursorState":
        if self.is_empty:
            return self
        return replace(self, playing=True)

    def pause(self) -> "CursorState":
        return replace(self, playing=False)

    def toggle(self) -> "CursorState":
        return self.pause() if self.playing else self.play()

    def reset(self) -> "CursorState":
        return replace(self, current_index=0, playing=False)

    def seek(self, percentage: float) -> "CursorState":
        """Jump to ``floor(p/100 * (n-1))``.

        No-op on an empty sequence or a non-finite percentage.
        """
        pct = float(percentage)
        if self.is_empty or not math.isfinite(pct):
            return self
        pct = min(max(pct, 0.0), 100.0)
        index = math.floor(pct / 100 * (self.frame_count - 1))
        return replace(self, current_index=min(max(index, 0), self.last_index))

    def cycle_speed(self) -> "CursorState":
        """Double the speed, wrapping to 1x once the ceiling would be exceeded."""
        doubled = self.speed_multiplier * 2
        return replace(self, speed_multiplier=doubled if doubled <= self.max_speed else 1)

    def advance(self) -> "CursorState":
        """Effect of one tick: step forward, stop playing at the last frame."""
        if self.is_empty:
            return replace(self, playing=False)
        if self.current_index >= self.last_index:
            return replace(self, current_index=self.last_index, playing=False)
        index = self.current_index + 1
        return replace(self, current_index=index, playing=self.playing and index < self.last_index)


def empty_cursor(generation: int = 0, max_speed: int = DEFAULT_MAX_SPEED) -> CursorState:
    """Cursor for a session with no timeline attached."""
    return CursorState(generation=generation, max_speed=max_speed)


def cursor_for(
    frame_count: int,
    generation: int,
    speed_multiplier: int = 1,
    max_speed: int = DEFAULT_MAX_SPEED,
) -> CursorState:
    """Fresh cursor at index 0 for a newly installed timeline."""
    return CursorState(
        frame_count=frame_count,
        generation=generation,
        speed_multiplier=speed_multiplier,
        max_speed=max_speed,
    )
