"""Audio level metering for the live waveform display."""

from __future__ import annotations

import math

import numpy as np

from reading_tracker.config import LEVEL_FLOOR, LEVEL_HISTORY_LENGTH, LEVEL_SMOOTHING

__all__ = ["AudioLevelSeries", "calculate_rms", "normalized_level"]

_DECIBEL_RANGE = 50.0


def calculate_rms(buffer: np.ndarray) -> float:
    """Compute the root-mean-square amplitude of the first channel of a float buffer."""

    samples = np.asarray(buffer, dtype=np.float32)
    if samples.ndim > 1:
        samples = samples[:, 0]
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def normalized_level(buffer: np.ndarray, floor: float = LEVEL_FLOOR) -> float:
    """Map a buffer's RMS onto ``[floor, 1]`` using a 50 dB window below full scale."""

    rms = calculate_rms(buffer)
    if rms <= 0.0 or not math.isfinite(rms):
        return floor
    decibels = 20.0 * math.log10(rms)
    level = (decibels + _DECIBEL_RANGE) / _DECIBEL_RANGE
    return max(floor, min(1.0, level))


class AudioLevelSeries:
    """Fixed-length history of smoothed levels; index 0 is the newest bar."""

    def __init__(
        self,
        length: int = LEVEL_HISTORY_LENGTH,
        *,
        floor: float = LEVEL_FLOOR,
        smoothing: float = LEVEL_SMOOTHING,
    ):
        if length < 2:  # noqa: PLR2004
            raise ValueError("Level history needs at least two entries.")
        self._floor = floor
        self._smoothing = min(max(smoothing, 0.0), 1.0)
        self._values = [floor] * length
        self._latest = floor

    def __len__(self) -> int:
        return len(self._values)

    @property
    def values(self) -> list[float]:
        return list(self._values)

    def record(self, level: float) -> None:
        """Store the most recent measured level; it is folded in on the next tick."""

        self._latest = max(self._floor, min(1.0, float(level)))

    def tick(self) -> None:
        """Shift the history one slot and blend the newest sample with its neighbour."""

        previous_head = self._values[0]
        self._values.pop()
        head = self._latest * self._smoothing + previous_head * (1.0 - self._smoothing)
        self._values.insert(0, head)

    def reset(self) -> None:
        self._values = [self._floor] * len(self._values)
        self._latest = self._floor
