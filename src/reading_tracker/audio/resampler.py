"""
Streaming linear resampler that turns native float input into PCM16 at a wire rate.
"""

from __future__ import annotations

import numpy as np

_PCM16_SCALE = 32767.0


class LinearResampler:
    """Incremental resampler for mono float audio; keeps phase across chunks."""

    def __init__(self, source_rate: int, target_rate: int):
        if source_rate <= 0 or target_rate <= 0:
            raise ValueError("Sample rates must be positive integers.")

        self.source_rate = source_rate
        self.target_rate = target_rate
        self._step = source_rate / target_rate
        self._position = 0.0
        self._tail = np.array([], dtype=np.float32)

    def process(self, samples: np.ndarray) -> np.ndarray:
        """Return resampled PCM16 samples for ``samples`` (frames or frames x channels)."""

        mono = np.asarray(samples, dtype=np.float32)
        if mono.ndim > 1:
            mono = mono[:, 0]
        if mono.size == 0:
            return np.array([], dtype=np.int16)

        if self.source_rate == self.target_rate:
            return _to_pcm16(mono)

        data = np.concatenate([self._tail, mono]) if self._tail.size else mono
        last_index = data.size - 1
        positions = np.arange(self._position, last_index, self._step)
        converted = np.interp(positions, np.arange(data.size), data)

        next_position = self._position + positions.size * self._step
        self._position = next_position - last_index
        self._tail = data[-1:].copy()
        return _to_pcm16(converted)

    def reset(self) -> None:
        """Clear accumulated state."""

        self._position = 0.0
        self._tail = np.array([], dtype=np.float32)


def _to_pcm16(samples: np.ndarray) -> np.ndarray:
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * _PCM16_SCALE).astype(np.int16)
