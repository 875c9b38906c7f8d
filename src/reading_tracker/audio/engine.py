"""
Microphone input engine: opens the input device at its native format and
forwards every captured block to a tap callback.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import numpy as np

from reading_tracker.cli.logging_utils import AUDIO_LOG_LABEL, LOGGER
from reading_tracker.config import AUDIO_CHANNELS
from reading_tracker.core.exceptions import EngineStartError, TapNotInstalledError

from ._sounddevice import load_sounddevice
from .session import InputRoute

TapCallback = Callable[[np.ndarray], None]


@dataclass(frozen=True)
class InputFormat:
    """Hardware format reported by the input device."""

    sample_rate: int
    channels: int


class AudioInputEngine(Protocol):
    """Subset of an audio engine used by the capture graph."""

    @property
    def is_running(self) -> bool: ...

    def input_format(self) -> InputFormat: ...

    def install_tap(self, block_size: int, fmt: InputFormat, callback: TapCallback) -> None: ...

    def remove_tap(self) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


EngineFactory = Callable[[InputRoute], AudioInputEngine]


class SoundDeviceInputEngine:
    """``sounddevice.InputStream`` wrapper; one instance per capture span."""

    def __init__(self, route: InputRoute, *, channels: int = AUDIO_CHANNELS):
        self._route = route
        self._channels = max(1, channels)
        self._stream: Any = None
        self._callback: Optional[TapCallback] = None
        self.callback_count = 0

    @property
    def is_running(self) -> bool:
        stream = self._stream
        return bool(stream is not None and getattr(stream, "active", False))

    def input_format(self) -> InputFormat:
        sample_rate = self._route.sample_rate
        channels = min(self._channels, max(1, self._route.max_input_channels))
        return InputFormat(sample_rate=sample_rate, channels=channels)

    def install_tap(self, block_size: int, fmt: InputFormat, callback: TapCallback) -> None:
        if self._stream is not None:
            raise EngineStartError("Input tap already installed")
        sd = load_sounddevice()
        self._callback = callback
        try:
            self._stream = sd.InputStream(
                samplerate=fmt.sample_rate,
                channels=fmt.channels,
                dtype="float32",
                blocksize=block_size,
                callback=self._on_block,
                device=self._route.device,
            )
        except Exception as exc:
            self._callback = None
            raise EngineStartError(
                f"Unable to open input stream on {self._route.name}: {exc}"
            ) from exc
        LOGGER.verbose(
            AUDIO_LOG_LABEL,
            f"Tap installed on {self._route.name} at {fmt.sample_rate} Hz x{fmt.channels}",
        )

    def remove_tap(self) -> None:
        stream = self._stream
        if stream is None:
            raise TapNotInstalledError("No input tap installed")
        self._stream = None
        self._callback = None
        stream.close()

    def start(self) -> None:
        if self._stream is None:
            raise EngineStartError("Cannot start engine without an input tap")
        try:
            self._stream.start()
        except Exception as exc:
            raise EngineStartError(str(exc)) from exc

    def stop(self) -> None:
        stream = self._stream
        if stream is not None and getattr(stream, "active", False):
            stream.stop()

    def _on_block(self, indata, frames, time_info, status) -> None:
        """Runs on the PortAudio thread; hands a copy of the block to the tap."""

        self.callback_count += 1
        if status:
            print(f"Audio callback status: {status}", file=sys.stderr)
        callback = self._callback
        if callback is None:
            return
        callback(indata.copy())
