"""
Audio session configuration: choose the input device and confirm it can record
at its own native rate before any tap is installed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Union

from reading_tracker.cli.logging_utils import AUDIO_LOG_LABEL, LOGGER
from reading_tracker.config import AUDIO_CHANNELS, AUDIO_INPUT_DEVICE
from reading_tracker.core.exceptions import AudioSessionConfigError

from ._sounddevice import load_sounddevice

DeviceId = Union[int, str, None]


@dataclass(frozen=True)
class InputRoute:
    """The input device chosen for a capture span."""

    device: DeviceId
    name: str
    sample_rate: int
    max_input_channels: int = 1


class AudioSession(Protocol):
    """Fallible audio session configuration."""

    def activate(self) -> InputRoute: ...

    def configure_for_background(self) -> None: ...

    def deactivate(self) -> None: ...


def device_info_dict(info: object) -> dict[str, object]:
    """Return a plain dict from sounddevice info objects."""

    if isinstance(info, dict):
        return dict(info)
    if isinstance(info, Mapping):
        return dict(info.items())
    if hasattr(info, "__dict__"):
        return dict(vars(info))
    return {}


class SoundDeviceAudioSession:
    """Select and validate a PortAudio input device for recording."""

    def __init__(self, device_override: Optional[str] = AUDIO_INPUT_DEVICE, *, sd: Any = None):
        self._device_override = device_override
        self._sd = sd
        self._route: Optional[InputRoute] = None

    @property
    def active_route(self) -> Optional[InputRoute]:
        return self._route

    def activate(self) -> InputRoute:
        if self._route is not None:
            LOGGER.verbose(AUDIO_LOG_LABEL, "Deactivating previous audio session")
            self.deactivate()

        device = self._select_input_device()
        info = self._query(device)
        sample_rate = self._native_sample_rate(info)
        channels = self._max_input_channels(info)
        name = self._describe(info, device)
        try:
            self._sounddevice().check_input_settings(
                device=device,
                channels=min(AUDIO_CHANNELS, channels),
                dtype="float32",
                samplerate=sample_rate,
            )
        except Exception as exc:
            raise AudioSessionConfigError(
                str(exc),
                user_message=f"Audio session configuration failed: {name} rejected {sample_rate} Hz.",
            ) from exc

        self._route = InputRoute(
            device=device,
            name=name,
            sample_rate=sample_rate,
            max_input_channels=channels,
        )
        LOGGER.verbose(AUDIO_LOG_LABEL, f"Audio session active on {name} ({sample_rate} Hz native)")
        return self._route

    def configure_for_background(self) -> None:
        route = self._route
        if route is None:
            raise AudioSessionConfigError(
                "No active route", user_message="Audio session is not active."
            )
        # The device must still be present for capture to continue unattended.
        self._query(route.device)
        LOGGER.verbose(AUDIO_LOG_LABEL, "Audio session configured for background recording")

    def deactivate(self) -> None:
        if self._route is not None:
            LOGGER.verbose(AUDIO_LOG_LABEL, f"Audio session released ({self._route.name})")
        self._route = None

    # ------------------------------------------------------------------
    # Device selection
    def _sounddevice(self) -> Any:
        if self._sd is None:
            self._sd = load_sounddevice()
        return self._sd

    def _select_input_device(self) -> DeviceId:
        """
        Prefer the explicit AUDIO_INPUT_DEVICE override, then the system default,
        then the first enumerated device with an input channel.
        """

        override = self._parse_device_override(self._device_override)
        if override is not None:
            self._query(override)
            return override

        default_device = self._coerce_input_index(self._sounddevice().default.device)
        if default_device is not None and default_device >= 0:
            if self._device_is_valid(default_device):
                return default_device

        return self._first_available_input_device()

    @staticmethod
    def _parse_device_override(value: Optional[str]) -> DeviceId:
        if not value:
            return None

        candidate = value.strip()
        if not candidate:
            return None

        try:
            return int(candidate)
        except ValueError:
            return candidate

    @staticmethod
    def _coerce_input_index(device: object) -> Optional[int]:
        candidate = device[0] if isinstance(device, (list, tuple)) else device
        return candidate if isinstance(candidate, int) else None

    def _device_is_valid(self, device: DeviceId) -> bool:
        try:
            info = device_info_dict(self._sounddevice().query_devices(device))
        except Exception:
            return False
        return self._max_input_channels(info) > 0

    def _query(self, device: DeviceId) -> dict[str, object]:
        try:
            return device_info_dict(self._sounddevice().query_devices(device))
        except AudioSessionConfigError:
            raise
        except Exception as exc:
            raise AudioSessionConfigError(
                str(exc),
                user_message=f"Audio input device '{device}' is not available.",
            ) from exc

    def _first_available_input_device(self) -> int:
        try:
            devices = self._sounddevice().query_devices()
        except AudioSessionConfigError:
            raise
        except Exception as exc:
            raise AudioSessionConfigError(
                str(exc), user_message="Unable to query audio input devices."
            ) from exc

        records = devices if isinstance(devices, (list, tuple)) else [devices]
        for idx, entry in enumerate(records):
            if self._max_input_channels(device_info_dict(entry)) > 0:
                return idx

        raise AudioSessionConfigError(
            "no input devices", user_message="No microphone was found. Connect one and retry."
        )

    @staticmethod
    def _native_sample_rate(info: dict[str, object]) -> int:
        candidate = info.get("default_samplerate")
        if isinstance(candidate, (int, float, str)):
            try:
                rate = int(float(candidate))
            except ValueError:
                rate = 0
            if rate > 0:
                return rate
        raise AudioSessionConfigError(
            f"invalid native sample rate {candidate!r}",
            user_message="Audio input format is invalid.",
        )

    @staticmethod
    def _max_input_channels(info: dict[str, object]) -> int:
        value = info.get("max_input_channels")
        if isinstance(value, (int, float)):
            return int(value)
        return 0

    @staticmethod
    def _describe(info: dict[str, object], device: DeviceId) -> str:
        name_obj = info.get("name")
        name = str(name_obj) if name_obj not in (None, "") else "Unknown device"
        idx_obj = info.get("index")
        index = idx_obj if isinstance(idx_obj, int) else device if device is not None else "?"
        return f"{name} (id {index})"
