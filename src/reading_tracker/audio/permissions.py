"""Speech and microphone authorization checks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from reading_tracker.cli.logging_utils import LOGGER, PERMISSION_LOG_LABEL
from reading_tracker.config import OPENAI_API_KEY
from reading_tracker.core.exceptions import AudioSessionConfigError

from ._sounddevice import load_sounddevice


class SpeechAuthorization(Enum):
    AUTHORIZED = "authorized"
    DENIED = "denied"
    RESTRICTED = "restricted"
    NOT_DETERMINED = "not_determined"


@dataclass(frozen=True)
class PermissionStatus:
    speech: SpeechAuthorization
    microphone: bool

    @property
    def granted(self) -> bool:
        return self.speech is SpeechAuthorization.AUTHORIZED and self.microphone


class PermissionProvider(Protocol):
    def request_speech_authorization(self) -> SpeechAuthorization: ...

    def request_record_permission(self) -> bool: ...


def _probe_input_devices(sd: Any = None) -> bool:
    """Return True when at least one input-capable device can be enumerated."""

    try:
        module = sd if sd is not None else load_sounddevice()
        devices = module.query_devices()
    except AudioSessionConfigError as exc:
        LOGGER.verbose(PERMISSION_LOG_LABEL, f"Audio stack unavailable: {exc}")
        return False
    except Exception as exc:
        LOGGER.verbose(PERMISSION_LOG_LABEL, f"Device enumeration failed: {exc}")
        return False

    records = devices if isinstance(devices, (list, tuple)) else [devices]
    for entry in records:
        channels = entry.get("max_input_channels") if hasattr(entry, "get") else None
        if isinstance(channels, (int, float)) and channels > 0:
            return True
    return False


class LocalPermissionProvider:
    """
    Desktop stand-in for OS authorization prompts.

    Speech recognition counts as authorized once a recognizer credential is
    configured; the microphone counts as granted when an input device can be
    enumerated.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = OPENAI_API_KEY,
        device_probe: Callable[[], bool] = _probe_input_devices,
    ):
        self._api_key = api_key
        self._device_probe = device_probe

    def request_speech_authorization(self) -> SpeechAuthorization:
        if self._api_key:
            return SpeechAuthorization.AUTHORIZED
        return SpeechAuthorization.NOT_DETERMINED

    def request_record_permission(self) -> bool:
        return bool(self._device_probe())
