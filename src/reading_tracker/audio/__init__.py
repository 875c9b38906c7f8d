"""Microphone capture building blocks with lazy imports to avoid cycles."""

from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "AudioLevelSeries",
    "InputFormat",
    "InputRoute",
    "LocalPermissionProvider",
    "PermissionStatus",
    "SoundDeviceAudioSession",
    "SoundDeviceInputEngine",
    "SpeechAuthorization",
]


def __getattr__(name: str):
    if name in {"InputFormat", "SoundDeviceInputEngine"}:
        from . import engine as _engine

        return getattr(_engine, name)
    if name in {"InputRoute", "SoundDeviceAudioSession"}:
        from . import session as _session

        return getattr(_session, name)
    if name in {"LocalPermissionProvider", "PermissionStatus", "SpeechAuthorization"}:
        from . import permissions as _permissions

        return getattr(_permissions, name)
    if name == "AudioLevelSeries":
        from .levels import AudioLevelSeries as _AudioLevelSeries

        return _AudioLevelSeries
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if TYPE_CHECKING:  # pragma: no cover - import-time only
    from .engine import InputFormat as InputFormat
    from .engine import SoundDeviceInputEngine as SoundDeviceInputEngine
    from .levels import AudioLevelSeries as AudioLevelSeries
    from .permissions import LocalPermissionProvider as LocalPermissionProvider
    from .permissions import PermissionStatus as PermissionStatus
    from .permissions import SpeechAuthorization as SpeechAuthorization
    from .session import InputRoute as InputRoute
    from .session import SoundDeviceAudioSession as SoundDeviceAudioSession
