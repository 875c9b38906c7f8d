"""
Deferred import of ``sounddevice``.

PortAudio is loaded when the module is imported, so importing it lazily keeps
headless hosts (CI runners, servers) able to use the rest of the package.
"""

from __future__ import annotations

import importlib
from types import ModuleType

from reading_tracker.core.exceptions import AudioSessionConfigError

_MODULE: ModuleType | None = None


def load_sounddevice() -> ModuleType:
    """Return the ``sounddevice`` module or raise a configuration error."""

    global _MODULE
    if _MODULE is not None:
        return _MODULE
    try:
        _MODULE = importlib.import_module("sounddevice")
    except (ImportError, OSError) as exc:
        raise AudioSessionConfigError(
            f"sounddevice unavailable: {exc}",
            user_message=(
                "Audio input is unavailable. Install PortAudio and the sounddevice package."
            ),
        ) from exc
    return _MODULE


__all__ = ["load_sounddevice"]
