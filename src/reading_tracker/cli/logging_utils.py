"""
Console logging for the reading tracker.

Every line reads ``[HH:MM:SS] [LABEL] message``. Labels name the part of the
tracker that spoke (session, capture, recognizer, store) and are colored on the
terminal. Verbose lines are dropped unless ``--verbose`` or
``READING_TRACKER_VERBOSE`` turned them on.
"""

from __future__ import annotations

import sys
import traceback
from datetime import datetime
from enum import Enum
from typing import Optional, TypedDict

from typing_extensions import Unpack

from reading_tracker.config import VERBOSE_LOGGING

RESET = "\033[0m"

SESSION_LOG_LABEL = "SESSION"
TRANSCRIPT_LOG_LABEL = "TRANSCRIPT"
CLOCK_LOG_LABEL = "CLOCK"
STATE_LOG_LABEL = "STATE"
PERMISSION_LOG_LABEL = "PERMISSION"
RECOGNIZER_LOG_LABEL = "RECOGNIZER"
STORE_LOG_LABEL = "STORE"
ERROR_LOG_LABEL = "ERROR"
AUDIO_LOG_LABEL = "AUDIO"
SYSTEM_LOG_LABEL = "SYSTEM"

# 256-color palette indices
_LABEL_COLORS = {
    SESSION_LOG_LABEL: 208,
    TRANSCRIPT_LOG_LABEL: 71,
    CLOCK_LOG_LABEL: 178,
    STATE_LOG_LABEL: 37,
    PERMISSION_LOG_LABEL: 178,
    RECOGNIZER_LOG_LABEL: 134,
    STORE_LOG_LABEL: 68,
    ERROR_LOG_LABEL: 160,
    AUDIO_LOG_LABEL: 68,
    SYSTEM_LOG_LABEL: 250,
}
_WS_COLOR = 250
_WS_DIRECTIONS = ("←", "→")


class LogOptions(TypedDict, total=False):
    verbose: bool
    error: bool
    exc_info: BaseException


def _label_color(label: str) -> Optional[str]:
    index = _WS_COLOR if label.startswith("WS") else _LABEL_COLORS.get(label)
    return None if index is None else f"\033[38;5;{index}m"


class Logger:
    """Writes labelled lines to stdout, or stderr for errors."""

    def __init__(self, verbose: bool = False) -> None:
        self._verbose_logging = verbose

    def set_verbose_logging(self, enabled: bool) -> None:
        self._verbose_logging = bool(enabled)

    @property
    def verbose_logging(self) -> bool:
        return self._verbose_logging

    def log(self, source: str, message: object, **options: Unpack[LogOptions]) -> None:
        label = source.strip()
        if not label:
            raise ValueError("source is required")

        verbose = bool(options.pop("verbose", False))
        error = bool(options.pop("error", False))
        exc = options.pop("exc_info", None)
        if options:
            raise TypeError(f"Unsupported log option(s): {', '.join(sorted(options))}")
        if verbose and not self._verbose_logging:
            return

        color = _label_color(label)
        tag = f"{color}[{label}]{RESET}" if color else f"[{label}]"
        line = f"[{datetime.now():%H:%M:%S}] {tag} {message}"
        if exc is not None:
            details = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            line = f"{line}\n{details.rstrip()}"

        stream = sys.stderr if error else sys.stdout
        stream.write(line + "\n")

    def verbose(self, source: str, message: object, **options: Unpack[LogOptions]) -> None:
        options["verbose"] = True
        self.log(source, message, **options)


LOGGER = Logger(VERBOSE_LOGGING)


def set_verbose_logging(enabled: bool) -> None:
    LOGGER.set_verbose_logging(enabled)


def ws_log_label(direction: str = "") -> str:
    """``WS`` for connection events, ``WS←``/``WS→`` for received/sent frames."""

    return f"WS{direction}" if direction in _WS_DIRECTIONS else "WS"


def log_state_transition(previous: Optional[Enum], new: Enum, reason: str) -> None:
    """Log a state machine move as ``CaptureState IDLE -> STARTING (user start)``."""

    if previous is new:
        return
    machine = type(new).__name__
    if previous is None:
        LOGGER.verbose(STATE_LOG_LABEL, f"{machine} entered {new.name} ({reason})")
    else:
        LOGGER.verbose(STATE_LOG_LABEL, f"{machine} {previous.name} -> {new.name} ({reason})")
