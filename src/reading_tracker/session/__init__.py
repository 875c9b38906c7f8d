"""Reading-session records, the session clock and the session controller."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .clock import SessionClock, format_elapsed
from .models import Book, ReadingSession

__all__ = [
    "Book",
    "ControllerPhase",
    "ReadingSession",
    "ReadingSessionController",
    "SessionClock",
    "format_elapsed",
]


def __getattr__(name: str):
    # The controller imports storage, which imports the models above.
    if name in {"ControllerPhase", "ReadingSessionController"}:
        from . import controller as _controller

        return getattr(_controller, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


if TYPE_CHECKING:  # pragma: no cover - import-time only
    from .controller import ControllerPhase as ControllerPhase
    from .controller import ReadingSessionController as ReadingSessionController
