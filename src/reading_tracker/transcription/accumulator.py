"""Transcript text kept across capture spans of one reading session."""

from __future__ import annotations

from reading_tracker.cli.logging_utils import LOGGER, TRANSCRIPT_LOG_LABEL

TRANSCRIPT_SNIPPET_LIMIT = 80


class TranscriptAccumulator:
    """
    Frozen text from finished spans plus the live text of the current span.

    Recognizers report the whole hypothesis for their task on every update, so
    the live span is replaced, never appended to. Freezing moves it behind the
    already frozen text.
    """

    def __init__(self) -> None:
        self._frozen = ""
        self._live = ""

    @property
    def text(self) -> str:
        return _join(self._frozen, self._live)

    @property
    def frozen_text(self) -> str:
        return self._frozen

    @property
    def live_text(self) -> str:
        return self._live

    def update_span(self, text: str) -> None:
        self._live = (text or "").strip()

    def freeze_span(self) -> None:
        if not self._live:
            return
        self._frozen = _join(self._frozen, self._live)
        self._live = ""
        LOGGER.verbose(
            TRANSCRIPT_LOG_LABEL,
            f"Span frozen; transcript now {len(self._frozen)} chars: {_shorten(self._frozen)!r}",
        )

    def reset(self) -> None:
        self._frozen = ""
        self._live = ""


def _join(first: str, second: str) -> str:
    if first and second:
        return f"{first} {second}"
    return first or second


def _shorten(transcript: str) -> str:
    if len(transcript) <= TRANSCRIPT_SNIPPET_LIMIT:
        return transcript
    return "…" + transcript[-TRANSCRIPT_SNIPPET_LIMIT:]


__all__ = ["TranscriptAccumulator"]
