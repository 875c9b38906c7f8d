"""
Reading-session state machine driven by the user interface.

The controller owns the active ``ReadingSession`` record, the session clock
and the capture graph's start/stop requests. Invalid operations are ignored
(and logged at verbose level) because callers gate them through ``phase``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

from reading_tracker.cli.logging_utils import (
    LOGGER,
    SESSION_LOG_LABEL,
    STATE_LOG_LABEL,
    log_state_transition,
)
from reading_tracker.core.tasks import BackgroundTasks
from reading_tracker.storage.data_manager import DataManager
from reading_tracker.transcription.capture_graph import AudioCaptureGraph

from .clock import SessionClock, format_elapsed
from .models import Book, ReadingSession, utc_now

DEFAULT_START_PAGE = 1

StartPageProvider = Callable[[Book, Optional[int]], Optional[int]]
ClockFactory = Callable[[Callable[[float], None]], SessionClock]
Observer = Callable[[str], None]

_GRAPH_PROPERTIES = ("transcript", "audio_levels", "error_message", "is_recording")


class ControllerPhase(Enum):
    NO_SESSION = "no_session"
    BOOK_SELECTED = "book_selected"
    RUNNING = "running"
    PAUSED = "paused"


def explicit_start_page(book: Book, requested: Optional[int]) -> Optional[int]:
    return requested


def book_current_page(book: Book, requested: Optional[int]) -> Optional[int]:
    return book.current_page if book.current_page and book.current_page > 0 else None


def default_start_page(book: Book, requested: Optional[int]) -> Optional[int]:
    return DEFAULT_START_PAGE


def last_session_end_page(data_manager: DataManager) -> StartPageProvider:
    """End page of the most recently started session for the book, if it has one."""

    def _provider(book: Book, requested: Optional[int]) -> Optional[int]:
        sessions = sorted(
            data_manager.sessions_for_book(book.id),
            key=lambda session: session.start_time,
            reverse=True,
        )
        return sessions[0].end_page if sessions else None

    return _provider


def _default_clock_factory(on_tick: Callable[[float], None]) -> SessionClock:
    return SessionClock(on_tick=on_tick)


class ReadingSessionController:
    """Select a book, run a timed session and hand the finished record to storage."""

    def __init__(
        self,
        data_manager: DataManager,
        capture_graph: Optional[AudioCaptureGraph] = None,
        *,
        clock_factory: ClockFactory = _default_clock_factory,
        start_page_providers: Optional[Sequence[StartPageProvider]] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self._data_manager = data_manager
        self._graph = capture_graph or AudioCaptureGraph()
        self._clock_factory = clock_factory
        self._now = now
        self._start_page_providers: tuple[StartPageProvider, ...] = tuple(
            start_page_providers
            or (
                explicit_start_page,
                last_session_end_page(data_manager),
                book_current_page,
                default_start_page,
            )
        )

        self._phase = ControllerPhase.NO_SESSION
        self._books: list[Book] = []
        self._selected_book: Optional[Book] = None
        self._session: Optional[ReadingSession] = None
        self._clock: Optional[SessionClock] = None
        self._showing_transcript = False
        self._is_transitioning = False
        self._closing = False
        self._generation = 0
        self._work = BackgroundTasks(SESSION_LOG_LABEL)
        self._work_item: Optional[asyncio.Task] = None
        self._observers: list[Observer] = []
        self._graph.add_observer(self._forward_graph_change)

    # ------------------------------------------------------------------
    # Observable state
    @property
    def phase(self) -> ControllerPhase:
        return self._phase

    @property
    def books(self) -> list[Book]:
        return list(self._books)

    @property
    def selected_book(self) -> Optional[Book]:
        return self._selected_book

    @property
    def current_session(self) -> Optional[ReadingSession]:
        return self._session

    @property
    def capture_graph(self) -> AudioCaptureGraph:
        return self._graph

    @property
    def is_running(self) -> bool:
        return self._phase is ControllerPhase.RUNNING

    @property
    def is_active(self) -> bool:
        return self._phase in (ControllerPhase.RUNNING, ControllerPhase.PAUSED)

    @property
    def is_transitioning(self) -> bool:
        return self._is_transitioning

    @property
    def showing_transcript(self) -> bool:
        return self._showing_transcript

    @property
    def elapsed_time(self) -> float:
        return self._clock.elapsed if self._clock is not None else 0.0

    @property
    def formatted_elapsed_time(self) -> str:
        return format_elapsed(self.elapsed_time)

    @property
    def transcript(self) -> str:
        return self._graph.transcript

    @property
    def audio_levels(self) -> list[float]:
        return self._graph.audio_levels

    @property
    def error_message(self) -> Optional[str]:
        return self._graph.error_message

    def add_observer(self, callback: Observer) -> Callable[[], None]:
        self._observers.append(callback)

        def _remove() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _remove

    def _notify(self, name: str) -> None:
        for observer in tuple(self._observers):
            observer(name)

    def _forward_graph_change(self, name: str) -> None:
        if name in _GRAPH_PROPERTIES:
            self._notify(name)

    def _set_phase(self, phase: ControllerPhase, reason: str) -> None:
        previous = self._phase
        if previous is phase:
            return
        self._phase = phase
        log_state_transition(previous, phase, reason)
        self._notify("phase")

    def _set_transitioning(self, value: bool) -> None:
        if self._is_transitioning != value:
            self._is_transitioning = value
            self._notify("is_transitioning")

    def _on_clock_tick(self, elapsed: float) -> None:
        self._notify("elapsed_time")

    def _ignore(self, operation: str) -> None:
        LOGGER.verbose(STATE_LOG_LABEL, f"Ignoring {operation} while {self._phase.value}")

    # ------------------------------------------------------------------
    # Books
    def load_books(self) -> list[Book]:
        self._books = self._data_manager.load_books()
        self._notify("books")
        return self.books

    def select_book(self, book: Book) -> bool:
        if self._phase not in (ControllerPhase.NO_SESSION, ControllerPhase.BOOK_SELECTED):
            self._ignore("select_book")
            return False
        self._selected_book = book
        self._set_phase(ControllerPhase.BOOK_SELECTED, f"selected '{book.title}'")
        return True

    def resolve_start_page(self, book: Book, requested: Optional[int] = None) -> int:
        for provider in self._start_page_providers:
            page = provider(book, requested)
            if page is not None:
                return page
        return DEFAULT_START_PAGE

    # ------------------------------------------------------------------
    # Session lifecycle
    def start_reading(self, start_page: Optional[int] = None) -> Optional[ReadingSession]:
        """Create the session, start the clock and request capture; needs a running loop."""

        book = self._selected_book
        if self._phase is not ControllerPhase.BOOK_SELECTED or book is None or self._closing:
            self._ignore("start_reading")
            return None

        page = self.resolve_start_page(book, start_page)
        self._generation += 1
        self._session = ReadingSession(book_id=book.id, start_time=self._now(), start_page=page)
        self._clock = self._clock_factory(self._on_clock_tick)
        self._clock.start()
        self._set_phase(ControllerPhase.RUNNING, f"session started at page {page}")
        LOGGER.log(SESSION_LOG_LABEL, f"Reading '{book.title}' from page {page}")
        self._spawn_graph_work(self._graph.start, "start capture", transitioning=False)
        return self._session

    def pause_reading(self) -> bool:
        if self._phase is not ControllerPhase.RUNNING or self._closing:
            self._ignore("pause_reading")
            return False
        if self._clock is not None:
            self._clock.pause()
        self._set_phase(ControllerPhase.PAUSED, "paused by user")
        self._spawn_graph_work(self._graph.stop, "pause capture", transitioning=True)
        return True

    def resume_reading(self) -> bool:
        if self._phase is not ControllerPhase.PAUSED or self._closing:
            self._ignore("resume_reading")
            return False
        if self._clock is not None:
            self._clock.resume()
        self._set_phase(ControllerPhase.RUNNING, "resumed by user")
        self._spawn_graph_work(self._graph.start, "resume capture", transitioning=True)
        return True

    def toggle_transcript(self) -> bool:
        """Flip transcript visibility; showing it may kick a stalled recognizer."""

        self._showing_transcript = not self._showing_transcript
        self._notify("showing_transcript")
        LOGGER.verbose(SESSION_LOG_LABEL, f"Transcript visible: {self._showing_transcript}")
        if (
            self._showing_transcript
            and self.is_running
            and not self._closing
            and (not self._graph.is_recording or not self._graph.transcript)
        ):
            LOGGER.log(SESSION_LOG_LABEL, "No live transcript yet; restarting capture")
            self._spawn_graph_work(self._graph.restart, "restart capture", transitioning=False)
        return self._showing_transcript

    async def finish_reading(self, end_page: int) -> Optional[ReadingSession]:
        """Stamp and persist the active session; returns None when nothing is active."""

        session = self._session
        book = self._selected_book
        if not self.is_active or session is None or book is None or self._closing:
            self._ignore("finish_reading")
            return None

        self._closing = True
        self._abandon_work("finish")
        try:
            if self._clock is not None:
                self._clock.stop()
            await self._graph.stop()
            session.end_time = self._now()
            session.end_page = end_page
            session.transcript = self._graph.transcript
            await asyncio.to_thread(self._data_manager.add_session, session)
            await asyncio.to_thread(
                self._data_manager.update_book, replace(book, current_page=end_page)
            )
            book.current_page = end_page
            LOGGER.log(
                SESSION_LOG_LABEL,
                f"Finished '{book.title}': pages {session.start_page}-{end_page}, "
                f"{session.formatted_duration}",
            )
        finally:
            await self._graph.reset()
            self._reset_state("session finished")
        return session

    async def cancel_reading(self) -> bool:
        """Discard the active session without persisting anything."""

        if not self.is_active or self._closing:
            self._ignore("cancel_reading")
            return False

        self._closing = True
        self._abandon_work("cancel")
        try:
            if self._clock is not None:
                self._clock.stop()
            await self._graph.reset()
            LOGGER.log(SESSION_LOG_LABEL, "Session discarded")
        finally:
            self._reset_state("session cancelled")
        return True

    async def aclose(self) -> None:
        self._abandon_work("shutdown")
        if self._clock is not None:
            self._clock.stop()
        await self._graph.shutdown()
        await self._work.drain()

    def _reset_state(self, reason: str) -> None:
        self._session = None
        self._selected_book = None
        self._clock = None
        self._showing_transcript = False
        self._set_transitioning(False)
        self._closing = False
        self._set_phase(ControllerPhase.NO_SESSION, reason)
        self._notify("elapsed_time")

    # ------------------------------------------------------------------
    # Background work
    def _spawn_graph_work(
        self,
        operation: Callable[[], Awaitable[object]],
        reason: str,
        *,
        transitioning: bool,
    ) -> asyncio.Task:
        if transitioning:
            self._set_transitioning(True)
        task = self._work.spawn(
            self._run_work_item(operation, self._generation, transitioning), reason
        )
        if transitioning:
            self._work_item = task
        return task

    async def _run_work_item(
        self,
        operation: Callable[[], Awaitable[object]],
        generation: int,
        transitioning: bool,
    ) -> None:
        try:
            await operation()
        finally:
            current = asyncio.current_task()
            if transitioning and generation == self._generation and current is self._work_item:
                self._work_item = None
                self._set_transitioning(False)

    def _abandon_work(self, reason: str) -> None:
        self._generation += 1
        self._work_item = None
        self._work.cancel(reason)
