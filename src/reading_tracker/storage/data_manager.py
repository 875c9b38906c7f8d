"""Book and reading-session persistence."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Protocol

from reading_tracker.cli.logging_utils import LOGGER, STORE_LOG_LABEL
from reading_tracker.config import DATA_DIRECTORY
from reading_tracker.core.exceptions import StorageError
from reading_tracker.session.models import Book, ReadingSession

BOOKS_FILENAME = "books.json"
SESSIONS_FILENAME = "sessions.json"
RECENTLY_READ_LIMIT = 3


class DataManager(Protocol):
    """Persistence collaborator used by the session controller and the CLI."""

    def load_books(self) -> list[Book]: ...

    def add_book(self, book: Book) -> Book: ...

    def update_book(self, book: Book) -> None: ...

    def delete_book(self, book_id: str) -> None: ...

    def load_sessions(self) -> list[ReadingSession]: ...

    def add_session(self, session: ReadingSession) -> None: ...

    def update_session(self, session: ReadingSession) -> None: ...

    def delete_session(self, session_id: str) -> None: ...

    def sessions_for_book(self, book_id: str) -> list[ReadingSession]: ...

    def recently_read_books(self, limit: int = RECENTLY_READ_LIMIT) -> list[Book]: ...


class _ListBackedDataManager:
    """Shared record logic; subclasses decide where the two lists live."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    def _read_books(self) -> list[Book]:
        raise NotImplementedError

    def _write_books(self, books: list[Book]) -> None:
        raise NotImplementedError

    def _read_sessions(self) -> list[ReadingSession]:
        raise NotImplementedError

    def _write_sessions(self, sessions: list[ReadingSession]) -> None:
        raise NotImplementedError

    # Books ------------------------------------------------------------
    def load_books(self) -> list[Book]:
        with self._lock:
            return self._read_books()

    def add_book(self, book: Book) -> Book:
        """Add ``book``; a book with the same ISBN is updated in place and keeps its id."""

        with self._lock:
            books = self._read_books()
            for index, existing in enumerate(books):
                if book.isbn and existing.isbn == book.isbn:
                    LOGGER.log(
                        STORE_LOG_LABEL,
                        f"Book with ISBN {book.isbn} already exists; updating it instead.",
                    )
                    book.id = existing.id
                    books[index] = book
                    break
            else:
                books.append(book)
            self._write_books(books)
            return book

    def update_book(self, book: Book) -> None:
        with self._lock:
            books = self._read_books()
            for index, existing in enumerate(books):
                if existing.id == book.id:
                    books[index] = book
                    self._write_books(books)
                    return
            LOGGER.verbose(STORE_LOG_LABEL, f"update_book: unknown book {book.id}")

    def delete_book(self, book_id: str) -> None:
        with self._lock:
            books = [book for book in self._read_books() if book.id != book_id]
            sessions = [s for s in self._read_sessions() if s.book_id != book_id]
            self._write_books(books)
            self._write_sessions(sessions)

    # Sessions ---------------------------------------------------------
    def load_sessions(self) -> list[ReadingSession]:
        with self._lock:
            return self._read_sessions()

    def add_session(self, session: ReadingSession) -> None:
        with self._lock:
            sessions = self._read_sessions()
            sessions.append(session)
            self._write_sessions(sessions)
        LOGGER.verbose(STORE_LOG_LABEL, f"Saved session {session.id} for book {session.book_id}")

    def update_session(self, session: ReadingSession) -> None:
        with self._lock:
            sessions = self._read_sessions()
            for index, existing in enumerate(sessions):
                if existing.id == session.id:
                    sessions[index] = session
                    self._write_sessions(sessions)
                    return
            LOGGER.verbose(STORE_LOG_LABEL, f"update_session: unknown session {session.id}")

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            sessions = [s for s in self._read_sessions() if s.id != session_id]
            self._write_sessions(sessions)

    def sessions_for_book(self, book_id: str) -> list[ReadingSession]:
        return [s for s in self.load_sessions() if s.book_id == book_id]

    def recently_read_books(self, limit: int = RECENTLY_READ_LIMIT) -> list[Book]:
        """Distinct books ordered by their most recent session end (open sessions count as now)."""

        now = datetime.now(timezone.utc)
        sessions = sorted(
            self.load_sessions(), key=lambda s: s.end_time or now, reverse=True
        )
        books_by_id = {book.id: book for book in self.load_books()}
        recent: list[Book] = []
        seen: set[str] = set()
        for session in sessions:
            if len(recent) >= limit:
                break
            book = books_by_id.get(session.book_id)
            if book is None or book.id in seen:
                continue
            recent.append(book)
            seen.add(book.id)
        return recent


class InMemoryDataManager(_ListBackedDataManager):
    """Process-local store, used by tests and dry runs."""

    def __init__(
        self,
        books: Optional[list[Book]] = None,
        sessions: Optional[list[ReadingSession]] = None,
    ):
        super().__init__()
        self._books = list(books or [])
        self._sessions = list(sessions or [])

    def _read_books(self) -> list[Book]:
        return list(self._books)

    def _write_books(self, books: list[Book]) -> None:
        self._books = list(books)

    def _read_sessions(self) -> list[ReadingSession]:
        return list(self._sessions)

    def _write_sessions(self, sessions: list[ReadingSession]) -> None:
        self._sessions = list(sessions)


class JsonFileDataManager(_ListBackedDataManager):
    """Stores ``books.json`` and ``sessions.json`` under a data directory."""

    def __init__(self, directory: Path | str = DATA_DIRECTORY):
        super().__init__()
        self._directory = Path(directory).expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def books_path(self) -> Path:
        return self._directory / BOOKS_FILENAME

    @property
    def sessions_path(self) -> Path:
        return self._directory / SESSIONS_FILENAME

    def _read_books(self) -> list[Book]:
        return [Book.from_dict(entry) for entry in self._read_records(self.books_path)]

    def _write_books(self, books: list[Book]) -> None:
        self._write_records(self.books_path, [book.to_dict() for book in books])

    def _read_sessions(self) -> list[ReadingSession]:
        return [ReadingSession.from_dict(entry) for entry in self._read_records(self.sessions_path)]

    def _write_sessions(self, sessions: list[ReadingSession]) -> None:
        self._write_records(self.sessions_path, [s.to_dict() for s in sessions])

    @staticmethod
    def _read_records(path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc
        if not isinstance(payload, list):
            raise StorageError(f"Unexpected payload in {path}: expected a list")
        return [entry for entry in payload if isinstance(entry, dict)]

    def _write_records(self, path: Path, records: list[dict[str, Any]]) -> None:
        tmp_name: Optional[str] = None
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", dir=self._directory)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(records, handle, indent=2)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_name is not None:
                self._discard_temp_file(tmp_name)
            raise StorageError(f"Unable to write {path}: {exc}") from exc
        LOGGER.verbose(STORE_LOG_LABEL, f"Wrote {len(records)} record(s) to {path.name}")

    @staticmethod
    def _discard_temp_file(tmp_name: str) -> None:
        try:
            os.unlink(tmp_name)
        except OSError as exc:
            LOGGER.verbose(STORE_LOG_LABEL, f"Could not remove {tmp_name}: {exc}")
