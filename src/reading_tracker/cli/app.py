"""
Reading tracker command line: catalog books and record timed reading sessions
with a live transcript from the microphone.
"""

import argparse
import asyncio
import sys
import threading
from pathlib import Path
from typing import Optional

from reading_tracker.cli.logging_utils import (
    ERROR_LOG_LABEL,
    LOGGER,
    PERMISSION_LOG_LABEL,
    SESSION_LOG_LABEL,
    STORE_LOG_LABEL,
    SYSTEM_LOG_LABEL,
    set_verbose_logging,
)
from reading_tracker.config import DATA_DIRECTORY, VERBOSE_LOGGING
from reading_tracker.diagnostics import test_audio_capture, test_recognizer
from reading_tracker.session.clock import format_elapsed
from reading_tracker.session.controller import ReadingSessionController
from reading_tracker.session.models import Book
from reading_tracker.storage.data_manager import DataManager, JsonFileDataManager

RECORD_HELP = (
    "Commands: pause | resume | transcript | status | finish <page> | cancel | help"
)


def find_book(books: list[Book], key: str) -> Book:
    """Resolve a book by id, id prefix or ISBN."""

    for book in books:
        if key in (book.id, book.isbn):
            return book
    matches = [book for book in books if book.id.startswith(key)]
    if len(matches) == 1:
        return matches[0]
    raise LookupError(f"No unique book matches '{key}'.")


def list_books(data_manager: DataManager) -> None:
    books = data_manager.load_books()
    if not books:
        print("No books yet. Add one with `reading-tracker add-book`.")
        return
    recent_ids = {book.id for book in data_manager.recently_read_books()}
    for book in books:
        marker = "*" if book.id in recent_ids else " "
        total = book.total_pages if book.total_pages else "?"
        print(
            f"{marker} {book.id[:8]}  {book.isbn:<14} {book.title} by {book.author}  "
            f"page {book.current_page}/{total} ({book.reading_progress:.0%})"
        )


def add_book(data_manager: DataManager, args: argparse.Namespace) -> None:
    book = data_manager.add_book(
        Book(
            isbn=args.isbn,
            title=args.title,
            author=args.author,
            cover_url=args.cover_url,
            current_page=args.current_page,
            total_pages=args.total_pages,
        )
    )
    LOGGER.log(STORE_LOG_LABEL, f"Saved '{book.title}' ({book.id})")


def list_sessions(data_manager: DataManager, book_key: Optional[str]) -> None:
    books = {book.id: book for book in data_manager.load_books()}
    if book_key:
        book = find_book(list(books.values()), book_key)
        sessions = data_manager.sessions_for_book(book.id)
    else:
        sessions = data_manager.load_sessions()
    if not sessions:
        print("No reading sessions recorded.")
        return
    for session in sorted(sessions, key=lambda s: s.start_time):
        book = books.get(session.book_id)
        title = book.title if book else session.book_id[:8]
        end_page = session.end_page if session.end_page is not None else "?"
        pages = session.pages_read if session.pages_read is not None else "?"
        print(
            f"{session.start_time:%Y-%m-%d %H:%M}  {title}: pages {session.start_page}-{end_page} "
            f"({pages} read, {session.formatted_duration})"
        )
        if session.transcript:
            print(f"    {session.transcript}")


def _start_stdin_reader(loop: asyncio.AbstractEventLoop) -> "asyncio.Queue[Optional[str]]":
    """Forward stdin lines to the loop from a daemon thread; None marks EOF."""

    lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

    def _reader() -> None:
        for line in sys.stdin:
            if loop.is_closed():
                return
            loop.call_soon_threadsafe(lines.put_nowait, line)
        if not loop.is_closed():
            loop.call_soon_threadsafe(lines.put_nowait, None)

    threading.Thread(target=_reader, name="stdin-reader", daemon=True).start()
    return lines


def _print_status(controller: ReadingSessionController) -> None:
    graph = controller.capture_graph
    session = controller.current_session
    start_page = session.start_page if session else "?"
    print(
        f"[{controller.phase.value}] {controller.formatted_elapsed_time}  "
        f"start page {start_page}  capture={graph.state.value}  "
        f"transcript={len(controller.transcript)} chars"
    )
    if controller.error_message:
        print(f"  ! {controller.error_message}")


async def run_record(
    data_manager: DataManager, book_key: str, start_page: Optional[int]
) -> None:
    """Interactive reading session for one book."""

    controller = ReadingSessionController(data_manager)
    book = find_book(controller.load_books(), book_key)
    graph = controller.capture_graph
    status = await graph.request_permissions()
    if not status.granted:
        LOGGER.log(
            PERMISSION_LOG_LABEL,
            f"Recording without a transcript: {graph.error_message}",
        )

    def _on_change(name: str) -> None:
        if name == "transcript" and controller.showing_transcript:
            print(f"> {controller.transcript}")
        elif name == "error_message" and controller.error_message:
            LOGGER.log(SESSION_LOG_LABEL, controller.error_message)

    controller.add_observer(_on_change)
    controller.select_book(book)
    session = controller.start_reading(start_page)
    if session is None:
        raise RuntimeError("Unable to start a reading session.")
    print(RECORD_HELP)
    lines = _start_stdin_reader(asyncio.get_running_loop())

    try:
        while controller.is_active:
            line = await lines.get()
            if line is None:
                LOGGER.log(SESSION_LOG_LABEL, "Input closed; discarding session")
                await controller.cancel_reading()
                break
            command, *arguments = line.split() or [""]
            if command == "pause":
                controller.pause_reading()
            elif command == "resume":
                controller.resume_reading()
            elif command == "transcript":
                showing = controller.toggle_transcript()
                if showing:
                    print(f"> {controller.transcript or '(nothing yet)'}")
            elif command == "status":
                _print_status(controller)
            elif command == "finish":
                end_page = _parse_page(arguments)
                if end_page is None:
                    print("Usage: finish <page>")
                    continue
                finished = await controller.finish_reading(end_page)
                if finished is not None:
                    print(
                        f"Saved session: {finished.pages_read} page(s) in "
                        f"{format_elapsed(finished.duration)}"
                    )
            elif command == "cancel":
                await controller.cancel_reading()
            elif command in ("help", ""):
                print(RECORD_HELP)
            else:
                print(f"Unknown command '{command}'. {RECORD_HELP}")
    finally:
        await controller.aclose()


def _parse_page(arguments: list[str]) -> Optional[int]:
    if not arguments:
        return None
    try:
        return int(arguments[0])
    except ValueError:
        return None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        prog="reading-tracker",
        description="Track reading sessions with a live microphone transcript.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=VERBOSE_LOGGING,
        help="Show detailed diagnostic logs (capture states, recognizer events, storage).",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=DATA_DIRECTORY,
        help=f"Directory holding books.json and sessions.json (default: {DATA_DIRECTORY}).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("books", help="List catalogued books.")

    add = commands.add_parser("add-book", help="Add a book (an existing ISBN is updated).")
    add.add_argument("--isbn", required=True)
    add.add_argument("--title", required=True)
    add.add_argument("--author", required=True)
    add.add_argument("--total-pages", type=int)
    add.add_argument("--current-page", type=int, default=0)
    add.add_argument("--cover-url")

    sessions = commands.add_parser("sessions", help="List recorded reading sessions.")
    sessions.add_argument("--book", help="Only show sessions for this book id or ISBN.")

    record = commands.add_parser("record", help="Record an interactive reading session.")
    record.add_argument("--book", required=True, help="Book id, id prefix or ISBN.")
    record.add_argument(
        "--start-page",
        type=int,
        help="Override the start page (defaults to the last session's end page).",
    )

    test_audio = commands.add_parser("test-audio", help="Check microphone capture levels.")
    test_audio.add_argument("--seconds", type=float, default=5.0)
    test_rec = commands.add_parser("test-recognizer", help="Check live speech recognition.")
    test_rec.add_argument("--seconds", type=float, default=15.0)

    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None):
    """Main entry point"""

    args = parse_args(argv)
    set_verbose_logging(args.verbose)
    data_manager = JsonFileDataManager(args.data_dir)

    try:
        if args.command == "books":
            list_books(data_manager)
        elif args.command == "add-book":
            add_book(data_manager, args)
        elif args.command == "sessions":
            list_sessions(data_manager, args.book)
        elif args.command == "record":
            asyncio.run(run_record(data_manager, args.book, args.start_page))
        elif args.command == "test-audio":
            asyncio.run(test_audio_capture(args.seconds))
        elif args.command == "test-recognizer":
            asyncio.run(test_recognizer(args.seconds))
    except KeyboardInterrupt:
        LOGGER.log(SYSTEM_LOG_LABEL, "Shutdown requested")
    except Exception as e:
        LOGGER.log(ERROR_LOG_LABEL, f"CLI error: {e}", error=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
