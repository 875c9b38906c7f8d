from datetime import datetime, timedelta, timezone

import pytest

from reading_tracker.cli import app
from reading_tracker.session.models import Book, ReadingSession
from reading_tracker.storage.data_manager import JsonFileDataManager


def make_books() -> list[Book]:
    return [
        Book(isbn="9780141439518", title="Pride and Prejudice", author="Jane Austen", id="abc12345-1"),
        Book(isbn="9780553213119", title="Moby Dick", author="Herman Melville", id="abd99999-2"),
    ]


def test_parse_args_record_defaults() -> None:
    args = app.parse_args(["record", "--book", "abc"])

    assert args.command == "record"
    assert args.book == "abc"
    assert args.start_page is None
    assert args.verbose is False


def test_parse_args_requires_command() -> None:
    with pytest.raises(SystemExit):
        app.parse_args([])


def test_parse_args_add_book(tmp_path) -> None:
    args = app.parse_args(
        [
            "-v",
            "--data-dir",
            str(tmp_path),
            "add-book",
            "--isbn",
            "1",
            "--title",
            "Emma",
            "--author",
            "Jane Austen",
            "--total-pages",
            "474",
        ]
    )

    assert args.verbose is True
    assert args.data_dir == tmp_path
    assert args.total_pages == 474
    assert args.current_page == 0


@pytest.mark.parametrize("key", ["abc12345-1", "9780553213119", "abc"])
def test_find_book_resolves_id_isbn_and_prefix(key: str) -> None:
    books = make_books()

    found = app.find_book(books, key)

    assert found.title == ("Moby Dick" if key.startswith("978") else "Pride and Prejudice")


@pytest.mark.parametrize("key", ["ab", "zzz"])
def test_find_book_rejects_ambiguous_or_unknown(key: str) -> None:
    with pytest.raises(LookupError):
        app.find_book(make_books(), key)


def test_main_add_book_then_list(tmp_path, capsys) -> None:
    app.main(
        [
            "--data-dir",
            str(tmp_path),
            "add-book",
            "--isbn",
            "9780141439518",
            "--title",
            "Pride and Prejudice",
            "--author",
            "Jane Austen",
            "--total-pages",
            "400",
            "--current-page",
            "100",
        ]
    )
    capsys.readouterr()

    app.main(["--data-dir", str(tmp_path), "books"])

    out = capsys.readouterr().out
    assert "Pride and Prejudice by Jane Austen" in out
    assert "page 100/400 (25%)" in out
    assert len(JsonFileDataManager(tmp_path).load_books()) == 1


def test_main_lists_sessions_for_book(tmp_path, capsys) -> None:
    store = JsonFileDataManager(tmp_path)
    book = store.add_book(Book(isbn="1", title="Emma", author="Jane Austen"))
    start = datetime(2025, 4, 2, 20, 0, tzinfo=timezone.utc)
    store.add_session(
        ReadingSession(
            book_id=book.id,
            start_time=start,
            end_time=start + timedelta(minutes=30),
            start_page=10,
            end_page=25,
            transcript="Emma Woodhouse, handsome, clever, and rich",
        )
    )

    app.main(["--data-dir", str(tmp_path), "sessions", "--book", "1"])

    out = capsys.readouterr().out
    assert "Emma: pages 10-25 (15 read, 30m)" in out
    assert "Emma Woodhouse, handsome" in out


def test_main_reports_empty_store(tmp_path, capsys) -> None:
    app.main(["--data-dir", str(tmp_path), "sessions"])

    assert "No reading sessions recorded." in capsys.readouterr().out


def test_main_exits_on_unknown_book(tmp_path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        app.main(["--data-dir", str(tmp_path), "sessions", "--book", "missing"])

    assert excinfo.value.code == 1
    assert "CLI error" in capsys.readouterr().err
