import json
from datetime import datetime, timedelta, timezone

import pytest

from reading_tracker.core.exceptions import StorageError
from reading_tracker.session.models import Book, ReadingSession
from reading_tracker.storage import data_manager as data_manager_module
from reading_tracker.storage.data_manager import InMemoryDataManager, JsonFileDataManager

START = datetime(2025, 4, 2, 20, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["memory", "json"])
def data_manager(request, tmp_path):
    if request.param == "memory":
        return InMemoryDataManager()
    return JsonFileDataManager(tmp_path / "store")


def make_session(book_id: str, *, offset_days: int = 0, end_page=None) -> ReadingSession:
    start = START + timedelta(days=offset_days)
    return ReadingSession(
        book_id=book_id,
        start_time=start,
        end_time=start + timedelta(minutes=45) if end_page is not None else None,
        start_page=1,
        end_page=end_page,
    )


def test_add_book_deduplicates_by_isbn(data_manager) -> None:
    first = data_manager.add_book(Book(isbn="111", title="Draft", author="A"))
    second = data_manager.add_book(Book(isbn="111", title="Final", author="A", total_pages=300))

    books = data_manager.load_books()
    assert len(books) == 1
    assert books[0].id == first.id
    assert second.id == first.id
    assert books[0].title == "Final"
    assert books[0].total_pages == 300


def test_update_book_replaces_matching_record(data_manager) -> None:
    book = data_manager.add_book(Book(isbn="222", title="Emma", author="Jane Austen"))
    book.current_page = 57

    data_manager.update_book(book)

    assert data_manager.load_books()[0].current_page == 57


def test_delete_book_cascades_sessions(data_manager) -> None:
    kept = data_manager.add_book(Book(isbn="1", title="Kept", author="K"))
    dropped = data_manager.add_book(Book(isbn="2", title="Dropped", author="D"))
    data_manager.add_session(make_session(kept.id, end_page=10))
    data_manager.add_session(make_session(dropped.id, end_page=20))

    data_manager.delete_book(dropped.id)

    assert [book.id for book in data_manager.load_books()] == [kept.id]
    assert [s.book_id for s in data_manager.load_sessions()] == [kept.id]


def test_session_update_and_delete(data_manager) -> None:
    session = make_session("book-1", end_page=10)
    data_manager.add_session(session)
    session.ai_summary = "A short summary."

    data_manager.update_session(session)
    assert data_manager.load_sessions()[0].ai_summary == "A short summary."

    data_manager.delete_session(session.id)
    assert data_manager.load_sessions() == []


def test_sessions_for_book_filters(data_manager) -> None:
    data_manager.add_session(make_session("a", end_page=5))
    data_manager.add_session(make_session("b", end_page=6))
    data_manager.add_session(make_session("a", offset_days=1, end_page=9))

    assert [s.end_page for s in data_manager.sessions_for_book("a")] == [5, 9]


def test_recently_read_books_orders_by_latest_session(data_manager) -> None:
    books = [
        data_manager.add_book(Book(isbn=str(index), title=f"Book {index}", author="X"))
        for index in range(4)
    ]
    data_manager.add_session(make_session(books[0].id, offset_days=0, end_page=1))
    data_manager.add_session(make_session(books[1].id, offset_days=3, end_page=1))
    data_manager.add_session(make_session(books[2].id, offset_days=1, end_page=1))
    data_manager.add_session(make_session(books[3].id, offset_days=2, end_page=1))
    data_manager.add_session(make_session(books[1].id, offset_days=4, end_page=1))

    recent = data_manager.recently_read_books()

    assert [book.title for book in recent] == ["Book 1", "Book 3", "Book 2"]


def test_json_store_round_trips_sessions(tmp_path) -> None:
    store = JsonFileDataManager(tmp_path)
    session = ReadingSession(
        book_id="book-1",
        start_time=START,
        end_time=START + timedelta(hours=1, minutes=5),
        start_page=80,
        end_page=120,
        transcript="It was the best of times",
    )
    store.add_session(session)

    reloaded = JsonFileDataManager(tmp_path).load_sessions()

    assert reloaded == [session]
    assert reloaded[0].pages_read == 40
    payload = json.loads((tmp_path / "sessions.json").read_text(encoding="utf-8"))
    assert payload[0]["start_time"] == "2025-04-02T20:00:00+00:00"


def test_json_store_reports_corrupt_files(tmp_path) -> None:
    (tmp_path / "books.json").write_text("{not json", encoding="utf-8")
    store = JsonFileDataManager(tmp_path)

    with pytest.raises(StorageError):
        store.load_books()


@pytest.mark.parametrize("target", ["replace", "dump"])
def test_failed_write_leaves_no_temp_files(tmp_path, monkeypatch, target) -> None:
    store = JsonFileDataManager(tmp_path)
    store.add_book(Book(isbn="9780140449136", title="Crime and Punishment", author="Dostoevsky"))

    def disk_full(*args, **kwargs):
        raise OSError("No space left on device")

    if target == "replace":
        monkeypatch.setattr(data_manager_module.os, "replace", disk_full)
    else:
        monkeypatch.setattr(data_manager_module.json, "dump", disk_full)

    with pytest.raises(StorageError):
        store.add_book(Book(isbn="9780141182636", title="The Great Gatsby", author="Fitzgerald"))

    monkeypatch.undo()
    assert sorted(p.name for p in tmp_path.iterdir()) == ["books.json"]
    assert [book.title for book in store.load_books()] == ["Crime and Punishment"]


def test_json_store_starts_empty_when_files_missing(tmp_path) -> None:
    store = JsonFileDataManager(tmp_path / "missing")

    assert store.load_books() == []
    assert store.load_sessions() == []
