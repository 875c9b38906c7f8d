"""Book and reading-session records."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class Book:
    isbn: str
    title: str
    author: str
    cover_url: Optional[str] = None
    current_page: int = 0
    total_pages: Optional[int] = None
    id: str = field(default_factory=_new_id)

    @property
    def reading_progress(self) -> float:
        if not self.total_pages or self.total_pages <= 0:
            return 0.0
        return self.current_page / self.total_pages

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "cover_url": self.cover_url,
            "current_page": self.current_page,
            "total_pages": self.total_pages,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Book:
        return cls(
            id=str(data["id"]),
            isbn=str(data.get("isbn") or ""),
            title=str(data.get("title") or ""),
            author=str(data.get("author") or ""),
            cover_url=data.get("cover_url"),
            current_page=int(data.get("current_page") or 0),
            total_pages=_optional_int(data.get("total_pages")),
        )


@dataclass
class ReadingSession:
    """
    One timed, page-bounded reading interval for a single book.

    ``end_page`` may be lower than ``start_page``; callers decide whether a
    negative ``pages_read`` is meaningful.
    """

    book_id: str
    start_time: datetime
    start_page: int
    end_time: Optional[datetime] = None
    end_page: Optional[int] = None
    transcript: str = ""
    ai_summary: Optional[str] = None
    id: str = field(default_factory=_new_id)

    @property
    def pages_read(self) -> Optional[int]:
        if self.end_page is None:
            return None
        return self.end_page - self.start_page

    @property
    def duration(self) -> float:
        """Seconds between start and end, or until now while the session is open."""

        end = self.end_time or utc_now()
        return (end - self.start_time).total_seconds()

    @property
    def reading_time_minutes(self) -> float:
        return self.duration / SECONDS_PER_MINUTE

    @property
    def formatted_duration(self) -> str:
        total = int(self.duration)
        hours = total // SECONDS_PER_HOUR
        minutes = (total % SECONDS_PER_HOUR) // SECONDS_PER_MINUTE
        if hours > 0:
            return f"{hours}h {minutes}m"
        return f"{minutes}m"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "start_page": self.start_page,
            "end_page": self.end_page,
            "transcript": self.transcript,
            "ai_summary": self.ai_summary,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadingSession:
        start_time = _parse_timestamp(data.get("start_time"))
        if start_time is None:
            raise ValueError("Reading session is missing start_time")
        return cls(
            id=str(data["id"]),
            book_id=str(data["book_id"]),
            start_time=start_time,
            end_time=_parse_timestamp(data.get("end_time")),
            start_page=int(data.get("start_page") or 1),
            end_page=_optional_int(data.get("end_page")),
            transcript=str(data.get("transcript") or ""),
            ai_summary=data.get("ai_summary"),
        )
