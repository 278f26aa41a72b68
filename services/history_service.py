"""Reading history service.

This module provides reading progress tracking:
- Recording the last page read of a chapter
- Marking chapters read when their last page is reached
- A paginated "recently read" feed (one entry per manga)

Used by: services/sync_service.py (novelty check), cli.py
"""

import base64
import binascii
from datetime import datetime

from models.models import Chapter, ChapterKey, HistoryEntry
from services.repository import Repository
from utils.exceptions import InvalidCursorError
from utils.logging import get_logger
from utils.storage import Database

logger = get_logger(__name__)

PREFIX = "history:"


def encode_cursor(entry: HistoryEntry) -> str:
    """Opaque cursor pointing just after an entry."""
    raw = f"{entry.read_at.isoformat()}|{entry.chapter_key}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> tuple[datetime, str]:
    try:
        read_at, key = base64.urlsafe_b64decode(cursor.encode()).decode().split("|", 1)
        return datetime.fromisoformat(read_at), key
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidCursorError(f"Malformed history cursor: {cursor!r}") from e


class HistoryService:
    """Per-chapter read progress."""

    def __init__(self, db: Database, repository: Repository) -> None:
        self.db = db
        self.repository = repository

    def record_progress(self, chapter: Chapter, page: int, page_count: int | None = None) -> HistoryEntry:
        """Save the reader position for a chapter.

        Args:
            chapter: Chapter being read
            page: 0-based index of the page on screen
            page_count: Number of pages (defaults to the stored page list)
        """
        if page_count is None:
            page_count = len(self.repository.get_pages(chapter))
        completed = page_count > 0 and page >= page_count - 1

        previous = self.get(chapter.key)
        entry = HistoryEntry(
            source_key=chapter.source_key,
            manga_id=chapter.manga_id,
            chapter_id=chapter.provider_id,
            last_page_read=page,
            completed=completed or (previous.completed if previous else False),
        )
        self.db.set(PREFIX + chapter.key, entry.model_dump(mode="json"))
        self.repository.update_chapter_progress(chapter, page, read=entry.completed)
        logger.debug(f"Progress {chapter.key}: page {page + 1}/{page_count}")
        return entry

    def get(self, key: ChapterKey) -> HistoryEntry | None:
        raw = self.db.get(PREFIX + key)
        return HistoryEntry.model_validate(raw) if raw else None

    def has_history(self, key: ChapterKey) -> bool:
        return self.db.get(PREFIX + key) is not None

    def reset(self, chapter: Chapter) -> None:
        """Forget reading progress for one chapter."""
        self.db.delete(PREFIX + chapter.key)

    def list_history(self, cursor: str | None = None, limit: int = 20) -> tuple[list[HistoryEntry], str | None]:
        """Most recently read chapter of each manga, newest first.

        Returns:
            (entries, next_cursor); next_cursor is None on the last page
        """
        latest: dict[str, HistoryEntry] = {}
        for raw in self.db.values(PREFIX):
            entry = HistoryEntry.model_validate(raw)
            known = latest.get(entry.manga_key)
            if known is None or entry.read_at > known.read_at:
                latest[entry.manga_key] = entry

        entries = sorted(latest.values(), key=lambda e: (e.read_at, e.chapter_key), reverse=True)
        if cursor:
            after = decode_cursor(cursor)
            entries = [e for e in entries if (e.read_at, e.chapter_key) < after]

        page = entries[:limit]
        next_cursor = encode_cursor(page[-1]) if len(entries) > limit else None
        return page, next_cursor
