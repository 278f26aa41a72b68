"""Content graph repository: Manga, Chapter, Page and Update persistence.

Naming follows the rest of the codebase:
    get_*     read-only queries (library listing, reader, history view)
    upsert_*  reconciliation of data returned by a capability call
    add_*     rows created by the synchronizer

Chapters absent from a remote list are never deleted: providers paginate
and temporarily omit entries, and a deletion could not be undone.
"""

from collections.abc import Callable
from datetime import datetime, timezone

from models.models import (
    Chapter,
    ChapterSummary,
    Manga,
    MangaDetail,
    MangaKey,
    MangaSummary,
    Page,
    PageRef,
    ProviderId,
    SourceKey,
    Update,
    UpsertResult,
    manga_key,
    utcnow,
)
from utils.exceptions import NotFoundError
from utils.locks import KeyedLocks
from utils.logging import get_logger
from utils.storage import Database

logger = get_logger(__name__)

LIBRARY_KEY = "library"
UPDATE_SEQUENCE_KEY = "seq:update"
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def display_order(chapter: Chapter) -> tuple:
    """Sort key: published timestamp when present, else provider order."""
    return (chapter.published_at is None, chapter.published_at or _EPOCH, chapter.position)


class Repository:
    """Reads and reconciles the Source -> Manga -> Chapter -> Page graph.

    Safe under concurrent writers for different manga; writers for the
    same manga or chapter are serialized by per-entity locks.
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self._locks = KeyedLocks()

    # ========== Manga ==========

    def upsert_manga(self, source_key: SourceKey, info: MangaSummary) -> Manga:
        """Create or refresh a manga from list_manga/manga_detail data.

        Keeps the local favorite flag and sync timestamp.
        """
        key = manga_key(source_key, info.provider_id)
        with self._locks.hold(key):
            raw = self.db.get(f"manga:{key}")
            current = Manga.model_validate(raw) if raw else None
            fields = info.model_dump(exclude_none=True)
            if not isinstance(info, MangaDetail):
                # A summary carries no detail fields; keep what we know
                fields = {k: v for k, v in fields.items() if k in ("provider_id", "title", "cover_url")}
            if current is None:
                manga = Manga(source_key=source_key, **fields)
            else:
                manga = current.model_copy(update=fields)
            self.db.set(f"manga:{key}", manga.model_dump(mode="json"))
        return manga

    def get_manga(self, source_key: SourceKey, provider_id: ProviderId) -> Manga:
        """Get a stored manga.

        Raises:
            NotFoundError: If the manga was never fetched
        """
        raw = self.db.get(f"manga:{manga_key(source_key, provider_id)}")
        if raw is None:
            raise NotFoundError(f"Unknown manga {source_key}/{provider_id}")
        return Manga.model_validate(raw)

    def get_manga_list(self, source_key: SourceKey | None = None) -> list[Manga]:
        prefix = f"manga:{source_key}:" if source_key else "manga:"
        return [Manga.model_validate(raw) for raw in self.db.values(prefix)]

    def set_favorite(self, source_key: SourceKey, provider_id: ProviderId, favorite: bool = True) -> Manga:
        """Add or remove a manga from the library (favorites)."""
        key = manga_key(source_key, provider_id)
        with self._locks.hold(key), self.db.transaction():
            manga = self.get_manga(source_key, provider_id).model_copy(update={"favorite": favorite})
            self.db.set(f"manga:{key}", manga.model_dump(mode="json"))
            library = [k for k in self.db.get(LIBRARY_KEY, []) if k != key]
            if favorite:
                library.append(key)
            self.db.set(LIBRARY_KEY, library)
        logger.debug(f"{'Added' if favorite else 'Removed'} {key} {'to' if favorite else 'from'} library")
        return manga

    def get_favorites(self) -> dict[SourceKey, list[Manga]]:
        """Favorite manga grouped by source, in the order they were added."""
        grouped: dict[SourceKey, list[Manga]] = {}
        for key in self.db.get(LIBRARY_KEY, []):
            raw = self.db.get(f"manga:{key}")
            if raw is None:
                continue
            manga = Manga.model_validate(raw)
            if manga.favorite:
                grouped.setdefault(manga.source_key, []).append(manga)
        return grouped

    def mark_synced(self, manga: Manga, at: datetime) -> Manga:
        with self._locks.hold(manga.key):
            current = self.get_manga(manga.source_key, manga.provider_id)
            updated = current.model_copy(update={"last_synced_at": at})
            self.db.set(f"manga:{manga.key}", updated.model_dump(mode="json"))
        return updated

    # ========== Chapters ==========

    def _load_chapters(self, key: MangaKey) -> list[Chapter]:
        return [Chapter.model_validate(raw) for raw in self.db.get(f"chapters:{key}", [])]

    def upsert_chapters(self, manga: Manga, remote: list[ChapterSummary]) -> UpsertResult:
        """Reconcile a remote chapter list with stored chapters.

        Matching is by chapter provider id. Unmatched remote entries are
        inserted after the existing ones, in the order given; matched ones
        are left untouched; stored chapters missing remotely are kept.
        Calling twice with the same list creates nothing the second time.
        """
        with self._locks.hold(manga.key):
            stored = self._load_chapters(manga.key)
            by_id = {chapter.provider_id: chapter for chapter in stored}
            next_position = max((c.position for c in stored), default=-1) + 1

            result = UpsertResult()
            seen: set[ProviderId] = set()
            for summary in remote:
                if summary.provider_id in seen:
                    continue  # provider listed the same chapter twice
                seen.add(summary.provider_id)
                existing = by_id.get(summary.provider_id)
                if existing is not None:
                    result.unchanged.append(existing)
                    continue
                chapter = Chapter(
                    source_key=manga.source_key,
                    manga_id=manga.provider_id,
                    provider_id=summary.provider_id,
                    title=summary.title,
                    number=summary.number,
                    published_at=summary.published_at,
                    position=next_position,
                )
                next_position += 1
                by_id[chapter.provider_id] = chapter
                stored.append(chapter)
                result.created.append(chapter)

            if result.created:
                with self.db.transaction():
                    self.db.set(
                        f"chapters:{manga.key}", [c.model_dump(mode="json") for c in stored]
                    )
                logger.debug(f"{manga.key}: {len(result.created)} new chapter(s)")
        return result

    def get_chapters(self, manga: Manga) -> list[Chapter]:
        """Chapters in display order (oldest first)."""
        return sorted(self._load_chapters(manga.key), key=display_order)

    def get_chapter(self, source_key: SourceKey, manga_id: ProviderId, chapter_id: ProviderId) -> Chapter:
        """Raises NotFoundError if the chapter is unknown."""
        for chapter in self._load_chapters(manga_key(source_key, manga_id)):
            if chapter.provider_id == chapter_id:
                return chapter
        raise NotFoundError(f"Unknown chapter {source_key}/{manga_id}/{chapter_id}")

    def get_adjacent_chapters(self, chapter: Chapter) -> tuple[Chapter | None, Chapter | None]:
        """Previous and next chapters in display order (for the reader)."""
        chapters = sorted(self._load_chapters(chapter.manga_key), key=display_order)
        ids = [c.provider_id for c in chapters]
        try:
            idx = ids.index(chapter.provider_id)
        except ValueError as e:
            raise NotFoundError(f"Unknown chapter {chapter.key}") from e
        prev_chapter = chapters[idx - 1] if idx > 0 else None
        next_chapter = chapters[idx + 1] if idx + 1 < len(chapters) else None
        return prev_chapter, next_chapter

    def update_chapter_progress(self, chapter: Chapter, last_page_read: int, read: bool) -> Chapter:
        """Store reading position on the chapter row."""
        with self._locks.hold(chapter.manga_key):
            chapters = self._load_chapters(chapter.manga_key)
            for idx, stored in enumerate(chapters):
                if stored.provider_id == chapter.provider_id:
                    updated = stored.model_copy(
                        update={"last_page_read": last_page_read, "read": stored.read or read}
                    )
                    chapters[idx] = updated
                    break
            else:
                raise NotFoundError(f"Unknown chapter {chapter.key}")
            self.db.set(f"chapters:{chapter.manga_key}", [c.model_dump(mode="json") for c in chapters])
        return updated

    # ========== Pages ==========

    def upsert_pages(self, chapter: Chapter, remote: list[PageRef]) -> list[Page]:
        """Replace the whole page set of a chapter.

        The list is written as one value, so readers observe either the old
        complete set or the new one.
        """
        pages = [Page(index=idx, url=ref.url) for idx, ref in enumerate(remote)]
        with self._locks.hold(chapter.key), self.db.transaction():
            self.db.set(f"pages:{chapter.key}", [p.model_dump(mode="json") for p in pages])
        return pages

    def get_pages(self, chapter: Chapter) -> list[Page]:
        return [Page.model_validate(raw) for raw in self.db.get(f"pages:{chapter.key}", [])]

    # ========== Updates ==========

    def add_updates(
        self,
        manga: Manga,
        chapters: list[Chapter],
        discovered_at: datetime | None = None,
        backfilled: set[ProviderId] | None = None,
    ) -> list[Update]:
        """Append Update rows for newly discovered chapters, in the given order.

        Returns an empty list when the manga is not (or no longer) a favorite.
        """
        discovered_at = discovered_at or utcnow()
        backfilled = backfilled or set()
        updates = []
        with self._locks.hold(manga.key), self.db.transaction():
            current = self.get_manga(manga.source_key, manga.provider_id)
            if not current.favorite:
                logger.debug(f"Skipping updates for non-favorite {manga.key}")
                return []
            for chapter in chapters:
                update = Update(
                    id=self.db.incr(UPDATE_SEQUENCE_KEY),
                    source_key=manga.source_key,
                    manga_id=manga.provider_id,
                    chapter_id=chapter.provider_id,
                    discovered_at=discovered_at,
                    backfilled=chapter.provider_id in backfilled,
                )
                self.db.set(f"update:{update.id:012d}", update.model_dump(mode="json"))
                updates.append(update)
        return updates

    def commit_sync(
        self,
        manga: Manga,
        remote: list[ChapterSummary],
        at: datetime,
        skip: Callable[[Chapter], bool] | None = None,
    ) -> tuple[UpsertResult, list[Update]]:
        """Store a synced chapter list, its Update rows and the sync time together.

        Either all three writes commit or none does, so chapters are never
        stored without the Update rows that announce them.

        Args:
            manga: The manga as loaded before this run (its last_synced_at
                decides which new chapters are backfilled)
            remote: Chapter list returned by the source
            at: Discovery and sync timestamp
            skip: Chapters for which it returns True get no Update row
        """
        with self._locks.hold(manga.key), self.db.transaction():
            upsert = self.upsert_chapters(manga, remote)
            novel = [c for c in upsert.created if not (skip and skip(c))]
            backfilled = {
                c.provider_id
                for c in novel
                if manga.last_synced_at and c.published_at and c.published_at < manga.last_synced_at
            }
            if backfilled:
                logger.debug(f"{manga.key}: {len(backfilled)} backfilled chapter(s) surfaced as updates")
            updates = self.add_updates(manga, novel, at, backfilled) if novel else []
            self.mark_synced(manga, at)
        return upsert, updates

    def get_updates(self, unseen_only: bool = False, limit: int | None = None) -> list[Update]:
        """Updates, newest first."""
        updates = [Update.model_validate(raw) for raw in reversed(self.db.values("update:"))]
        if unseen_only:
            updates = [u for u in updates if not u.seen]
        return updates[:limit] if limit is not None else updates

    def mark_updates_seen(self, ids: list[int] | None = None) -> int:
        """Acknowledge updates (all unseen ones when ids is None)."""
        count = 0
        with self.db.transaction():
            for update in self.get_updates(unseen_only=True):
                if ids is not None and update.id not in ids:
                    continue
                seen = update.model_copy(update={"seen": True})
                self.db.set(f"update:{update.id:012d}", seen.model_dump(mode="json"))
                count += 1
        return count

    def prune_seen_updates(self) -> int:
        """Delete acknowledged update rows."""
        count = 0
        with self.db.transaction():
            for update in self.get_updates():
                if update.seen:
                    self.db.delete(f"update:{update.id:012d}")
                    count += 1
        return count

    # ========== Sources ==========

    def purge_source(self, source_key: SourceKey) -> int:
        """Delete manga, chapters, pages and updates of a source.

        Reading history is kept so re-synced chapters are not flagged as new.
        Returns the number of deleted rows.
        """
        prefixes = (f"manga:{source_key}:", f"chapters:{source_key}:", f"pages:{source_key}:")
        count = 0
        with self.db.transaction():
            for prefix in prefixes:
                for key in self.db.keys(prefix):
                    self.db.delete(key)
                    count += 1
            for update in self.get_updates():
                if update.source_key == source_key:
                    self.db.delete(f"update:{update.id:012d}")
                    count += 1
            library = self.db.get(LIBRARY_KEY, [])
            self.db.set(LIBRARY_KEY, [k for k in library if not k.startswith(f"{source_key}:")])
        logger.info(f"Purged {count} row(s) of source {source_key}")
        return count
