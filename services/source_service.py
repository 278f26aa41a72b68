"""Browsing sources.

Manga, chapters and pages only enter the content graph through a capability
call. This service is that path for interactive use (search, open a manga,
open a chapter); the synchronizer is the path for library refreshes.

Browsing never creates Update rows: chapters seen while opening a manga are
already known to the reader.
"""

import threading

from extensions.base import CallPool
from extensions.loader import ExtensionLoader
from models.models import Chapter, Manga, Page, ProviderId, SourceKey
from services.repository import Repository
from utils.logging import get_logger

logger = get_logger(__name__)


class SourceService:
    """Capability calls whose results are reconciled into the repository."""

    def __init__(self, loader: ExtensionLoader, repository: Repository, call_timeout: float = 30.0) -> None:
        self.loader = loader
        self.repository = repository
        self.call_timeout = call_timeout
        self._pools: dict[SourceKey, CallPool] = {}
        self._pools_lock = threading.Lock()

    def _call(self, source_key: SourceKey, method: str, *args):
        capability = self.loader.resolve(source_key)
        with self._pools_lock:
            calls = self._pools.get(source_key)
            if calls is None:
                calls = self._pools[source_key] = CallPool(source_key, 2, self.call_timeout)
        return calls.call(getattr(capability, method), *args)

    def search(self, source_key: SourceKey, query: str = "", page: int = 1) -> list[Manga]:
        """Search a source and store the results.

        Raises:
            NotInstalledError: If the source is not installed
            SourceError: On capability failures
        """
        results = self._call(source_key, "list_manga", query, page)
        logger.debug(f"{source_key}: {len(results)} result(s) for {query!r} (page {page})")
        return [self.repository.upsert_manga(source_key, summary) for summary in results]

    def open_manga(self, source_key: SourceKey, provider_id: ProviderId) -> tuple[Manga, list[Chapter]]:
        """Refresh a manga's details and chapter list.

        Raises:
            NotFoundError: If the source does not know the manga
        """
        detail = self._call(source_key, "manga_detail", provider_id)
        manga = self.repository.upsert_manga(source_key, detail)
        remote = self._call(source_key, "chapter_list", provider_id)
        self.repository.upsert_chapters(manga, remote)
        return manga, self.repository.get_chapters(manga)

    def add_to_library(self, source_key: SourceKey, provider_id: ProviderId) -> Manga:
        """Favorite a manga after storing its current chapters.

        Chapters present at this point are not reported as updates by the
        next sync run.
        """
        self.open_manga(source_key, provider_id)
        return self.repository.set_favorite(source_key, provider_id, True)

    def open_chapter(self, chapter: Chapter) -> list[Page]:
        """Fetch and store the page list of a chapter."""
        remote = self._call(chapter.source_key, "page_list", chapter.manga_id, chapter.provider_id)
        return self.repository.upsert_pages(chapter, remote)

    def close(self) -> None:
        with self._pools_lock:
            pools, self._pools = list(self._pools.values()), {}
        for calls in pools:
            calls.shutdown()
