"""Update synchronizer.

One run walks the library (favorite manga grouped by source), asks each
source for its current chapter list and records newly discovered chapters
as Update rows.

Failure isolation:
- a source that cannot be resolved is recorded and skipped
- a manga whose chapter_list fails is recorded with its error kind and
  skipped, without retry in the same run
- everything that succeeded is committed regardless
- StoreUnavailableError is fatal to the run and propagates

Sources run in parallel (sync.max_concurrent_sources), each with its own
call workers so a hung source cannot starve the others. Manga of one source
are fetched serially unless sync.source_concurrency/manga_concurrency allow
more; commits always follow library order so Update ids are reproducible.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor

from extensions.base import CallPool, SourceCapability
from extensions.loader import ExtensionLoader
from models.config import SyncSettings
from models.models import ChapterSummary, Manga, SourceKey, utcnow
from models.report import (
    FailureScope,
    MangaResult,
    SourceResult,
    SyncFailure,
    SyncReport,
    SyncState,
)
from services.history_service import HistoryService
from services.repository import Repository
from utils.exceptions import (
    NotFoundError,
    NotInstalledError,
    ShioriError,
    SourceError,
    StoreUnavailableError,
)
from utils.logging import get_logger

logger = get_logger(__name__)

FetchOutcome = list[ChapterSummary] | SyncFailure


class UpdateSynchronizer:
    """Runs synchronization passes over the library."""

    def __init__(
        self,
        loader: ExtensionLoader,
        repository: Repository,
        history: HistoryService,
        config: SyncSettings,
        call_timeout: float = 30.0,
    ) -> None:
        self.loader = loader
        self.repository = repository
        self.history = history
        self.config = config
        self.call_timeout = call_timeout
        self.state = SyncState.IDLE
        self.last_report: SyncReport | None = None
        self._cancel = threading.Event()
        self._running = threading.Lock()

    def cancel(self) -> None:
        """Stop dispatching new manga work. In-flight fetches still commit."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> SyncReport:
        """Execute one synchronization pass.

        Raises:
            ShioriError: If another run is in progress
            StoreUnavailableError: If the database fails while committing
        """
        if not self._running.acquire(blocking=False):
            raise ShioriError("A sync run is already in progress")
        try:
            return self._run()
        finally:
            self._running.release()

    def _run(self) -> SyncReport:
        self._cancel.clear()
        self.state = SyncState.RUNNING
        report = SyncReport(state=SyncState.RUNNING, started_at=utcnow())
        favorites = self.repository.get_favorites()
        logger.info(
            f"Sync started: {sum(len(m) for m in favorites.values())} manga across {len(favorites)} source(s)"
        )

        fatal: StoreUnavailableError | None = None
        with ThreadPoolExecutor(
            max_workers=self.config.max_concurrent_sources, thread_name_prefix="sync-source"
        ) as pool:
            futures: dict[SourceKey, Future] = {
                key: pool.submit(self._sync_source, key, mangas) for key, mangas in favorites.items()
            }
            for key, future in futures.items():
                try:
                    report.sources.append(future.result())
                except StoreUnavailableError as e:
                    logger.error(f"Storage failure while syncing {key}: {e}")
                    fatal = fatal or e
                    self._cancel.set()

        if fatal is not None:
            report.finish()
            report.state = SyncState.PARTIALLY_FAILED
            self.state = report.state
            self.last_report = report
            raise fatal

        report.finish(cancelled=self.cancelled)
        self.state = report.state
        self.last_report = report
        logger.info(
            f"Sync {report.state.value}: {report.new_chapter_count} new chapter(s), "
            f"{len(report.failures)} failure(s)"
        )
        return report

    def run_forever(self, interval_seconds: float, stop: threading.Event) -> None:
        """Run passes every interval until stop is set (periodic library refresh)."""
        while not stop.is_set():
            try:
                self.run()
            except StoreUnavailableError as e:
                logger.error(f"Sync pass aborted: {e}")
            stop.wait(interval_seconds)

    # ========== Per source ==========

    def _sync_source(self, source_key: SourceKey, mangas: list[Manga]) -> SourceResult:
        result = SourceResult(source_key=source_key)
        try:
            capability = self.loader.resolve(source_key)
        except StoreUnavailableError:
            raise
        except Exception as e:
            if isinstance(e, NotInstalledError):
                logger.warning(f"Skipping {source_key}: {e}")
                kind = "not_installed"
            else:
                logger.exception(f"Skipping {source_key}: resolving the source failed")
                kind = getattr(e, "kind", "resolve_failed")
            result.resolved = False
            result.failures.append(
                SyncFailure(scope=FailureScope.SOURCE, source_key=source_key, kind=kind, message=str(e))
            )
            return result

        concurrency = self.config.concurrency_for(source_key)
        calls = CallPool(source_key, concurrency, self.call_timeout)
        try:
            if concurrency == 1:
                for manga in mangas:
                    if self.cancelled:
                        result.skipped.append(manga.key)
                        continue
                    self._commit(result, manga, self._fetch(calls, capability, manga))
            else:
                self._sync_parallel(result, calls, capability, mangas, concurrency)
        finally:
            calls.shutdown()
        return result

    def _sync_parallel(
        self,
        result: SourceResult,
        calls: CallPool,
        capability: SourceCapability,
        mangas: list[Manga],
        concurrency: int,
    ) -> None:
        """Fetch up to `concurrency` chapter lists at once, commit in library order."""
        slots = threading.BoundedSemaphore(concurrency)
        dispatched: list[tuple[Manga, Future]] = []
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"sync-{result.source_key}") as pool:
            for manga in mangas:
                slots.acquire()
                if self.cancelled:
                    slots.release()
                    result.skipped.append(manga.key)
                    continue
                future = pool.submit(self._fetch, calls, capability, manga)
                future.add_done_callback(lambda _f: slots.release())
                dispatched.append((manga, future))
            for manga, future in dispatched:
                self._commit(result, manga, future.result())

    def _fetch(self, calls: CallPool, capability: SourceCapability, manga: Manga) -> FetchOutcome:
        try:
            return calls.call(capability.chapter_list, manga.provider_id)
        except (SourceError, NotFoundError) as e:
            kind = getattr(e, "kind", "not_found")
            return SyncFailure(
                scope=FailureScope.MANGA,
                source_key=manga.source_key,
                manga_key=manga.key,
                kind=kind,
                message=str(e),
            )

    def _commit(self, result: SourceResult, manga: Manga, outcome: FetchOutcome) -> None:
        if isinstance(outcome, SyncFailure):
            logger.warning(f"{manga.key} ({manga.title}): {outcome.kind}: {outcome.message}")
            result.failures.append(outcome)
            return

        upsert, updates = self.repository.commit_sync(
            manga, outcome, utcnow(), skip=lambda c: self.history.has_history(c.key)
        )
        result.mangas.append(
            MangaResult(
                manga_key=manga.key,
                title=manga.title,
                new_chapters=[c.provider_id for c in upsert.created],
                update_ids=[u.id for u in updates],
            )
        )
