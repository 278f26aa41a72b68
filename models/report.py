"""Synchronization run report models.

A sync run never collapses into a single pass/fail flag: every source and
every favorite manga gets its own result, failures carry their kind.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from models.models import MangaKey, SourceKey, utcnow


class SyncState(str, Enum):
    """Lifecycle of one synchronization run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    CANCELLED = "cancelled"


class FailureScope(str, Enum):
    SOURCE = "source"
    MANGA = "manga"


class SyncFailure(BaseModel):
    """One isolated failure recorded during a run."""

    scope: FailureScope
    source_key: SourceKey
    manga_key: MangaKey | None = None
    kind: str = Field(..., description="Error kind (e.g., 'rate_limited', 'not_installed')")
    message: str = ""


class MangaResult(BaseModel):
    """Successful synchronization of one favorite manga."""

    manga_key: MangaKey
    title: str
    new_chapters: list[str] = Field(default_factory=list, description="Chapter provider ids")
    update_ids: list[int] = Field(default_factory=list)


class SourceResult(BaseModel):
    """Per-source outcome."""

    source_key: SourceKey
    resolved: bool = True
    mangas: list[MangaResult] = Field(default_factory=list)
    failures: list[SyncFailure] = Field(default_factory=list)
    skipped: list[MangaKey] = Field(
        default_factory=list, description="Manga not dispatched because the run was cancelled"
    )

    @property
    def succeeded(self) -> bool:
        return self.resolved and not self.failures


class SyncReport(BaseModel):
    """Structured summary of one run."""

    state: SyncState = SyncState.IDLE
    started_at: datetime | None = None
    finished_at: datetime | None = None
    sources: list[SourceResult] = Field(default_factory=list)
    cancelled: bool = Field(False, description="cancel() stopped dispatching manga work")

    @property
    def failures(self) -> list[SyncFailure]:
        return [failure for source in self.sources for failure in source.failures]

    @property
    def new_chapter_count(self) -> int:
        return sum(len(m.new_chapters) for source in self.sources for m in source.mangas)

    @property
    def update_ids(self) -> list[int]:
        return [uid for source in self.sources for m in source.mangas for uid in m.update_ids]

    def failure_for(self, manga: MangaKey) -> SyncFailure | None:
        """Return the failure recorded for a manga, if any."""
        for failure in self.failures:
            if failure.manga_key == manga:
                return failure
        return None

    def source(self, source_key: SourceKey) -> SourceResult | None:
        for result in self.sources:
            if result.source_key == source_key:
                return result
        return None

    def finish(self, cancelled: bool = False) -> None:
        """Set the terminal state from the collected results.

        Failures outrank cancellation: a cancelled run that also recorded
        failures ends PARTIALLY_FAILED, with ``cancelled`` still set.
        """
        self.finished_at = utcnow()
        self.cancelled = cancelled
        if self.failures:
            self.state = SyncState.PARTIALLY_FAILED
        elif cancelled:
            self.state = SyncState.CANCELLED
        else:
            self.state = SyncState.COMPLETED
