"""Pydantic data models for the content graph and the extension registry.

Defines:
- ExtensionDescriptor / ManifestEntry: installed and available extensions
- MangaSummary / MangaDetail / ChapterSummary / PageRef: capability DTOs
- Manga / Chapter / Page / Update / HistoryEntry: persisted entities
"""

from datetime import datetime, timezone
from enum import Enum
from typing import TypeAlias
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.versions import parse_version

# Type aliases for common patterns
SourceKey: TypeAlias = str
ProviderId: TypeAlias = str
MangaKey: TypeAlias = str  # "{source_key}:{provider_id}"
ChapterKey: TypeAlias = str  # "{manga_key}:{chapter_provider_id}"

SOURCE_KEY_PATTERN = r"^[A-Za-z0-9_.-]+$"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Normalize to UTC; naive provider timestamps are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _escape_id(provider_id: ProviderId) -> str:
    # ":" separates key parts; "%" is escaped too so keys stay unambiguous
    return quote(provider_id, safe="/")


def manga_key(source_key: SourceKey, provider_id: ProviderId) -> MangaKey:
    return f"{source_key}:{_escape_id(provider_id)}"


def chapter_key(manga: MangaKey, provider_id: ProviderId) -> ChapterKey:
    return f"{manga}:{_escape_id(provider_id)}"


# ========== Extension registry ==========


class SourceState(str, Enum):
    """Install state of a source extension."""

    AVAILABLE = "available"
    INSTALLED = "installed"
    UPDATE_AVAILABLE = "update_available"
    DISABLED = "disabled"


class ExtensionKind(str, Enum):
    """Implementation technology behind a capability."""

    MODULE = "module"  # in-process Python module
    PROCESS = "process"  # JSON over a subprocess's stdin/stdout
    REMOTE = "remote"  # JSON RPC over HTTP


class ManifestEntry(BaseModel):
    """One extension listed in the remote repository's index.json.

    Attributes:
        key: Provider-assigned source key
        name: Display name
        version: Extension version ("1.2.0")
        lib_version: Capability contract version the extension targets
        kind: Implementation technology
        path: Package location relative to the repository URL
        icon: Optional icon URL
    """

    model_config = ConfigDict(frozen=True)

    key: SourceKey = Field(..., pattern=SOURCE_KEY_PATTERN, description="Source key")
    name: str = Field(..., min_length=1, description="Display name")
    version: str = Field(..., min_length=1, description="Extension version")
    lib_version: str = Field("1.0.0", description="Targeted contract version")
    kind: ExtensionKind = Field(ExtensionKind.MODULE, description="Implementation kind")
    path: str = Field(..., min_length=1, description="Package path in the repository")
    icon: str | None = Field(None, description="Icon URL")

    @field_validator("version", "lib_version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Reject versions that cannot be compared."""
        parse_version(v)
        return v


class ExtensionDescriptor(BaseModel):
    """Immutable record of a known extension.

    Attributes:
        key: Stable source key (immutable once installed)
        name: Display name
        version: Installed version
        base_url: Provider endpoint, used as default Referer by the relay
        headers: Header overrides applied on proxied fetches
        kind: Implementation technology
        package: Installed artifact (file path, or endpoint for remote kind)
        state: Install state
    """

    model_config = ConfigDict(frozen=True)

    key: SourceKey = Field(..., pattern=SOURCE_KEY_PATTERN)
    name: str = Field(..., min_length=1)
    version: str = Field(..., min_length=1)
    lib_version: str = Field("1.0.0")
    base_url: str = Field("", description="Provider base URL")
    headers: dict[str, str] = Field(default_factory=dict, description="Header spoofing policy")
    kind: ExtensionKind = Field(ExtensionKind.MODULE)
    package: str = Field("", description="Installed package reference")
    icon: str | None = None
    state: SourceState = Field(SourceState.INSTALLED)
    installed_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.state in (SourceState.INSTALLED, SourceState.UPDATE_AVAILABLE)


# ========== Capability DTOs ==========


class MangaStatus(str, Enum):
    """Manga publication status."""

    ONGOING = "ongoing"
    COMPLETED = "completed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "MangaStatus":
        """Map free-form provider status strings onto the enum."""
        text = (value or "").strip().lower()
        if text in ("ongoing", "publishing", "releasing"):
            return cls.ONGOING
        if text in ("completed", "complete", "finished", "ended"):
            return cls.COMPLETED
        return cls.UNKNOWN


class MangaSummary(BaseModel):
    """Manga entry as returned by list_manga."""

    provider_id: ProviderId = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    cover_url: str | None = None


class MangaDetail(MangaSummary):
    """Full manga information as returned by manga_detail."""

    author: str | None = None
    genres: list[str] = Field(default_factory=list)
    status: MangaStatus = MangaStatus.UNKNOWN
    description: str | None = None


class ChapterSummary(BaseModel):
    """Chapter entry as returned by chapter_list (provider order)."""

    provider_id: ProviderId = Field(..., min_length=1)
    title: str = ""
    number: str | None = Field(None, description="Chapter number (e.g., '42', '42.5')")
    published_at: datetime | None = None

    @field_validator("published_at")
    @classmethod
    def validate_published_at(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class PageRef(BaseModel):
    """Page reference as returned by page_list."""

    url: str = Field(..., min_length=1, description="Image URL or provider page token")


# ========== Persisted entities ==========


class Manga(BaseModel):
    """A work known through exactly one source."""

    source_key: SourceKey
    provider_id: ProviderId
    title: str
    cover_url: str | None = None
    status: MangaStatus = MangaStatus.UNKNOWN
    author: str | None = None
    genres: list[str] = Field(default_factory=list)
    description: str | None = None
    favorite: bool = False
    last_synced_at: datetime | None = None

    @field_validator("last_synced_at")
    @classmethod
    def validate_last_synced_at(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def key(self) -> MangaKey:
        return manga_key(self.source_key, self.provider_id)


class Chapter(BaseModel):
    """A chapter of one manga."""

    source_key: SourceKey
    manga_id: ProviderId
    provider_id: ProviderId
    title: str = ""
    number: str | None = None
    published_at: datetime | None = None
    position: int = Field(0, ge=0, description="Provider insertion order")
    read: bool = False
    last_page_read: int = Field(0, ge=0)

    @field_validator("published_at")
    @classmethod
    def validate_published_at(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)

    @property
    def manga_key(self) -> MangaKey:
        return manga_key(self.source_key, self.manga_id)

    @property
    def key(self) -> ChapterKey:
        return chapter_key(self.manga_key, self.provider_id)

    def display_name(self) -> str:
        """Format chapter for display.

        Returns:
            Formatted string like "Ch. 42 - Title" or "Ch. 42" if no title.
        """
        if self.number and self.title:
            return f"Ch. {self.number} - {self.title}"
        if self.number:
            return f"Ch. {self.number}"
        return self.title or self.provider_id


class Page(BaseModel):
    """A page of one chapter. Index is contiguous from 0."""

    index: int = Field(..., ge=0)
    url: str = Field(..., min_length=1)


class Update(BaseModel):
    """A newly discovered chapter of a favorite manga."""

    id: int = Field(..., ge=0)
    source_key: SourceKey
    manga_id: ProviderId
    chapter_id: ProviderId
    discovered_at: datetime = Field(default_factory=utcnow)
    seen: bool = False
    backfilled: bool = Field(
        False, description="Published before the manga's previous sync"
    )

    @property
    def manga_key(self) -> MangaKey:
        return manga_key(self.source_key, self.manga_id)

    @property
    def chapter_key(self) -> ChapterKey:
        return chapter_key(self.manga_key, self.chapter_id)


class HistoryEntry(BaseModel):
    """Reading progress for one chapter."""

    source_key: SourceKey
    manga_id: ProviderId
    chapter_id: ProviderId
    last_page_read: int = Field(0, ge=0)
    read_at: datetime = Field(default_factory=utcnow)
    completed: bool = False

    @property
    def manga_key(self) -> MangaKey:
        return manga_key(self.source_key, self.manga_id)

    @property
    def chapter_key(self) -> ChapterKey:
        return chapter_key(self.manga_key, self.chapter_id)


class UpsertResult(BaseModel):
    """Outcome of reconciling a remote chapter list."""

    created: list[Chapter] = Field(default_factory=list)
    unchanged: list[Chapter] = Field(default_factory=list)
