"""
Shared test fixtures and configuration for the shiori test suite.

This module provides:
- Isolated diskcache databases under tmp_path
- Service fixtures (descriptor store, loader, repository, history, synchronizer)
- FakeCapability: in-memory source extension with scripted failures
- FakeSession: requests.Session stand-in serving canned responses
"""

import json
import threading
from collections.abc import Callable
from datetime import datetime, timezone

import pytest
import requests

from extensions.base import SourceCapability
from extensions.loader import ExtensionLoader
from models.config import ExtensionSettings, RelaySettings, SyncSettings
from models.models import (
    ChapterSummary,
    ExtensionDescriptor,
    ManifestEntry,
    MangaDetail,
    MangaSummary,
    PageRef,
)
from services.descriptor_store import DescriptorStore
from services.history_service import HistoryService
from services.repository import Repository
from services.sync_service import UpdateSynchronizer
from utils.storage import Database

REPO_URL = "https://repo.example"


# ========== Fakes ==========


class FakeResponse:
    """Minimal requests.Response replacement."""

    def __init__(self, status_code: int = 200, content: bytes = b"", headers: dict | None = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode()

    def json(self):
        return json.loads(self.content)

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Serves registered URLs; anything else is a connection error."""

    def __init__(self) -> None:
        self.routes: dict[str, FakeResponse] = {}
        self.calls: list[tuple[str, str, dict]] = []

    def add(self, url: str, content: bytes | str | list | dict = b"", status: int = 200, headers=None) -> None:
        if isinstance(content, (list, dict)):
            content = json.dumps(content)
        if isinstance(content, str):
            content = content.encode()
        self.routes[url] = FakeResponse(status, content, headers)

    def _respond(self, method: str, url: str, kwargs: dict) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        if url not in self.routes:
            raise requests.ConnectionError(f"No route to {url}")
        return self.routes[url]

    def get(self, url, **kwargs):
        return self._respond("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._respond("POST", url, kwargs)

    def request(self, method, url, **kwargs):
        return self._respond(method.upper(), url, kwargs)

    def close(self) -> None:
        pass

    def urls(self, method: str = "GET") -> list[str]:
        return [url for m, url, _ in self.calls if m == method]


class FakeCapability(SourceCapability):
    """Source extension backed by dicts.

    chapters: manga provider id -> list of ChapterSummary
    errors: manga provider id -> exception raised by chapter_list
    hooks: manga provider id -> callable run before chapter_list answers
    """

    def __init__(self, key: str = "alpha", base_url: str = "https://alpha.example", version: str = "1.0.0"):
        self.key = key
        self.name = key.title()
        self.version = version
        self.base_url = base_url
        self.headers = {}
        self.chapters: dict[str, list[ChapterSummary]] = {}
        self.details: dict[str, MangaDetail] = {}
        self.pages: dict[str, list[PageRef]] = {}
        self.errors: dict[str, Exception] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.calls: list[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def set_chapters(self, provider_id: str, *chapter_ids: str, published: dict | None = None) -> None:
        published = published or {}
        self.chapters[provider_id] = [
            ChapterSummary(provider_id=cid, title=f"Chapter {cid}", published_at=published.get(cid))
            for cid in chapter_ids
        ]

    def list_manga(self, query: str, page: int = 1) -> list[MangaSummary]:
        return [
            MangaSummary(provider_id=pid, title=detail.title)
            for pid, detail in self.details.items()
            if query.lower() in detail.title.lower()
        ]

    def manga_detail(self, provider_id: str) -> MangaDetail:
        from utils.exceptions import NotFoundError

        if provider_id not in self.details:
            raise NotFoundError(f"{provider_id} not found")
        return self.details[provider_id]

    def chapter_list(self, provider_id: str) -> list[ChapterSummary]:
        with self._lock:
            self.calls.append(provider_id)
        if provider_id in self.hooks:
            self.hooks[provider_id]()
        if provider_id in self.errors:
            raise self.errors[provider_id]
        return list(self.chapters.get(provider_id, []))

    def page_list(self, provider_id: str, chapter_id: str) -> list[PageRef]:
        return list(self.pages.get(chapter_id, []))

    def close(self) -> None:
        self.closed = True


MODULE_PACKAGE = '''
from extensions.base import SourceCapability
from models.models import ChapterSummary, MangaDetail, MangaSummary, PageRef


class AlphaSource(SourceCapability):
    key = "alpha"
    name = "Alpha"
    version = "@VERSION@"
    base_url = "https://alpha.example"
    headers = {"Referer": "https://alpha.example/"}

    def list_manga(self, query, page=1):
        return [MangaSummary(provider_id="M1", title="Manga One")]

    def manga_detail(self, provider_id):
        return MangaDetail(provider_id=provider_id, title="Manga One")

    def chapter_list(self, provider_id):
        return [ChapterSummary(provider_id="c1"), ChapterSummary(provider_id="c2")]

    def page_list(self, provider_id, chapter_id):
        return [PageRef(url="https://img.alpha.example/1.jpg")]
'''


def module_package(version: str = "1.0.0") -> str:
    return MODULE_PACKAGE.replace("@VERSION@", version)


def utc(year: int, month: int = 1, day: int = 1) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


# ========== Storage Fixtures ==========


@pytest.fixture
def db(tmp_path):
    """Fresh diskcache database per test."""
    database = Database(tmp_path / "db", timeout=1.0)
    yield database
    database.close()


@pytest.fixture
def store(db):
    return DescriptorStore(db)


@pytest.fixture
def repository(db):
    return Repository(db)


@pytest.fixture
def history(db, repository):
    return HistoryService(db, repository)


# ========== Extension Fixtures ==========


@pytest.fixture
def ext_settings(tmp_path):
    return ExtensionSettings(
        repository_url=REPO_URL,
        extensions_dir=tmp_path / "extensions",
        call_timeout_seconds=2.0,
        fetch_timeout_seconds=1.0,
    )


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def loader(store, ext_settings, session):
    ext_loader = ExtensionLoader(store, ext_settings, session=session)
    yield ext_loader
    ext_loader.close()


@pytest.fixture
def alpha(loader):
    """FakeCapability registered as installed source 'alpha'."""
    capability = FakeCapability("alpha")
    loader.register(capability)
    return capability


@pytest.fixture
def publish_module(session):
    """Serve a module package and its manifest entry from the fake repository."""

    def _publish(version: str = "1.0.0", lib_version: str = "1.0.0") -> ManifestEntry:
        path = f"library/alpha-{version}.py"
        session.add(f"{REPO_URL}/{path}", module_package(version))
        entry = ManifestEntry(key="alpha", name="Alpha", version=version, lib_version=lib_version, path=path)
        session.add(f"{REPO_URL}/index.json", [entry.model_dump(mode="json")])
        return entry

    return _publish


# ========== Sync Fixtures ==========


@pytest.fixture
def sync_settings():
    return SyncSettings(max_concurrent_sources=2)


@pytest.fixture
def synchronizer(loader, repository, history, sync_settings):
    return UpdateSynchronizer(loader, repository, history, sync_settings, call_timeout=2.0)


@pytest.fixture
def relay_settings():
    return RelaySettings(timeout_seconds=1.0, chunk_size=1024, user_agent="shiori-test/1.0")


# ========== Helpers ==========


@pytest.fixture
def favorite(repository):
    """Create a favorite manga, optionally with stored chapters."""

    def _favorite(source_key: str, provider_id: str, *chapter_ids: str, title: str | None = None):
        manga = repository.upsert_manga(
            source_key, MangaSummary(provider_id=provider_id, title=title or f"Manga {provider_id}")
        )
        if chapter_ids:
            repository.upsert_chapters(manga, [ChapterSummary(provider_id=cid) for cid in chapter_ids])
        return repository.set_favorite(source_key, provider_id, True)

    return _favorite


@pytest.fixture
def descriptor():
    def _descriptor(key: str = "alpha", **fields) -> ExtensionDescriptor:
        defaults = {"name": key.title(), "version": "1.0.0", "base_url": f"https://{key}.example"}
        defaults.update(fields)
        return ExtensionDescriptor(key=key, **defaults)

    return _descriptor
