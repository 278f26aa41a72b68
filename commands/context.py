"""Wiring of the core services for CLI commands."""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from extensions.loader import ExtensionLoader
from models.config import AppSettings
from services.descriptor_store import DescriptorStore
from services.history_service import HistoryService
from services.relay import HotlinkRelay
from services.repository import Repository
from services.source_service import SourceService
from services.sync_service import UpdateSynchronizer
from utils.storage import Database


@dataclass
class AppContext:
    settings: AppSettings
    db: Database
    store: DescriptorStore
    loader: ExtensionLoader
    repository: Repository
    history: HistoryService
    sources: SourceService
    synchronizer: UpdateSynchronizer
    relay: HotlinkRelay


def build_context(settings: AppSettings) -> AppContext:
    db = Database(settings.storage.database_dir, timeout=settings.storage.timeout)
    store = DescriptorStore(db)
    loader = ExtensionLoader(store, settings.extensions)
    repository = Repository(db)
    history = HistoryService(db, repository)
    return AppContext(
        settings=settings,
        db=db,
        store=store,
        loader=loader,
        repository=repository,
        history=history,
        sources=SourceService(loader, repository, settings.extensions.call_timeout_seconds),
        synchronizer=UpdateSynchronizer(
            loader,
            repository,
            history,
            settings.sync,
            call_timeout=settings.extensions.call_timeout_seconds,
        ),
        relay=HotlinkRelay(store, settings.relay),
    )


@contextmanager
def app_context(settings: AppSettings) -> Iterator[AppContext]:
    ctx = build_context(settings)
    try:
        yield ctx
    finally:
        ctx.sources.close()
        ctx.relay.close()
        ctx.loader.close()
        ctx.db.close()
