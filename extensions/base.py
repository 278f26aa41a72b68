"""Source capability contract.

Every extension, whatever runs it (in-process module, subprocess, remote
RPC), is exposed to the rest of shiori as a SourceCapability.

Permitted failures of every method:
    SourceUnreachableError, SourceProtocolError, RateLimitedError
Anything else raised by an extension is a defect in the extension and is
converted into SourceProtocolError by guard_call().
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TypeVar

from pydantic import ValidationError

from models.models import ChapterSummary, MangaDetail, MangaSummary, PageRef
from utils.exceptions import NotFoundError, SourceError, SourceProtocolError, SourceUnreachableError

T = TypeVar("T")

CONTRACT_METHODS = ("list_manga", "manga_detail", "chapter_list", "page_list")
LIB_VERSION = "1.0.0"


class SourceCapability(ABC):
    """Abstract base class for source extensions.

    Subclasses set ``key``, ``name``, ``version`` and ``base_url`` and
    implement the four contract methods.
    """

    key: str = ""  # Source key (e.g., "mangasee")
    name: str = ""
    version: str = "0.0.0"
    lib_version: str = LIB_VERSION
    base_url: str = ""
    headers: dict[str, str] = {}  # Header overrides for proxied fetches

    @abstractmethod
    def list_manga(self, query: str, page: int = 1) -> list[MangaSummary]:
        """Search or browse manga.

        Args:
            query: Search keyword ("" browses latest)
            page: 1-based result page

        Returns an empty list when nothing matches.
        """
        raise NotImplementedError

    @abstractmethod
    def manga_detail(self, provider_id: str) -> MangaDetail:
        """Fetch manga details.

        Raises:
            NotFoundError: If the provider does not know the manga
        """
        raise NotImplementedError

    @abstractmethod
    def chapter_list(self, provider_id: str) -> list[ChapterSummary]:
        """Fetch the chapter list in the provider's natural order."""
        raise NotImplementedError

    @abstractmethod
    def page_list(self, provider_id: str, chapter_id: str) -> list[PageRef]:
        """Fetch the ordered page list of a chapter."""
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the capability (sessions, processes)."""


def missing_contract_methods(obj: object) -> list[str]:
    """Names of contract methods the object does not provide as callables."""
    return [name for name in CONTRACT_METHODS if not callable(getattr(obj, name, None))]


def guard_call(source_key: str, func: Callable[..., T], *args) -> T:
    """Invoke a capability method and confine its failures to the taxonomy."""
    try:
        return func(*args)
    except (SourceError, NotFoundError):
        raise
    except ValidationError as e:
        raise SourceProtocolError(f"Malformed response from {source_key}: {e}", source_key) from e
    except Exception as e:
        raise SourceProtocolError(
            f"Extension {source_key} failed with {type(e).__name__}: {e}", source_key
        ) from e


def call_with_timeout(
    executor: ThreadPoolExecutor,
    timeout: float,
    source_key: str,
    func: Callable[..., T],
    *args,
    on_expired: Callable[[], None] | None = None,
) -> T:
    """Run a capability call with an upper time bound.

    An expired call is reported as SourceUnreachableError; the worker thread
    is left to finish on its own and its result is discarded. on_expired runs
    before the error is raised.
    """
    future = executor.submit(guard_call, source_key, func, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as e:
        future.cancel()
        if on_expired is not None:
            on_expired()
        raise SourceUnreachableError(
            f"{source_key} did not answer within {timeout:g}s", source_key
        ) from e


class CallPool:
    """Worker threads for the capability calls of one source.

    An expired call keeps its worker busy until the extension returns. The
    pool then moves on to a fresh executor so later calls never queue behind
    it; calls already queued on the old executor still run.
    """

    def __init__(self, source_key: str, workers: int, timeout: float) -> None:
        self.source_key = source_key
        self.workers = workers
        self.timeout = timeout
        self._lock = threading.Lock()
        self._executor = self._new_executor()

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix=f"call-{self.source_key}")

    def call(self, func: Callable[..., T], *args) -> T:
        with self._lock:
            executor = self._executor
        return call_with_timeout(
            executor,
            self.timeout,
            self.source_key,
            func,
            *args,
            on_expired=lambda: self._retire(executor),
        )

    def _retire(self, executor: ThreadPoolExecutor) -> None:
        with self._lock:
            if self._executor is executor:
                self._executor = self._new_executor()
        executor.shutdown(wait=False)

    def shutdown(self) -> None:
        with self._lock:
            executor = self._executor
        executor.shutdown(wait=False, cancel_futures=True)


def release(capability: object) -> None:
    """Close a capability if it holds resources."""
    close = getattr(capability, "close", None)
    if callable(close):
        close()
