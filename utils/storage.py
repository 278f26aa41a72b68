"""Content graph database using diskcache (SQLite backend).

Every entity is a plain dict stored under a prefixed key:
- ext:{source_key}                 extension descriptors
- manga:{source_key}:{provider_id} manga rows
- chapters:{manga_key}             full chapter list of one manga
- pages:{chapter_key}              full page list of one chapter
- history:{chapter_key}            reading progress
- update:{id:012d}                 update rows (sequence ordered)

Multi-key writes go through Database.transaction() so they commit together.
Storage failures surface as StoreUnavailableError.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from diskcache import Cache, Timeout

from utils.exceptions import StoreUnavailableError
from utils.logging import get_logger

logger = get_logger(__name__)

_STORE_ERRORS = (Timeout, sqlite3.Error, OSError)


@contextmanager
def _guard(action: str) -> Iterator[None]:
    try:
        yield
    except _STORE_ERRORS as e:
        logger.error(f"Storage failure during {action}: {e}")
        raise StoreUnavailableError(f"Storage unavailable ({action}): {e}") from e


class Database:
    """Thin wrapper over a diskcache Cache with error mapping.

    Thread-safe: diskcache keeps one SQLite connection per thread.
    """

    def __init__(self, directory: Path | str, timeout: float = 5.0) -> None:
        self.directory = Path(directory)
        with _guard("open"):
            self._cache = Cache(directory=str(self.directory), timeout=timeout)

    def get(self, key: str, default: Any = None) -> Any:
        with _guard(f"get {key}"):
            return self._cache.get(key, default=default, retry=True)

    def set(self, key: str, value: Any) -> None:
        with _guard(f"set {key}"):
            self._cache.set(key, value, retry=True)

    def delete(self, key: str) -> None:
        with _guard(f"delete {key}"):
            self._cache.delete(key, retry=True)

    def incr(self, key: str, delta: int = 1) -> int:
        """Atomically increment a counter (starts at 0)."""
        with _guard(f"incr {key}"):
            return self._cache.incr(key, delta, default=0, retry=True)

    def keys(self, prefix: str) -> list[str]:
        """Keys starting with prefix, in sort order."""
        with _guard(f"scan {prefix}"):
            return [
                key
                for key in self._cache.iterkeys()
                if isinstance(key, str) and key.startswith(prefix)
            ]

    def values(self, prefix: str) -> list[Any]:
        """Values of all keys starting with prefix, in key order."""
        result = []
        for key in self.keys(prefix):
            value = self.get(key)
            if value is not None:
                result.append(value)
        return result

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Group writes atomically. Re-entrant within one thread."""
        with _guard("transaction"):
            with self._cache.transact(retry=True):
                yield self

    def clear(self) -> None:
        with _guard("clear"):
            self._cache.clear(retry=True)

    def close(self) -> None:
        self._cache.close()


_database: Database | None = None


def get_database(directory: Path | str | None = None, timeout: float = 5.0) -> Database:
    """Lazy init of the default database (used by the CLI)."""
    global _database
    if _database is None:
        if directory is None:
            from models.config import settings

            directory = settings.storage.database_dir
            timeout = settings.storage.timeout
        _database = Database(directory, timeout=timeout)
    return _database
