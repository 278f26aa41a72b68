"""Per-key mutual exclusion.

Writers targeting the same entity (source key, manga, chapter) are
serialized; different keys never contend beyond the short registry lookup.
"""

import threading
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager


class KeyedLocks:
    """A lazily populated map of key -> threading.RLock."""

    def __init__(self) -> None:
        self._locks: defaultdict[str, threading.RLock] = defaultdict(threading.RLock)
        self._guard = threading.Lock()

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            return self._locks[key]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self.get(key):
            yield
