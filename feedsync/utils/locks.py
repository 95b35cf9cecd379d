"""Striped per-key locks used to serialize writes to the same Item row."""

import threading
import zlib
from contextlib import contextmanager


class KeyedLock:
    """A fixed pool of locks; a key always maps to the same lock.

    Two different keys may share a stripe, which only costs some
    parallelism, never correctness.
    """

    def __init__(self, stripes=64):
        self._locks = [threading.RLock() for _ in range(stripes)]

    def _lock_for(self, key):
        return self._locks[zlib.crc32(str(key).encode('utf-8')) % len(self._locks)]

    @contextmanager
    def hold(self, key):
        lock = self._lock_for(key)
        with lock:
            yield


# Shared between Pull Sync and the local-change path
item_locks = KeyedLock()
