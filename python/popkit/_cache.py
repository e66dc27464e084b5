"""Thread-safe memoization keyed by hashable values."""

from __future__ import annotations

import threading
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class KeyedCache(Generic[K, V]):
    """A cache whose entries are computed under a lock of their own.

    The table lock is only held while looking up or creating the per-key lock,
    so computing one entry never blocks readers or writers of another key.
    """

    def __init__(self) -> None:
        self._values: dict[K, V] = {}
        self._locks: dict[K, threading.Lock] = {}
        self._table_lock = threading.Lock()

    def get_or_compute(self, key: K, compute: Callable[[], V]) -> V:
        try:
            return self._values[key]
        except KeyError:
            pass

        with self._table_lock:
            lock = self._locks.setdefault(key, threading.Lock())

        with lock:
            # Another caller may have filled it while we waited
            if key in self._values:
                return self._values[key]
            value = compute()
            self._values[key] = value
            return value

    def clear(self) -> None:
        with self._table_lock:
            self._values.clear()
            self._locks.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)
