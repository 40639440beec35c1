"""In-process locks keyed by arbitrary hashable values."""

import threading
from collections.abc import Hashable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from typing import final


@dataclass(slots=True)
class _Entry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


@final
class KeyedLock:
    """Registry of re-entrant locks, one per key.

    Holding the lock for a key serializes every caller using the same
    key while callers with different keys proceed independently.
    A key's lock lives only while somebody holds or waits for it.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        """Count keys that are currently held or waited for."""
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        """Acquire the locks for all keys.

        Keys are acquired in a stable order so two callers asking for
        the same pair never deadlock.

        Args:
            keys: Keys to lock.

        Yields:
            None while every lock is held.
        """
        with ExitStack() as stack:
            for key in sorted(set(keys), key=repr):
                stack.enter_context(self._hold_one(key))
            yield

    @contextmanager
    def _hold_one(self, key: Hashable) -> Iterator[None]:
        lock = self._check_out(key)
        try:
            with lock:
                yield
        finally:
            self._check_in(key)

    def _check_out(self, key: Hashable) -> threading.RLock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.holders += 1
            return entry.lock

    def _check_in(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry.holders -= 1
            # Nobody holds or waits for it, the next caller gets a fresh lock
            if not entry.holders:
                del self._entries[key]
