"""Per-key mutual exclusion for task auction state.

Keys are hashed onto a fixed set of lock stripes, so mutations on the same
task always serialize while unrelated tasks rarely contend.
"""
import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLock:
    """Striped set of re-entrant locks addressed by key."""

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be at least 1")
        self._stripes = [threading.RLock() for _ in range(stripes)]

    def _lock_for(self, key: Hashable) -> threading.RLock:
        return self._stripes[hash(str(key)) % len(self._stripes)]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._stripes)
