"""Per-source mutex for overlapping passes within one process."""
import threading
from contextlib import contextmanager
from typing import Dict


class SourceLocks:
    """One lock per source_id, created on first use"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, source_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(str(source_id), threading.Lock())

    @contextmanager
    def hold(self, source_id: str):
        lock = self.lock_for(source_id)
        with lock:
            yield
