"""In-process lane locks.

Writes that read a lane and then rewrite positions hold the lock for that
(department, status) pair until their transaction commits. Databases with
row locks additionally get ``SELECT ... FOR UPDATE`` on the lane row (see
``modules/queue/store.py``), which covers writers in other processes.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Optional, Tuple

from .config import LANE_LOCK_TIMEOUT
from .errors import ConcurrencyError

LaneKey = Tuple[str, str]


class LaneLocks:
    def __init__(self, timeout: Optional[float] = None):
        self.timeout = LANE_LOCK_TIMEOUT if timeout is None else timeout
        self._guard = threading.Lock()
        self._locks: Dict[LaneKey, threading.Lock] = {}

    def _lock_for(self, key: LaneKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, *keys: LaneKey):
        # Sorted acquisition keeps two multi-lane writers from deadlocking
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                if not lock.acquire(timeout=self.timeout):
                    raise ConcurrencyError(
                        f"Lane '{key[0]}' ({key[1]}) is busy, please retry."
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


# Shared by every orchestrator in this process
lane_locks = LaneLocks()
