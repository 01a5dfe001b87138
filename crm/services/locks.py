# crm/services/locks.py
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock


class KeyedLock:
    """
    In-process mutex per key (client id).
    Only serializes callers inside one worker process; cross-process races are
    caught by the conditional update in the expense ledger.
    """

    def __init__(self):
        self._guard = Lock()
        self._locks: dict = {}
        self._holders: dict = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            lock = self._locks.setdefault(key, Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[key] -= 1
                if self._holders[key] == 0:
                    del self._holders[key]
                    del self._locks[key]


client_locks = KeyedLock()
