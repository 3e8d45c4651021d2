from __future__ import annotations

import threading
import weakref


# Per-standup mutual exclusion within this process. A lock lives only while
# some caller holds it; conditional UPDATEs keep other processes honest.
_locks: "weakref.WeakValueDictionary[int, threading.Lock]" = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()


def standup_lock(standup_id: int) -> threading.Lock:
    with _locks_guard:
        lock = _locks.get(standup_id)
        if lock is None:
            lock = threading.Lock()
            _locks[standup_id] = lock
        return lock

