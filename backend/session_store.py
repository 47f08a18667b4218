from __future__ import annotations

import threading
import time
from typing import Dict, MutableMapping, Optional, Tuple

from .session_memory import SessionState


class SessionStore:
    """In-process server-side sessions keyed by the visitor cookie.

    Each visitor owns a bag of per-tenant SessionState objects. A bag expires
    `ttl_seconds` after its last use, matching the cookie lifetime.
    """

    def __init__(self, ttl_seconds: float = 7 * 24 * 60 * 60, max_sessions: Optional[int] = None) -> None:
        self._ttl = ttl_seconds
        self._max_sessions = max_sessions
        self._bags: Dict[str, Tuple[float, Dict[str, SessionState]]] = {}
        self._turn_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    def bag(self, visitor_id: str) -> MutableMapping[str, SessionState]:
        now = time.time()
        with self._lock:
            self._expire(now)
            ent = self._bags.get(visitor_id)
            bag = ent[1] if ent else {}
            self._bags[visitor_id] = (now, bag)
            self._prune()
            return bag

    def turn_lock(self, visitor_id: str, tenant_id: str) -> threading.Lock:
        """Lock serializing turns of one (visitor, tenant) pair."""
        key = (visitor_id, tenant_id)
        with self._lock:
            lock = self._turn_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._turn_locks[key] = lock
            return lock

    def discard(self, visitor_id: str) -> None:
        with self._lock:
            self._drop(visitor_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._bags)

    def _drop(self, visitor_id: str) -> None:
        self._bags.pop(visitor_id, None)
        # held locks survive eviction
        for key in [k for k, lock in self._turn_locks.items() if k[0] == visitor_id and not lock.locked()]:
            self._turn_locks.pop(key, None)

    def _expire(self, now: float) -> None:
        stale = [vid for vid, (ts, _) in self._bags.items() if (now - ts) > self._ttl]
        for vid in stale:
            self._drop(vid)

    def _prune(self) -> None:
        if not self._max_sessions or len(self._bags) <= self._max_sessions:
            return
        oldest = sorted(self._bags.items(), key=lambda kv: kv[1][0])
        for vid, _ in oldest[: len(self._bags) - self._max_sessions]:
            self._drop(vid)
