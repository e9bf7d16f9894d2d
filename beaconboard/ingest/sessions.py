"""Per-client assembly buffers with inactivity expiry."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from beaconboard.errors import CapacityError
from beaconboard.log import get_logger

log = get_logger(__name__)


@dataclass
class ClientSession:
    identity: str
    last_activity: float

    identity_buf: str = ""
    name_buf: str = ""
    time_buf: str = ""
    counter_buf: str = ""
    world_tag: str = ""

    handshake_at: float | None = None
    # Storage key this session last wrote, and the name behind it.
    bound_key: str | None = None
    committed_name: str | None = None

    def clear(self) -> None:
        self.identity_buf = ""
        self.name_buf = ""
        self.time_buf = ""
        self.counter_buf = ""
        self.world_tag = ""
        self.handshake_at = None
        self.bound_key = None
        self.committed_name = None


class SessionStore:
    """In-memory, process-local session map.

    All access happens on the event loop thread, so plain dict operations are
    safe. Read-modify-write sequences that await (commits) must hold
    ``lock(identity)`` for their whole duration.
    """

    def __init__(self, ttl_sec: float, max_sessions: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.ttl = float(ttl_sec)
        self.max_sessions = int(max_sessions)
        self.now = clock
        self._sessions: dict[str, ClientSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def _expired(self, s: ClientSession, now: float) -> bool:
        return now - s.last_activity > self.ttl

    def get(self, identity: str) -> ClientSession | None:
        s = self._sessions.get(identity)
        if s is None:
            return None
        if self._expired(s, self.now()):
            self._evict(identity)
            return None
        return s

    def get_or_create(self, identity: str) -> ClientSession:
        s = self.get(identity)
        if s is not None:
            return s
        if len(self._sessions) >= self.max_sessions:
            self.sweep()
            if len(self._sessions) >= self.max_sessions:
                raise CapacityError("session store at capacity")
        s = ClientSession(identity=identity, last_activity=self.now())
        self._sessions[identity] = s
        return s

    def touch(self, identity: str) -> None:
        s = self._sessions.get(identity)
        if s is not None:
            s.last_activity = self.now()

    def reset(self, identity: str) -> ClientSession:
        s = self.get_or_create(identity)
        s.clear()
        s.last_activity = self.now()
        return s

    def lock(self, identity: str) -> asyncio.Lock:
        lk = self._locks.get(identity)
        if lk is None:
            lk = asyncio.Lock()
            self._locks[identity] = lk
        return lk

    def sweep(self) -> int:
        now = self.now()
        stale = [k for k, s in self._sessions.items() if self._expired(s, now)]
        removed = 0
        for k in stale:
            lk = self._locks.get(k)
            if lk is not None and lk.locked():
                # A commit is in flight; it will touch the session when done.
                continue
            self._evict(k)
            removed += 1
        orphans = [k for k, lk in self._locks.items() if k not in self._sessions and not lk.locked()]
        for k in orphans:
            del self._locks[k]
        if removed:
            log.info("sessions_swept", removed=removed, remaining=len(self._sessions))
        return removed

    def _evict(self, identity: str) -> None:
        self._sessions.pop(identity, None)
        lk = self._locks.get(identity)
        if lk is not None and not lk.locked():
            self._locks.pop(identity, None)
