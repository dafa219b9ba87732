"""Session storage contract and the in-process backend."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol, runtime_checkable

from .models import (
    SessionRecord,
    UserId,
    from_timestamp,
    session_key,
    user_id_of,
)
from .result import ErrorKind, StoreResult

logger = logging.getLogger(__name__)

DEFAULT_TTL = 600  # 10 minutes
DEFAULT_COLLECTION = "auth_sessions"


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol for server-side session storage.

    Every method returns a ``StoreResult``; nothing raises across this
    boundary. Logical absence is an empty successful result.
    """

    name: str

    async def has(self, session_id: str) -> StoreResult[bool]:
        """Whether an unexpired record exists. Expired records are removed."""
        ...

    async def get(self, session_id: str) -> StoreResult[SessionRecord | None]:
        """Load a record. ``None`` if missing or expired."""
        ...

    async def set(
        self,
        session_id: str,
        user: dict[str, Any],
        expires_at: datetime | None = None,
        *,
        single_session: bool = False,
    ) -> StoreResult[SessionRecord]:
        """Create or overwrite a record together with its TTL.

        A deadline already in the past stores nothing and is ``NOT_FOUND``.
        """
        ...

    async def update(
        self, session_id: str, partial: dict[str, Any], expires_at: datetime | None = None
    ) -> StoreResult[SessionRecord]:
        """Merge ``partial`` into an existing record. ``NOT_FOUND`` if absent
        or if ``expires_at`` has already passed."""
        ...

    async def remove(self, session_id: str) -> StoreResult[bool]:
        """Delete a record. Returns whether one existed."""
        ...

    async def set_user_session(self, user_id: UserId, session_id: str) -> StoreResult[bool]:
        ...

    async def get_user_active_session(self, user_id: UserId) -> StoreResult[str | None]:
        ...

    async def remove_user_session(
        self, user_id: UserId, expected: str | None = None
    ) -> StoreResult[bool]:
        """Drop the index entry; with ``expected``, only if it still matches."""
        ...

    async def swap_user_session(
        self, user_id: UserId, session_id: str, expected: str | None = None
    ) -> StoreResult[str | None]:
        """Point the index at ``session_id`` and return the displaced id."""
        ...

    async def reset_expiration(self, session_id: str) -> StoreResult[bool]:
        """Push the deadline forward by the default TTL without loading data."""
        ...

    async def all_sessions(self) -> StoreResult[dict[str, SessionRecord]]:
        ...

    async def clear(self) -> StoreResult[int]:
        ...

    async def aclose(self) -> None:
        ...


@dataclass
class _Entry:
    record: SessionRecord
    deadline: float


class InMemoryBackend:
    """In-memory session backend for development/testing.

    Not suitable for multi-process deployments: sessions are lost on restart
    and not shared across processes. Expiration is checked lazily on every
    access; ``sweep`` only reclaims space.
    """

    name = "memory"

    def __init__(
        self,
        collection: str = DEFAULT_COLLECTION,
        ttl: int = DEFAULT_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._collection = collection
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._store: dict[str, _Entry] = {}
        self._user_sessions: dict[str, str] = {}

    # ── records ──────────────────────────────────────────────────────────

    async def has(self, session_id: str) -> StoreResult[bool]:
        with self._lock:
            return StoreResult.success(self._live(session_id) is not None)

    async def get(self, session_id: str) -> StoreResult[SessionRecord | None]:
        with self._lock:
            entry = self._live(session_id)
            return StoreResult.success(entry.record if entry else None)

    async def set(
        self,
        session_id: str,
        user: dict[str, Any],
        expires_at: datetime | None = None,
        *,
        single_session: bool = False,
    ) -> StoreResult[SessionRecord]:
        record = SessionRecord(user=dict(user), expires_at=expires_at, single_session=single_session)
        key = self._key(session_id)
        with self._lock:
            deadline = self._deadline(record)
            if deadline <= self._clock():
                self._store.pop(key, None)
                return _born_expired(session_id)
            self._store[key] = _Entry(record, deadline)
        return StoreResult.success(record)

    async def update(
        self, session_id: str, partial: dict[str, Any], expires_at: datetime | None = None
    ) -> StoreResult[SessionRecord]:
        with self._lock:
            entry = self._live(session_id)
            if entry is None:
                return StoreResult.failure(
                    ErrorKind.NOT_FOUND, f"No session for id {session_id[:8]}…"
                )
            record = entry.record.merged(partial, expires_at)
            deadline = self._deadline(record) if expires_at is not None else entry.deadline
            if deadline <= self._clock():
                del self._store[self._key(session_id)]
                return _born_expired(session_id)
            self._store[self._key(session_id)] = _Entry(record, deadline)
        return StoreResult.success(record)

    async def remove(self, session_id: str) -> StoreResult[bool]:
        with self._lock:
            existed = self._live(session_id) is not None
            self._store.pop(self._key(session_id), None)
        return StoreResult.success(existed)

    async def reset_expiration(self, session_id: str) -> StoreResult[bool]:
        with self._lock:
            entry = self._live(session_id)
            if entry is None:
                return StoreResult.success(False)
            entry.deadline = self._deadline(entry.record, sliding=True)
        return StoreResult.success(True)

    # ── user → session index ─────────────────────────────────────────────

    async def set_user_session(self, user_id: UserId, session_id: str) -> StoreResult[bool]:
        with self._lock:
            self._user_sessions[str(user_id)] = session_id
        return StoreResult.success(True)

    async def get_user_active_session(self, user_id: UserId) -> StoreResult[str | None]:
        with self._lock:
            return StoreResult.success(self._user_sessions.get(str(user_id)))

    async def remove_user_session(
        self, user_id: UserId, expected: str | None = None
    ) -> StoreResult[bool]:
        with self._lock:
            current = self._user_sessions.get(str(user_id))
            if current is None:
                return StoreResult.success(False)
            if expected is not None and current != expected:
                return StoreResult.failure(
                    ErrorKind.CONFLICT, f"Index for user {user_id} moved to another session"
                )
            del self._user_sessions[str(user_id)]
        return StoreResult.success(True)

    async def swap_user_session(
        self, user_id: UserId, session_id: str, expected: str | None = None
    ) -> StoreResult[str | None]:
        with self._lock:
            current = self._user_sessions.get(str(user_id))
            if expected is not None and current != expected:
                return StoreResult.failure(
                    ErrorKind.CONFLICT, f"Index for user {user_id} moved to another session"
                )
            self._user_sessions[str(user_id)] = session_id
        return StoreResult.success(current)

    # ── bulk ─────────────────────────────────────────────────────────────

    async def all_sessions(self) -> StoreResult[dict[str, SessionRecord]]:
        prefix = f"{self._collection}:"
        with self._lock:
            sessions = {}
            for key in list(self._store):
                session_id = key[len(prefix):]
                entry = self._live(session_id)
                if entry is not None:
                    sessions[session_id] = entry.record
        return StoreResult.success(sessions)

    async def clear(self) -> StoreResult[int]:
        with self._lock:
            count = len(self._store)
            owners = set()
            for entry in self._store.values():
                try:
                    owners.add(str(user_id_of(entry.record.user)))
                except ValueError:
                    continue
            self._store.clear()
            for owner in owners:
                self._user_sessions.pop(owner, None)
        return StoreResult.success(count)

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._store.items() if entry.deadline <= now]
            for key in expired:
                del self._store[key]
        if expired:
            logger.debug("Swept %d expired sessions", len(expired))
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Sweep every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            self.sweep()

    async def aclose(self) -> None:
        return None

    # ── internals ────────────────────────────────────────────────────────

    def _key(self, session_id: str) -> str:
        return session_key(self._collection, session_id)

    def _live(self, session_id: str) -> _Entry | None:
        """Return the entry if unexpired; drop it otherwise. Caller holds the lock."""
        key = self._key(session_id)
        entry = self._store.get(key)
        if entry is None:
            return None
        now = self._clock()
        if entry.deadline <= now or entry.record.is_expired(from_timestamp(now)):
            del self._store[key]
            return None
        return entry

    def _deadline(self, record: SessionRecord, sliding: bool = False) -> float:
        default = self._clock() + self._ttl
        if record.expires_at is None:
            return default
        cap = record.expires_at.timestamp()
        return min(default, cap) if sliding else cap


def _born_expired(session_id: str) -> StoreResult[SessionRecord]:
    return StoreResult.failure(
        ErrorKind.NOT_FOUND, f"Deadline for session {session_id[:8]}… has already passed"
    )
