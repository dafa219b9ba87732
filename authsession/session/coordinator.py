"""Session lifecycle on top of a StorageAdapter.

The coordinator sequences adapter calls for login, read, update, rotation
and logout. It is transport-agnostic: every operation returns one of the
outcome dataclasses below and never raises for storage failures.

Per session id the states are Active → Superseded | Expired | Destroyed,
all terminal. Superseded only happens under single-session enforcement.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Union

from .. import ocsf
from .backend import StorageAdapter
from .models import (
    SessionRecord,
    UserId,
    fingerprint,
    generate_session_id,
    user_id_of,
    utcnow,
)
from .result import ErrorKind, StoreError, StoreResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Issued:
    """A new session id was written and (under enforcement) indexed."""

    session_id: str
    record: SessionRecord


@dataclass(frozen=True)
class Authenticated:
    session_id: str
    user: dict[str, Any]


@dataclass(frozen=True)
class Unauthenticated:
    reason: str  # "missing" | "not_found" | "expired" | "superseded"


@dataclass(frozen=True)
class Destroyed:
    existed: bool


@dataclass(frozen=True)
class Unavailable:
    error: StoreError


CreateOutcome = Union[Issued, Unavailable]
ReadOutcome = Union[Authenticated, Unauthenticated, Unavailable]
RotateOutcome = Union[Issued, Unauthenticated, Unavailable]
DestroyOutcome = Union[Destroyed, Unavailable]


class SessionCoordinator:
    """Create, read, update, rotate and destroy sessions.

    Args:
        adapter: Where records and the user → session index live.
        single_session: Default for enforcing one active session per user.
        sliding_expiration: Refresh the TTL on every successful read.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        *,
        single_session: bool = False,
        sliding_expiration: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.adapter = adapter
        self.single_session = single_session
        self.sliding_expiration = sliding_expiration
        self._clock = clock
        self._touches: set[asyncio.Task] = set()

    async def create(
        self,
        user: dict[str, Any],
        *,
        expires_at: datetime | None = None,
        single_session: bool | None = None,
    ) -> CreateOutcome:
        """Start a session for ``user`` and return its id.

        The enforcement choice is stored with the session, so later reads and
        rotations honour it whatever the coordinator default is.

        Raises:
            ValueError: If ``user`` has no ``id`` or ``expires_at`` has passed.
        """
        user_id = user_id_of(user)
        self._check_deadline(expires_at)
        enforce = self.single_session if single_session is None else single_session

        if enforce:
            await self._evict_active(user_id)

        session_id = generate_session_id()
        written = await self.adapter.set(session_id, user, expires_at, single_session=enforce)
        if not written.ok:
            return self._unavailable("create", written.error, user_id=user_id)

        if enforce:
            swapped = await self.adapter.swap_user_session(user_id, session_id)
            if not swapped.ok:
                await self._discard(session_id)
                return self._unavailable("create", swapped.error, user_id=user_id)
            displaced = swapped.value
            if displaced and displaced != session_id:
                # A concurrent login got indexed between our eviction and swap.
                await self._discard(displaced)
                self._superseded_event(user_id, displaced)

        ocsf.session_event(
            activity_id=ocsf.AuthActivity.LOGON,
            status_id=ocsf.Status.SUCCESS,
            user_id=user_id,
            session_id=session_id,
            message="Session created",
        )
        return Issued(session_id=session_id, record=written.value)

    async def read(self, session_id: str | None) -> ReadOutcome:
        """Resolve a session id to its user payload."""
        outcome, _ = await self._resolve(session_id)
        if isinstance(outcome, Authenticated) and self.sliding_expiration:
            self._touch(outcome.session_id)
        return outcome

    async def _resolve(
        self, session_id: str | None
    ) -> tuple[ReadOutcome, SessionRecord | None]:
        if not session_id:
            return Unauthenticated("missing"), None

        loaded = await self.adapter.get(session_id)
        if not loaded.ok:
            return self._unavailable("read", loaded.error), None
        record = loaded.value
        if record is None or not record.user:
            return Unauthenticated("not_found"), None
        if record.is_expired(self._clock()):
            await self._discard(session_id)
            return Unauthenticated("expired"), None

        if record.single_session:
            user_id = user_id_of(record.user)
            active = await self.adapter.get_user_active_session(user_id)
            if not active.ok:
                return self._unavailable("read", active.error, user_id=user_id), None
            if active.value != session_id:
                await self._discard(session_id)
                self._superseded_event(user_id, session_id)
                return Unauthenticated("superseded"), None

        return Authenticated(session_id=session_id, user=record.user), record

    async def update(
        self,
        session_id: str,
        patch: dict[str, Any],
        *,
        expires_at: datetime | None = None,
    ) -> ReadOutcome:
        """Merge ``patch`` into the payload without changing the id.

        Raises:
            ValueError: If ``patch`` tries to change the user id, or
                ``expires_at`` has passed.
        """
        self._check_deadline(expires_at)
        current, _ = await self._resolve(session_id)
        if not isinstance(current, Authenticated):
            return current
        _check_same_user(current.user, patch)

        updated = await self.adapter.update(session_id, patch, expires_at)
        if updated.kind is ErrorKind.NOT_FOUND:
            return Unauthenticated("not_found")
        if not updated.ok:
            return self._unavailable("update", updated.error)
        return Authenticated(session_id=session_id, user=updated.value.user)

    async def rotate(
        self,
        session_id: str,
        patch: dict[str, Any] | None = None,
        *,
        expires_at: datetime | None = None,
    ) -> RotateOutcome:
        """Replace ``session_id`` with a fresh id carrying the merged payload.

        The new record is written (and indexed) before the old one is
        removed, so the user always has a valid session under enforcement.
        The new id inherits the session's enforcement choice.
        """
        self._check_deadline(expires_at)
        current, record = await self._resolve(session_id)
        if not isinstance(current, Authenticated):
            return current
        patch = patch or {}
        _check_same_user(current.user, patch)
        user_id = user_id_of(current.user)
        merged = record.merged(patch, expires_at)

        new_id = generate_session_id()
        written = await self.adapter.set(
            new_id, merged.user, merged.expires_at, single_session=merged.single_session
        )
        if not written.ok:
            return self._unavailable("rotate", written.error, user_id=user_id)

        if merged.single_session:
            swapped = await self.adapter.swap_user_session(user_id, new_id, expected=session_id)
            if swapped.kind is ErrorKind.CONFLICT:
                # Another login replaced this session while we were rotating.
                await self._discard(new_id)
                await self._discard(session_id)
                self._superseded_event(user_id, session_id)
                return Unauthenticated("superseded")
            if not swapped.ok:
                await self._discard(new_id)
                return self._unavailable("rotate", swapped.error, user_id=user_id)

        await self._discard(session_id)
        ocsf.session_event(
            activity_id=ocsf.AuthActivity.SERVICE_TICKET,
            status_id=ocsf.Status.SUCCESS,
            user_id=user_id,
            session_id=new_id,
            message="Session rotated",
            extra_metadata={"previous_session": fingerprint(session_id)},
        )
        return Issued(session_id=new_id, record=written.value)

    async def destroy(self, session_id: str | None) -> DestroyOutcome:
        """Remove a session and its index entry. Safe to repeat."""
        if not session_id:
            return Destroyed(existed=False)

        # Owner first: once the record is gone there is no way to find it.
        loaded = await self.adapter.get(session_id)
        if not loaded.ok:
            return self._unavailable("destroy", loaded.error)
        record = loaded.value

        removed = await self.adapter.remove(session_id)
        if not removed.ok:
            return self._unavailable("destroy", removed.error)

        if record is not None:
            user_id = user_id_of(record.user)
            cleared = await self.adapter.remove_user_session(user_id, expected=session_id)
            if not cleared.ok and cleared.kind is not ErrorKind.CONFLICT:
                return self._unavailable("destroy", cleared.error, user_id=user_id)
            ocsf.session_event(
                activity_id=ocsf.AuthActivity.LOGOFF,
                status_id=ocsf.Status.SUCCESS,
                user_id=user_id,
                session_id=session_id,
                message="Session destroyed",
            )
        return Destroyed(existed=bool(removed.value))

    async def list_sessions(self) -> StoreResult[dict[str, SessionRecord]]:
        return await self.adapter.all_sessions()

    async def drain(self) -> None:
        """Wait for outstanding sliding-expiration touches."""
        if self._touches:
            await asyncio.gather(*self._touches, return_exceptions=True)

    # ── internals ────────────────────────────────────────────────────────

    async def _evict_active(self, user_id: UserId) -> None:
        """Best-effort removal of the user's current session before a new login."""
        active = await self.adapter.get_user_active_session(user_id)
        if not active.ok:
            logger.warning("Could not look up active session for user %s: %s", user_id, active.error)
            return
        previous = active.value
        if not previous:
            return
        removed = await self.adapter.remove(previous)
        if not removed.ok:
            logger.warning("Could not remove superseded session for user %s: %s", user_id, removed.error)
        cleared = await self.adapter.remove_user_session(user_id, expected=previous)
        if not cleared.ok and cleared.kind is not ErrorKind.CONFLICT:
            logger.warning("Could not clear session index for user %s: %s", user_id, cleared.error)
        self._superseded_event(user_id, previous)

    async def _discard(self, session_id: str) -> None:
        removed = await self.adapter.remove(session_id)
        if not removed.ok:
            logger.error("Failed to remove session %s: %s", fingerprint(session_id), removed.error)

    def _check_deadline(self, expires_at: datetime | None) -> None:
        if expires_at is not None and expires_at <= self._clock():
            raise ValueError("Session deadline is already in the past")

    def _touch(self, session_id: str) -> None:
        task = asyncio.create_task(self._reset(session_id))
        self._touches.add(task)
        task.add_done_callback(self._touches.discard)

    async def _reset(self, session_id: str) -> None:
        result = await self.adapter.reset_expiration(session_id)
        if not result.ok:
            logger.warning("Sliding expiration failed for %s: %s", fingerprint(session_id), result.error)

    def _superseded_event(self, user_id: UserId, session_id: str) -> None:
        ocsf.session_event(
            activity_id=ocsf.AuthActivity.OTHER,
            status_id=ocsf.Status.FAILURE,
            severity_id=ocsf.Severity.LOW,
            user_id=user_id,
            session_id=session_id,
            message="Session superseded by a newer login",
        )

    @staticmethod
    def _unavailable(op: str, error: StoreError | None, user_id: UserId | None = None) -> Unavailable:
        error = error or StoreError(ErrorKind.UNAVAILABLE, f"{op} failed")
        logger.error("Session %s failed: %s", op, error)
        ocsf.session_event(
            activity_id=ocsf.AuthActivity.OTHER,
            status_id=ocsf.Status.FAILURE,
            severity_id=ocsf.Severity.HIGH,
            user_id=user_id,
            message=f"Session store unavailable during {op}",
        )
        return Unavailable(error=error)


def _check_same_user(user: dict[str, Any], patch: dict[str, Any]) -> None:
    if "id" in patch and patch["id"] != user_id_of(user):
        raise ValueError("A session patch cannot change the user id")
