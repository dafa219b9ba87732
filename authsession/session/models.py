"""Session data model and key layout."""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

UserId = Union[str, int]

SESSION_ID_BYTES = 32  # 256 bits
USER_ID_FIELD = "id"
USER_SESSION_PREFIX = "user_session"


def generate_session_id() -> str:
    """Return a fresh, unguessable session id (64 hex chars)."""
    return secrets.token_hex(SESSION_ID_BYTES)


def fingerprint(session_id: str) -> str:
    """Short, non-reversible tag for a session id, safe to log."""
    return hashlib.sha256(session_id.encode()).hexdigest()[:12]


def user_id_of(user: dict[str, Any]) -> UserId:
    """Extract the stable user identifier from a payload."""
    user_id = user.get(USER_ID_FIELD) if isinstance(user, dict) else None
    if user_id is None or user_id == "":
        raise ValueError("User payload must contain an 'id'")
    return user_id


def session_key(collection: str, session_id: str) -> str:
    return f"{collection}:{session_id}"


def user_session_key(user_id: UserId) -> str:
    return f"{USER_SESSION_PREFIX}:{user_id}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def from_timestamp(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@dataclass(frozen=True)
class SessionRecord:
    """A persisted session: the user payload plus an optional hard deadline.

    ``expires_at`` of ``None`` means the store's default TTL applies; it does
    not mean the session never expires. ``single_session`` records whether the
    session was issued under one-session-per-user enforcement, so reads and
    rotations keep the user index consistent whatever the coordinator default.
    """

    user: dict[str, Any]
    expires_at: datetime | None = field(default=None)
    single_session: bool = False

    @property
    def user_id(self) -> UserId:
        return user_id_of(self.user)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def merged(self, partial: dict[str, Any], expires_at: datetime | None = None) -> SessionRecord:
        """Return a copy with ``partial`` shallow-merged into the user payload."""
        return SessionRecord(
            user={**self.user, **partial},
            expires_at=expires_at if expires_at is not None else self.expires_at,
            single_session=self.single_session,
        )

    def to_json(self) -> str:
        expires = self.expires_at.isoformat() if self.expires_at else None
        return json.dumps({"user": self.user, "expires": expires, "single": self.single_session})

    @classmethod
    def from_json(cls, raw: str | bytes) -> SessionRecord:
        """Decode a stored record.

        Raises:
            MalformedRecord: If ``raw`` is not a record this module wrote.
        """
        try:
            data = json.loads(raw)
            expires = data.get("expires")
            return cls.build(
                data["user"],
                expires_at=datetime.fromisoformat(expires) if expires else None,
                single_session=bool(data.get("single", False)),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise MalformedRecord(f"Malformed session record: {exc}") from exc

    @classmethod
    def build(
        cls,
        user: Any,
        *,
        expires_at: datetime | None = None,
        single_session: bool = False,
    ) -> SessionRecord:
        """Construct a record from decoded parts, checking the user payload."""
        if not isinstance(user, dict):
            raise MalformedRecord("Session user payload is not an object")
        try:
            user_id_of(user)
        except ValueError as exc:
            raise MalformedRecord(str(exc)) from exc
        if expires_at is not None and expires_at.tzinfo is None:
            raise MalformedRecord("Session deadline has no timezone")
        return cls(user=user, expires_at=expires_at, single_session=single_session)


class MalformedRecord(ValueError):
    """A stored value that does not decode to a ``SessionRecord``."""
