"""Redis session backend for multi-process deployments.

Key layout:
    <collection>:<session_id>   JSON-encoded SessionRecord, native TTL
    user_session:<user_id>      active session id (single-session index)

Index keys carry no TTL: a shorter TTL than a slid session would make the
session look superseded.
"""

from __future__ import annotations

import logging
import math
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar

from redis import asyncio as redis_async
from redis.exceptions import RedisError

from .backend import DEFAULT_COLLECTION, DEFAULT_TTL
from .models import (
    MalformedRecord,
    SessionRecord,
    UserId,
    fingerprint,
    from_timestamp,
    session_key,
    user_id_of,
    user_session_key,
)
from .result import ErrorKind, StoreError, StoreResult, bounded

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCAN_BATCH = 500

# KEYS[1] index key, ARGV[1] new session id, ARGV[2] expected current id.
# Returns the previous id, or nil if the index no longer holds ARGV[2].
SWAP_IF_MATCH = """
local current = redis.call('GET', KEYS[1])
if current ~= ARGV[2] then
    return false
end
redis.call('SET', KEYS[1], ARGV[1])
return current
"""

# KEYS[1] index key, ARGV[1] expected id. 1 deleted, 0 absent, -1 mismatch.
DELETE_IF_MATCH = """
local current = redis.call('GET', KEYS[1])
if not current then
    return 0
end
if current ~= ARGV[1] then
    return -1
end
return redis.call('DEL', KEYS[1])
"""


class RedisBackend:
    """Session backend using Redis (``redis.asyncio``).

    Each write stores the payload and its expiry in a single command, so no
    reader ever sees a record without a TTL. Every call is bounded by
    ``timeout``; a timeout or connection error is reported as
    ``UNAVAILABLE``.
    """

    name = "redis"

    def __init__(
        self,
        collection: str = DEFAULT_COLLECTION,
        ttl: int = DEFAULT_TTL,
        url: str = "redis://localhost:6379/0",
        client: redis_async.Redis | None = None,
        timeout: float = 2.0,
        log_timing: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._collection = collection
        self._ttl = ttl
        self._timeout = timeout
        self._log_timing = log_timing
        self._clock = clock
        self._redis = client or redis_async.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        self._swap_if_match = self._redis.register_script(SWAP_IF_MATCH)
        self._delete_if_match = self._redis.register_script(DELETE_IF_MATCH)

    @property
    def client(self) -> redis_async.Redis:
        return self._redis

    # ── records ──────────────────────────────────────────────────────────

    async def has(self, session_id: str) -> StoreResult[bool]:
        result = await self.get(session_id)
        if not result.ok:
            return StoreResult(error=result.error)
        return StoreResult.success(result.value is not None)

    async def get(self, session_id: str) -> StoreResult[SessionRecord | None]:
        key = self._key(session_id)

        async def _get() -> SessionRecord | None:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            record = self._decode(key, raw)
            if record is None or record.is_expired(from_timestamp(self._clock())):
                await self._redis.delete(key)
                return None
            return record

        return await self._run("get", _get, session_id=session_id)

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

        async def _set() -> SessionRecord:
            await self._write(key, record)
            return record

        return await self._run("set", _set, session_id=session_id)

    async def update(
        self, session_id: str, partial: dict[str, Any], expires_at: datetime | None = None
    ) -> StoreResult[SessionRecord]:
        key = self._key(session_id)

        async def _update() -> SessionRecord:
            raw = await self._redis.get(key)
            current = self._decode(key, raw) if raw is not None else None
            if current is None or current.is_expired(from_timestamp(self._clock())):
                raise StoreError(ErrorKind.NOT_FOUND, f"No session for id {session_id[:8]}…")
            record = current.merged(partial, expires_at)
            if expires_at is None:
                await self._redis.set(key, record.to_json(), keepttl=True)
            else:
                await self._write(key, record)
            return record

        return await self._run("update", _update, session_id=session_id)

    async def remove(self, session_id: str) -> StoreResult[bool]:
        key = self._key(session_id)

        async def _remove() -> bool:
            return await self._redis.delete(key) == 1

        return await self._run("remove", _remove, session_id=session_id)

    async def reset_expiration(self, session_id: str) -> StoreResult[bool]:
        key = self._key(session_id)

        async def _touch() -> bool:
            # GT never shortens a longer explicit deadline.
            if await self._redis.expire(key, self._ttl, gt=True):
                return True
            return await self._redis.exists(key) == 1

        return await self._run("reset_expiration", _touch, session_id=session_id)

    # ── user → session index ─────────────────────────────────────────────

    async def set_user_session(self, user_id: UserId, session_id: str) -> StoreResult[bool]:
        async def _set() -> bool:
            return bool(await self._redis.set(user_session_key(user_id), session_id))

        return await self._run("set_user_session", _set, user_id=str(user_id))

    async def get_user_active_session(self, user_id: UserId) -> StoreResult[str | None]:
        async def _get() -> str | None:
            return await self._redis.get(user_session_key(user_id))

        return await self._run("get_user_active_session", _get, user_id=str(user_id))

    async def remove_user_session(
        self, user_id: UserId, expected: str | None = None
    ) -> StoreResult[bool]:
        key = user_session_key(user_id)

        async def _remove() -> bool:
            if expected is None:
                return await self._redis.delete(key) == 1
            outcome = await self._delete_if_match(keys=[key], args=[expected])
            if int(outcome) < 0:
                raise StoreError(
                    ErrorKind.CONFLICT, f"Index for user {user_id} moved to another session"
                )
            return int(outcome) == 1

        return await self._run("remove_user_session", _remove, user_id=str(user_id))

    async def swap_user_session(
        self, user_id: UserId, session_id: str, expected: str | None = None
    ) -> StoreResult[str | None]:
        key = user_session_key(user_id)

        async def _swap() -> str | None:
            if expected is None:
                return await self._redis.set(key, session_id, get=True)
            previous = await self._swap_if_match(keys=[key], args=[session_id, expected])
            if previous is None:
                raise StoreError(
                    ErrorKind.CONFLICT, f"Index for user {user_id} moved to another session"
                )
            return previous

        return await self._run("swap_user_session", _swap, user_id=str(user_id))

    # ── bulk ─────────────────────────────────────────────────────────────

    async def all_sessions(self) -> StoreResult[dict[str, SessionRecord]]:
        async def _all() -> dict[str, SessionRecord]:
            keys = await self._scan_keys()
            prefix = f"{self._collection}:"
            sessions: dict[str, SessionRecord] = {}
            now = from_timestamp(self._clock())
            for start in range(0, len(keys), SCAN_BATCH):
                batch = keys[start:start + SCAN_BATCH]
                async with self._redis.pipeline(transaction=False) as pipe:
                    for key in batch:
                        pipe.get(key)
                    values = await pipe.execute()
                for key, raw in zip(batch, values):
                    if raw is None:
                        continue
                    record = self._decode(key, raw)
                    if record is not None and not record.is_expired(now):
                        sessions[key[len(prefix):]] = record
            return sessions

        return await self._run("all_sessions", _all)

    async def clear(self) -> StoreResult[int]:
        async def _clear() -> int:
            listing = await self.all_sessions()
            records = listing.unwrap()
            keys = await self._scan_keys()
            async with self._redis.pipeline(transaction=False) as pipe:
                for key in keys:
                    pipe.delete(key)
                for owner in {str(user_id_of(r.user)) for r in records.values()}:
                    pipe.delete(user_session_key(owner))
                await pipe.execute()
            return len(keys)

        return await self._run("clear", _clear)

    async def ping(self) -> bool:
        result = await self._run("ping", self._redis.ping)
        return bool(result.ok and result.value)

    async def aclose(self) -> None:
        await self._redis.aclose()

    # ── internals ────────────────────────────────────────────────────────

    def _key(self, session_id: str) -> str:
        return session_key(self._collection, session_id)

    async def _write(self, key: str, record: SessionRecord) -> None:
        if record.expires_at is None:
            await self._redis.set(key, record.to_json(), ex=self._ttl)
            return
        remaining_ms = math.ceil((record.expires_at.timestamp() - self._clock()) * 1000)
        if remaining_ms <= 0:
            # Born expired: make sure nothing stale is left behind.
            await self._redis.delete(key)
            raise StoreError(ErrorKind.NOT_FOUND, "Session deadline has already passed")
        await self._redis.set(key, record.to_json(), px=remaining_ms)

    def _decode(self, key: str, raw: str) -> SessionRecord | None:
        try:
            return SessionRecord.from_json(raw)
        except MalformedRecord as exc:
            logger.warning("Ignoring unreadable session %s: %s", fingerprint(key), exc)
            return None

    async def _scan_keys(self) -> list[str]:
        pattern = f"{self._collection}:*"
        return [key async for key in self._redis.scan_iter(match=pattern, count=SCAN_BATCH)]

    async def _run(
        self,
        op: str,
        call: Callable[[], Awaitable[T]],
        **context: Any,
    ) -> StoreResult[T]:
        if "session_id" in context:
            context["session"] = context.pop("session_id")[:8]
        context["collection"] = self._collection
        started = time.perf_counter()
        logger.debug("Starting %s", op, extra={"op": op, **context})
        result = await bounded(
            call,
            op=f"redis {op}",
            timeout=self._timeout,
            transient=(RedisError, OSError),
            logger=logger,
            context=context,
        )
        if result.ok and self._log_timing:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.info(
                "%s completed in %.2fms", op, duration_ms,
                extra={"op": op, "duration_ms": duration_ms, **context},
            )
        return result
