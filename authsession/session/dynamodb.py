"""DynamoDB session backend for production deployments."""

from __future__ import annotations

import json
import logging
import math
import time
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from .backend import DEFAULT_COLLECTION, DEFAULT_TTL
from .models import (
    SessionRecord,
    UserId,
    fingerprint,
    from_timestamp,
    session_key,
    user_session_key,
)
from .result import ErrorKind, StoreError, StoreResult, bounded

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONDITIONAL_FAILED = "ConditionalCheckFailedException"


class DynamoDBBackend:
    """Session backend using AWS DynamoDB.

    Table schema:
        Partition key: pk (S)
        Session items: pk = "<collection>:<session_id>",
            data (S, JSON-encoded user), expires_at (N, optional, exact),
            single_session (BOOL, optional), ttl (N, whole seconds)
        Index items: pk = "user_session:<user_id>", session_id (S)

    Enable TTL on the `ttl` attribute for automatic cleanup. DynamoDB
    reclaims expired items late, so reads also check `ttl` themselves.
    """

    name = "dynamodb"

    def __init__(
        self,
        table_name: str = "auth_sessions",
        collection: str = DEFAULT_COLLECTION,
        ttl: int = DEFAULT_TTL,
        endpoint_url: str = "",
        region_name: str = "us-west-2",
        timeout: float = 2.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._table_name = table_name
        self._collection = collection
        self._ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._session = aioboto3.Session()
        self._endpoint_url = endpoint_url or None
        self._region_name = region_name

    # ── records ──────────────────────────────────────────────────────────

    async def has(self, session_id: str) -> StoreResult[bool]:
        result = await self.get(session_id)
        if not result.ok:
            return StoreResult(error=result.error)
        return StoreResult.success(result.value is not None)

    async def get(self, session_id: str) -> StoreResult[SessionRecord | None]:
        key = self._key(session_id)

        async def _get() -> SessionRecord | None:
            async with self._table() as table:
                response = await table.get_item(Key={"pk": key})
                item = response.get("Item")
                if item is None:
                    return None
                record = self._record(item)
                if record is None or self._expired(item):
                    await table.delete_item(Key={"pk": key})
                    return None
            return record

        return await self._run("get", _get)

    async def set(
        self,
        session_id: str,
        user: dict[str, Any],
        expires_at: datetime | None = None,
        *,
        single_session: bool = False,
    ) -> StoreResult[SessionRecord]:
        record = SessionRecord(user=dict(user), expires_at=expires_at, single_session=single_session)

        async def _set() -> SessionRecord:
            async with self._table() as table:
                if record.is_expired(from_timestamp(self._clock())):
                    await table.delete_item(Key={"pk": self._key(session_id)})
                    raise StoreError(ErrorKind.NOT_FOUND, "Session deadline has already passed")
                await table.put_item(Item=self._item(session_id, record))
            return record

        return await self._run("set", _set)

    async def update(
        self, session_id: str, partial: dict[str, Any], expires_at: datetime | None = None
    ) -> StoreResult[SessionRecord]:
        key = self._key(session_id)

        async def _update() -> SessionRecord:
            async with self._table() as table:
                response = await table.get_item(Key={"pk": key})
                item = response.get("Item")
                current = self._record(item) if item is not None else None
                if current is None or self._expired(item):
                    raise StoreError(ErrorKind.NOT_FOUND, f"No session for id {session_id[:8]}…")
                record = current.merged(partial, expires_at)
                if record.is_expired(from_timestamp(self._clock())):
                    await table.delete_item(Key={"pk": key})
                    raise StoreError(ErrorKind.NOT_FOUND, "Session deadline has already passed")
                new_item = self._item(session_id, record)
                if expires_at is None:
                    new_item["ttl"] = int(item["ttl"])
                await table.put_item(Item=new_item)
            return record

        return await self._run("update", _update)

    async def remove(self, session_id: str) -> StoreResult[bool]:
        key = self._key(session_id)

        async def _remove() -> bool:
            async with self._table() as table:
                response = await table.delete_item(Key={"pk": key}, ReturnValues="ALL_OLD")
            old = response.get("Attributes")
            return old is not None and not self._expired(old)

        return await self._run("remove", _remove)

    async def reset_expiration(self, session_id: str) -> StoreResult[bool]:
        key = self._key(session_id)

        async def _touch() -> bool:
            async with self._table() as table:
                response = await table.get_item(
                    Key={"pk": key},
                    ProjectionExpression="pk, #ttl, expires_at",
                    ExpressionAttributeNames={"#ttl": "ttl"},
                )
                item = response.get("Item")
                if item is None or self._expired(item):
                    return False
                deadline = self._clock() + self._ttl
                if "expires_at" in item:
                    deadline = min(deadline, float(item["expires_at"]))
                try:
                    await table.update_item(
                        Key={"pk": key},
                        UpdateExpression="SET #ttl = :ttl",
                        ConditionExpression="attribute_exists(pk)",
                        ExpressionAttributeNames={"#ttl": "ttl"},
                        ExpressionAttributeValues={":ttl": math.ceil(deadline)},
                    )
                except ClientError as exc:
                    if _error_code(exc) != CONDITIONAL_FAILED:
                        raise
                    return False
            return True

        return await self._run("reset_expiration", _touch)

    # ── user → session index ─────────────────────────────────────────────

    async def set_user_session(self, user_id: UserId, session_id: str) -> StoreResult[bool]:
        async def _set() -> bool:
            async with self._table() as table:
                await table.put_item(
                    Item={"pk": user_session_key(user_id), "session_id": session_id}
                )
            return True

        return await self._run("set_user_session", _set)

    async def get_user_active_session(self, user_id: UserId) -> StoreResult[str | None]:
        async def _get() -> str | None:
            async with self._table() as table:
                response = await table.get_item(Key={"pk": user_session_key(user_id)})
            item = response.get("Item")
            return item["session_id"] if item else None

        return await self._run("get_user_active_session", _get)

    async def remove_user_session(
        self, user_id: UserId, expected: str | None = None
    ) -> StoreResult[bool]:
        key = user_session_key(user_id)

        async def _remove() -> bool:
            async with self._table() as table:
                if expected is None:
                    response = await table.delete_item(Key={"pk": key}, ReturnValues="ALL_OLD")
                    return "Attributes" in response
                try:
                    await table.delete_item(
                        Key={"pk": key},
                        ConditionExpression="session_id = :expected",
                        ExpressionAttributeValues={":expected": expected},
                    )
                except ClientError as exc:
                    if _error_code(exc) != CONDITIONAL_FAILED:
                        raise
                    current = await table.get_item(Key={"pk": key})
                    if "Item" not in current:
                        return False
                    raise StoreError(
                        ErrorKind.CONFLICT, f"Index for user {user_id} moved to another session"
                    ) from exc
            return True

        return await self._run("remove_user_session", _remove)

    async def swap_user_session(
        self, user_id: UserId, session_id: str, expected: str | None = None
    ) -> StoreResult[str | None]:
        item = {"pk": user_session_key(user_id), "session_id": session_id}

        async def _swap() -> str | None:
            async with self._table() as table:
                if expected is None:
                    response = await table.put_item(Item=item, ReturnValues="ALL_OLD")
                    old = response.get("Attributes")
                    return old["session_id"] if old else None
                try:
                    await table.put_item(
                        Item=item,
                        ConditionExpression="session_id = :expected",
                        ExpressionAttributeValues={":expected": expected},
                    )
                except ClientError as exc:
                    if _error_code(exc) != CONDITIONAL_FAILED:
                        raise
                    raise StoreError(
                        ErrorKind.CONFLICT, f"Index for user {user_id} moved to another session"
                    ) from exc
            return expected

        return await self._run("swap_user_session", _swap)

    # ── bulk ─────────────────────────────────────────────────────────────

    async def all_sessions(self) -> StoreResult[dict[str, SessionRecord]]:
        async def _all() -> dict[str, SessionRecord]:
            prefix = f"{self._collection}:"
            sessions: dict[str, SessionRecord] = {}
            async for item in self._scan(prefix):
                record = self._record(item)
                if record is not None and not self._expired(item):
                    sessions[item["pk"][len(prefix):]] = record
            return sessions

        return await self._run("all_sessions", _all)

    async def clear(self) -> StoreResult[int]:
        async def _clear() -> int:
            items = [item async for item in self._scan(f"{self._collection}:")]
            records = (self._record(item) for item in items)
            owners = {str(record.user_id) for record in records if record is not None}
            async with self._table() as table:
                async with table.batch_writer() as batch:
                    for item in items:
                        await batch.delete_item(Key={"pk": item["pk"]})
                    for owner in owners:
                        await batch.delete_item(Key={"pk": user_session_key(owner)})
            return len(items)

        return await self._run("clear", _clear)

    async def aclose(self) -> None:
        return None

    # ── internals ────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _table(self) -> AsyncIterator[Any]:
        async with self._session.resource(
            "dynamodb",
            endpoint_url=self._endpoint_url,
            region_name=self._region_name,
        ) as dynamodb:
            yield await dynamodb.Table(self._table_name)

    async def _scan(self, prefix: str) -> AsyncIterator[dict[str, Any]]:
        kwargs: dict[str, Any] = {
            "FilterExpression": "begins_with(pk, :prefix)",
            "ExpressionAttributeValues": {":prefix": prefix},
        }
        async with self._table() as table:
            while True:
                response = await table.scan(**kwargs)
                for item in response.get("Items", []):
                    yield item
                last = response.get("LastEvaluatedKey")
                if not last:
                    break
                kwargs["ExclusiveStartKey"] = last

    def _key(self, session_id: str) -> str:
        return session_key(self._collection, session_id)

    def _item(self, session_id: str, record: SessionRecord) -> dict[str, Any]:
        item: dict[str, Any] = {
            "pk": self._key(session_id),
            "data": json.dumps(record.user),
        }
        if record.single_session:
            item["single_session"] = True
        if record.expires_at is None:
            item["ttl"] = int(self._clock() + self._ttl)
        else:
            # Exact deadline in expires_at; ttl is whole seconds and must not fire early.
            deadline = record.expires_at.timestamp()
            item["expires_at"] = Decimal(repr(deadline))
            item["ttl"] = math.ceil(deadline)
        return item

    def _expired(self, item: dict[str, Any]) -> bool:
        try:
            deadline = float(item.get("ttl", 0))
            if "expires_at" in item:
                deadline = min(deadline, float(item["expires_at"]))
        except (TypeError, ValueError):
            return True
        return deadline <= self._clock()

    @staticmethod
    def _record(item: dict[str, Any]) -> SessionRecord | None:
        """Decode a session item; ``None`` if it is not one this backend wrote."""
        expires_at = item.get("expires_at")
        try:
            return SessionRecord.build(
                json.loads(item.get("data", "")),
                expires_at=from_timestamp(float(expires_at)) if expires_at is not None else None,
                single_session=bool(item.get("single_session", False)),
            )
        except (ValueError, TypeError, OverflowError) as exc:
            logger.warning("Ignoring unreadable session %s: %s", fingerprint(item.get("pk", "")), exc)
            return None

    async def _run(self, op: str, call: Callable[[], Awaitable[T]]) -> StoreResult[T]:
        return await bounded(
            call,
            op=f"dynamodb {op}",
            timeout=self._timeout,
            transient=(ClientError, BotoCoreError, OSError),
            logger=logger,
            context={"collection": self._collection, "table": self._table_name},
        )


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")
