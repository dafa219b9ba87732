"""Build a storage adapter from settings."""

from __future__ import annotations

from ..config import Settings
from .backend import InMemoryBackend, StorageAdapter
from .dynamodb import DynamoDBBackend
from .redis import RedisBackend


def create_storage_adapter(s: Settings) -> StorageAdapter:
    """Choose the session backend named by ``s.session_backend``."""
    if s.session_backend == "memory":
        return InMemoryBackend(collection=s.session_collection, ttl=s.session_ttl)
    if s.session_backend == "redis":
        return RedisBackend(
            collection=s.session_collection,
            ttl=s.session_ttl,
            url=s.redis_url,
            timeout=s.store_timeout,
            log_timing=s.log_store_timing,
        )
    if s.session_backend == "dynamodb":
        return DynamoDBBackend(
            table_name=s.dynamodb_table,
            collection=s.session_collection,
            ttl=s.session_ttl,
            endpoint_url=s.dynamodb_endpoint,
            region_name=s.aws_region,
            timeout=s.store_timeout,
        )
    raise ValueError(
        f"Invalid session backend {s.session_backend!r}. "
        "Must be one of: 'memory', 'redis', 'dynamodb'"
    )
