from .backend import InMemoryBackend, StorageAdapter
from .cookie import CookieBinding
from .coordinator import (
    Authenticated,
    Destroyed,
    Issued,
    SessionCoordinator,
    Unauthenticated,
    Unavailable,
)
from .dynamodb import DynamoDBBackend
from .factory import create_storage_adapter
from .models import SessionRecord, generate_session_id
from .redis import RedisBackend
from .result import ErrorKind, StoreError, StoreResult

__all__ = [
    "StorageAdapter",
    "InMemoryBackend",
    "RedisBackend",
    "DynamoDBBackend",
    "create_storage_adapter",
    "SessionRecord",
    "generate_session_id",
    "ErrorKind",
    "StoreError",
    "StoreResult",
    "SessionCoordinator",
    "Issued",
    "Authenticated",
    "Unauthenticated",
    "Destroyed",
    "Unavailable",
    "CookieBinding",
]
