"""Result taxonomy shared by every storage adapter.

Adapters never raise across their boundary. Each operation returns a
``StoreResult`` whose ``error`` (if any) is a ``StoreError`` tagged with an
``ErrorKind``, so callers can branch on the failure without ``try``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    CONFLICT = "conflict"


class StoreError(Exception):
    """A typed storage failure."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __repr__(self) -> str:
        return f"StoreError({self.kind.value!r}, {self.message!r})"


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    value: T | None = None
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: T) -> StoreResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> StoreResult[T]:
        return cls(error=StoreError(kind, message))

    def unwrap(self) -> T:
        """Return the value or raise the carried ``StoreError``."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def bounded(
    call: Callable[[], Awaitable[T]],
    *,
    op: str,
    timeout: float,
    transient: tuple[type[BaseException], ...],
    logger: logging.Logger,
    context: dict[str, Any] | None = None,
) -> StoreResult[T]:
    """Run one backend call under a timeout and fold failures into a result.

    ``StoreError`` raised by ``call`` passes through as-is. Timeouts and any
    exception in ``transient`` become ``UNAVAILABLE``.
    """
    try:
        value = await asyncio.wait_for(call(), timeout=timeout)
    except StoreError as exc:
        return StoreResult(error=exc)
    except asyncio.TimeoutError:
        logger.error("%s timed out after %.2fs", op, timeout, extra={"op": op, **(context or {})})
        return StoreResult.failure(ErrorKind.UNAVAILABLE, f"{op} timed out")
    except transient as exc:
        logger.error("%s failed: %s", op, exc, extra={"op": op, **(context or {})})
        return StoreResult.failure(ErrorKind.UNAVAILABLE, f"{op} failed: {exc}")
    return StoreResult.success(value)
