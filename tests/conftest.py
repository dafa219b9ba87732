"""Shared fixtures for the auth session store test suite."""

from __future__ import annotations

import asyncio
import fnmatch
from datetime import datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from authsession.config import Settings, override_settings
from authsession.main import create_app
from authsession.session import InMemoryBackend, RedisBackend, SessionCoordinator
from authsession.session.models import from_timestamp
from authsession.session.redis import DELETE_IF_MATCH, SWAP_IF_MATCH

START = 1_700_000_000.0


# ── Clock ─────────────────────────────────────────────────────────────────

class FakeClock:
    """Manually advanced wall clock, in epoch seconds."""

    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def datetime(self) -> datetime:
        return from_timestamp(self.now)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Fake Redis ────────────────────────────────────────────────────────────

class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *args) -> None:
        self._ops.clear()

    def get(self, key: str) -> FakePipeline:
        self._ops.append(("get", (key,)))
        return self

    def delete(self, *keys: str) -> FakePipeline:
        self._ops.append(("delete", keys))
        return self

    async def execute(self) -> list[Any]:
        await self._redis._check()
        results = []
        for name, args in self._ops:
            results.append(getattr(self._redis, f"_{name}")(*args))
        self._ops.clear()
        return results


class FakeRedis:
    """The slice of ``redis.asyncio.Redis`` the backend uses, with real TTLs.

    Set ``fail`` to make every command raise it, or ``hang`` to make every
    command block (to exercise timeouts).
    """

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.data: dict[str, str] = {}
        self.deadlines: dict[str, float] = {}
        self.fail: Exception | None = None
        self.hang = False
        self.closed = False
        self.commands: list[str] = []

    async def _check(self) -> None:
        if self.hang:
            await asyncio.sleep(10)
        if self.fail is not None:
            raise self.fail

    def _purge(self, key: str) -> None:
        deadline = self.deadlines.get(key)
        if deadline is not None and deadline <= self.clock():
            self.data.pop(key, None)
            self.deadlines.pop(key, None)

    def _get(self, key: str) -> str | None:
        self._purge(key)
        return self.data.get(key)

    def _delete(self, *keys: str) -> int:
        count = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                count += 1
            self.data.pop(key, None)
            self.deadlines.pop(key, None)
        return count

    def ttl(self, key: str) -> float | None:
        """Seconds left on ``key``; None if it has no expiry."""
        self._purge(key)
        deadline = self.deadlines.get(key)
        return None if deadline is None else deadline - self.clock()

    # commands

    async def get(self, key: str) -> str | None:
        await self._check()
        self.commands.append("get")
        return self._get(key)

    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        px: int | None = None,
        keepttl: bool = False,
        get: bool = False,
    ) -> Any:
        await self._check()
        self.commands.append("set")
        previous = self._get(key)
        self.data[key] = value
        if ex is not None:
            self.deadlines[key] = self.clock() + ex
        elif px is not None:
            self.deadlines[key] = self.clock() + px / 1000
        elif not keepttl:
            self.deadlines.pop(key, None)
        return previous if get else True

    async def delete(self, *keys: str) -> int:
        await self._check()
        self.commands.append("delete")
        return self._delete(*keys)

    async def exists(self, *keys: str) -> int:
        await self._check()
        return sum(1 for key in keys if self._get(key) is not None)

    async def expire(self, key: str, seconds: int, gt: bool = False) -> bool:
        await self._check()
        self.commands.append("expire")
        if self._get(key) is None:
            return False
        new_deadline = self.clock() + seconds
        current = self.deadlines.get(key)
        if gt and (current is None or new_deadline <= current):
            return False
        self.deadlines[key] = new_deadline
        return True

    async def scan_iter(self, match: str = "*", count: int | None = None):
        await self._check()
        for key in sorted(self.data):
            if self._get(key) is not None and fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    def register_script(self, script: str):
        impl = {SWAP_IF_MATCH: self._swap_if_match, DELETE_IF_MATCH: self._delete_if_match}[script]

        async def _call(keys=(), args=()):
            await self._check()
            return impl(*keys, *args)

        return _call

    def _swap_if_match(self, key: str, session_id: str, expected: str) -> str | None:
        current = self._get(key)
        if current != expected:
            return None
        self.data[key] = session_id
        self.deadlines.pop(key, None)
        return current

    def _delete_if_match(self, key: str, expected: str) -> int:
        current = self._get(key)
        if current is None:
            return 0
        if current != expected:
            return -1
        return self._delete(key)

    async def ping(self) -> bool:
        await self._check()
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_redis(clock) -> FakeRedis:
    return FakeRedis(clock)


# ── Backends & coordinator ────────────────────────────────────────────────

@pytest.fixture
def memory_backend(clock) -> InMemoryBackend:
    return InMemoryBackend(ttl=600, clock=clock)


@pytest.fixture
def redis_backend(fake_redis, clock) -> RedisBackend:
    return RedisBackend(client=fake_redis, ttl=600, timeout=0.5, clock=clock)


@pytest.fixture(params=["memory", "redis"])
def backend(request, memory_backend, redis_backend):
    """Each adapter that must honour the same contract."""
    return memory_backend if request.param == "memory" else redis_backend


@pytest.fixture
def coordinator(memory_backend, clock) -> SessionCoordinator:
    return SessionCoordinator(memory_backend, clock=clock.datetime)


# ── Test Settings ─────────────────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        session_secret="test-secret-key-for-sessions",
        frontend_url="http://localhost:3000",
        memory_sweep_interval=0,
    )


USERS = {
    ("alice", "correct-horse"): {"id": "user-1", "name": "alice", "role": "user"},
    ("bob", "battery-staple"): {"id": "user-2", "name": "bob", "role": "admin"},
}


async def fake_authenticator(credentials: dict[str, Any]) -> dict[str, Any] | None:
    return USERS.get((credentials.get("username"), credentials.get("password")))


def is_admin_role(user: dict[str, Any]) -> bool:
    return user.get("role") == "admin"


# ── App & Client ──────────────────────────────────────────────────────────

@pytest.fixture
def session_backend(memory_backend) -> InMemoryBackend:
    return memory_backend


@pytest.fixture
def make_app(test_settings, session_backend):
    """Factory for apps with settings overrides, sharing ``session_backend``."""

    def _make(authenticator=fake_authenticator, storage=None, is_admin=is_admin_role, **overrides):
        s = test_settings.model_copy(update=overrides)
        override_settings(s)
        return create_app(
            storage=storage or session_backend,
            authenticator=authenticator,
            is_admin=is_admin,
            settings=s,
        )

    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app) -> TestClient:
    """TestClient with cookie persistence; redirects are not followed."""
    return TestClient(app, cookies={}, follow_redirects=False)


@pytest.fixture
def csrf_headers() -> dict[str, str]:
    """Standard CSRF headers for POST requests."""
    return {"X-CSRF": "1"}


@pytest.fixture
def login_body() -> dict[str, Any]:
    return {
        "credentials": {"username": "alice", "password": "correct-horse"},
        "redirect_to": "/dashboard",
    }


@pytest.fixture
def admin_body() -> dict[str, Any]:
    return {"credentials": {"username": "bob", "password": "battery-staple"}}


# ── Helper: Authenticated Client ──────────────────────────────────────────

@pytest.fixture
def auth_session(client, csrf_headers, login_body):
    """Log in as alice and return the client holding the session cookie."""
    resp = client.post("/auth/login", json=login_body, headers=csrf_headers)
    assert resp.status_code == 302
    assert client.cookies.get("__session")
    return client
