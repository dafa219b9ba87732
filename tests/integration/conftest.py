"""Shared fixtures for integration tests against a real Redis server.

All integration tests are skipped unless REDIS_URL is set. This allows the
test suite to run in CI without a server while supporting local testing
against a real one, e.g.:

    docker run --rm -p 6379:6379 redis:7
    REDIS_URL=redis://localhost:6379/15 pytest -m integration

Each test gets its own collection prefix; keys are cleared afterwards.
"""

from __future__ import annotations

import os
import uuid

import pytest

pytestmark = pytest.mark.integration


@pytest.fixture(scope="session")
def redis_url() -> str:
    """Return REDIS_URL or skip."""
    url = os.environ.get("REDIS_URL")
    if not url:
        pytest.skip("Integration tests require REDIS_URL")
    return url


@pytest.fixture
def collection() -> str:
    return f"it_sessions_{uuid.uuid4().hex[:8]}"
