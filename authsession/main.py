"""FastAPI composition of the session store.

Wires a storage adapter, the session coordinator, the cookie binding and the
auth facade together and exposes them over HTTP. The app owns the adapter's
lifecycle: it is closed on shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .dependencies import SessionRequired
from .facade import AuthFacade
from .routes import health, login, logout, me, session_ep, sessions
from .session import (
    CookieBinding,
    InMemoryBackend,
    SessionCoordinator,
    StorageAdapter,
    create_storage_adapter,
)

logger = logging.getLogger(__name__)

Authenticator = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]
AdminCheck = Callable[[dict[str, Any]], bool]


def build_facade(s: Settings, storage: StorageAdapter) -> AuthFacade:
    coordinator = SessionCoordinator(
        storage,
        single_session=s.single_session,
        sliding_expiration=s.sliding_expiration,
    )
    cookies = CookieBinding(
        s.cookie_secrets,
        cookie_name=s.cookie_name,
        max_age=s.cookie_max_age,
        path=s.cookie_path,
        https_only=s.session_https_only,
        same_site=s.session_same_site,
    )
    return AuthFacade(coordinator, cookies, login_path=s.login_path)


def create_app(
    *,
    storage: StorageAdapter | None = None,
    authenticator: Authenticator | None = None,
    is_admin: AdminCheck | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        storage: Session storage adapter (default: built from settings).
        authenticator: Verifies login credentials and returns the user
            payload, or None to reject. Without one, login answers 501.
        is_admin: Decides whether a session user may list every session.
            Without one, the listing is refused for everybody.
        settings: Configuration (default: from the environment).
    """
    s = settings or get_settings()
    backend = storage or create_storage_adapter(s)
    facade = build_facade(s, backend)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = None
        if isinstance(backend, InMemoryBackend) and s.memory_sweep_interval > 0:
            sweeper = asyncio.create_task(backend.run_sweeper(s.memory_sweep_interval))
        logger.info("Session store: %s", backend.name)
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweeper
            await facade.coordinator.drain()
            await backend.aclose()

    app = FastAPI(title="Auth Session Store", lifespan=lifespan)
    app.state.facade = facade
    app.state.authenticator = authenticator
    app.state.is_admin = is_admin

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[s.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionRequired)
    async def _session_required(request: Request, exc: SessionRequired):
        return exc.result.to_response()

    # Routes
    app.include_router(login.router)
    app.include_router(me.router)
    app.include_router(session_ep.router)
    app.include_router(logout.router)
    app.include_router(sessions.router)
    app.include_router(health.router)

    return app
