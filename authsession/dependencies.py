"""FastAPI dependency injection: facade access, CSRF, auth."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from . import ocsf
from .facade import AuthFacade, TransportResult


class SessionRequired(Exception):
    """Raised by ``require_user``; the app turns it into the facade's response."""

    def __init__(self, result: TransportResult) -> None:
        super().__init__(result.detail or "Authentication required")
        self.result = result


def get_facade(request: Request) -> AuthFacade:
    return request.app.state.facade


def require_csrf(request: Request) -> None:
    """Require X-CSRF: 1 header on state-changing requests."""
    if request.headers.get("x-csrf") != "1":
        raise HTTPException(
            status_code=403,
            detail={
                "error": "CSRF validation failed",
                "message": "Missing X-CSRF header",
            },
        )


async def require_user(request: Request) -> dict[str, Any]:
    """Require an authenticated session; redirect to login otherwise."""
    result = await get_facade(request).require_session(request)
    if not result.ok:
        raise SessionRequired(result)
    return result.user or {}


async def require_admin(request: Request) -> dict[str, Any]:
    """Require a session whose user passes the app's ``is_admin`` check."""
    user = await require_user(request)
    is_admin = request.app.state.is_admin
    if is_admin is None or not is_admin(user):
        ocsf.session_event(
            activity_id=ocsf.AuthActivity.OTHER,
            status_id=ocsf.Status.FAILURE,
            severity_id=ocsf.Severity.MEDIUM,
            user_id=user.get("id"),
            message=f"Administrative access to {request.url.path} refused",
        )
        raise HTTPException(
            status_code=403,
            detail={
                "error": "Forbidden",
                "message": "Administrator access required",
            },
        )
    return user
