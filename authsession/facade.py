"""User-facing authentication API.

``AuthFacade`` sequences ``SessionCoordinator`` calls with the cookie binding
and is the only layer that turns session outcomes into transport effects:

* success                 → 200 (or a redirect carrying a fresh cookie)
* ``Unauthenticated``     → 302 to ``<login_path>?redirectTo=<path>``, cookie cleared
* ``Unavailable``         → 503, cookie untouched
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from starlette.requests import HTTPConnection
from starlette.responses import JSONResponse, RedirectResponse, Response

from .session.cookie import CookieBinding
from .session.coordinator import (
    Authenticated,
    Issued,
    SessionCoordinator,
    Unauthenticated,
    Unavailable,
)

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_FOUND = 302
HTTP_SERVICE_UNAVAILABLE = 503


@dataclass(frozen=True)
class TransportResult:
    """What the web layer should do with the current request."""

    status_code: int
    location: str | None = None
    set_cookie: str | None = None
    user: dict[str, Any] | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code == HTTP_OK

    def to_response(self) -> Response:
        if self.location is not None:
            response: Response = RedirectResponse(self.location, status_code=self.status_code)
        elif self.ok:
            response = JSONResponse({"user": self.user})
        else:
            response = JSONResponse({"error": self.detail}, status_code=self.status_code)
        if self.set_cookie is not None:
            response.headers.append("set-cookie", self.set_cookie)
        return response


def safe_redirect(target: str | None, default: str = "/") -> str:
    """Only same-site relative paths are allowed as redirect targets."""
    if not target or not isinstance(target, str):
        return default
    target = target.strip()
    if not target.startswith("/") or target.startswith("//") or target.startswith("/\\"):
        return default
    return target


class AuthFacade:
    """Login, require-session, update-session and logout over HTTP.

    Args:
        coordinator: Session lifecycle over the configured store.
        cookies: Maps session ids to and from the session cookie.
        login_path: Where unauthenticated requests are sent.
    """

    def __init__(
        self,
        coordinator: SessionCoordinator,
        cookies: CookieBinding,
        *,
        login_path: str = "/login",
    ) -> None:
        self.coordinator = coordinator
        self.cookies = cookies
        self.login_path = login_path

    async def login(
        self,
        user: dict[str, Any],
        redirect_to: str | None = "/",
        *,
        expires_at: datetime | None = None,
    ) -> TransportResult:
        """Start a session and redirect with the new cookie."""
        outcome = await self.coordinator.create(user, expires_at=expires_at)
        if isinstance(outcome, Unavailable):
            return self._unavailable(outcome)
        return TransportResult(
            status_code=HTTP_FOUND,
            location=safe_redirect(redirect_to),
            set_cookie=self.cookies.serialize(outcome.session_id),
            user=outcome.record.user,
        )

    async def require_session(
        self, conn: HTTPConnection, redirect_to: str | None = None
    ) -> TransportResult:
        """Return the current user, or a redirect to the login page.

        ``redirect_to`` defaults to the path of the current request.
        """
        session_id = self.cookies.extract(conn)
        outcome = await self.coordinator.read(session_id)
        if isinstance(outcome, Authenticated):
            return TransportResult(status_code=HTTP_OK, user=outcome.user)
        if isinstance(outcome, Unavailable):
            return self._unavailable(outcome)
        logger.debug("Unauthenticated request to %s (%s)", conn.url.path, outcome.reason)
        return self._to_login(redirect_to or conn.url.path, detail=outcome.reason)

    async def require_token(self, conn: HTTPConnection) -> TransportResult:
        """Like ``require_session`` but the payload must carry a ``token``.

        Raises:
            ValueError: If the authenticated user has no token.
        """
        result = await self.require_session(conn)
        if result.ok and not (result.user or {}).get("token"):
            raise ValueError("User doesn't have a token")
        return result

    async def update_session(
        self,
        conn: HTTPConnection,
        patch: dict[str, Any],
        redirect_to: str | None = "/",
        *,
        rotate: bool = True,
        expires_at: datetime | None = None,
    ) -> TransportResult:
        """Change the session payload and redirect.

        With ``rotate`` the session gets a new id (e.g. on privilege change)
        and the response carries the new cookie.
        """
        session_id = self.cookies.extract(conn)
        if rotate:
            outcome = await self.coordinator.rotate(session_id, patch, expires_at=expires_at)
        else:
            outcome = await self.coordinator.update(session_id, patch, expires_at=expires_at)

        if isinstance(outcome, Unavailable):
            return self._unavailable(outcome)
        if isinstance(outcome, Unauthenticated):
            return self._to_login(conn.url.path, detail=outcome.reason)
        if isinstance(outcome, Issued):
            return TransportResult(
                status_code=HTTP_FOUND,
                location=safe_redirect(redirect_to),
                set_cookie=self.cookies.serialize(outcome.session_id),
                user=outcome.record.user,
            )
        return TransportResult(
            status_code=HTTP_FOUND,
            location=safe_redirect(redirect_to),
            user=outcome.user,
        )

    async def logout(self, conn: HTTPConnection) -> TransportResult:
        """Destroy the session (if any), clear the cookie, go to login."""
        outcome = await self.coordinator.destroy(self.cookies.extract(conn))
        if isinstance(outcome, Unavailable):
            return self._unavailable(outcome)
        return TransportResult(
            status_code=HTTP_FOUND,
            location=self.login_path,
            set_cookie=self.cookies.clear(),
        )

    def _to_login(self, return_to: str, detail: str | None = None) -> TransportResult:
        query = urlencode({"redirectTo": safe_redirect(return_to)})
        return TransportResult(
            status_code=HTTP_FOUND,
            location=f"{self.login_path}?{query}",
            set_cookie=self.cookies.clear(),
            detail=detail,
        )

    @staticmethod
    def _unavailable(outcome: Unavailable) -> TransportResult:
        return TransportResult(
            status_code=HTTP_SERVICE_UNAVAILABLE,
            detail="Session store unavailable",
        )
