"""Signed session-id cookie.

The cookie carries only the opaque session id, signed with itsdangerous so a
tampered or foreign value is rejected before it reaches the store. Several
secrets may be configured: the first signs, all of them verify, which lets
a deployment rotate its secret without logging everyone out.
"""

from __future__ import annotations

from typing import Sequence

from itsdangerous import BadSignature, URLSafeTimedSerializer
from starlette.requests import HTTPConnection

COOKIE_NAME = "__session"
MAX_AGE = 30 * 24 * 3600  # 30 days
SALT = "authsession.cookie"


class CookieBinding:
    """Map a session id to and from a ``Set-Cookie`` header value."""

    def __init__(
        self,
        secrets: str | Sequence[str],
        cookie_name: str = COOKIE_NAME,
        max_age: int = MAX_AGE,
        path: str = "/",
        https_only: bool = False,
        same_site: str = "lax",
    ) -> None:
        keys = [secrets] if isinstance(secrets, str) else list(secrets)
        if not keys or not all(keys):
            raise ValueError("Cookie secrets are required")
        if not cookie_name.strip():
            raise ValueError("Cookie name is required")
        # itsdangerous signs with the last key and verifies with all of them.
        self.signer = URLSafeTimedSerializer(list(reversed(keys)), salt=SALT)
        self.cookie_name = cookie_name
        self.max_age = max_age
        self.path = path
        self.https_only = https_only
        self.same_site = same_site

    def extract(self, conn: HTTPConnection) -> str | None:
        """Return the verified session id carried by the request, if any."""
        raw = conn.cookies.get(self.cookie_name)
        if not raw:
            return None
        try:
            session_id = self.signer.loads(raw, max_age=self.max_age)
        except BadSignature:
            return None
        return session_id if isinstance(session_id, str) and session_id else None

    def serialize(self, session_id: str) -> str:
        return self._make_cookie(self.signer.dumps(session_id), self.max_age)

    def clear(self) -> str:
        return self._make_cookie("", 0)

    def _make_cookie(self, value: str, max_age: int) -> str:
        parts = [
            f"{self.cookie_name}={value}",
            f"Max-Age={max_age}",
            f"Path={self.path}",
            "HttpOnly",
            f"SameSite={self.same_site}",
        ]
        if max_age == 0:
            parts.insert(2, "Expires=Thu, 01 Jan 1970 00:00:00 GMT")
        if self.https_only:
            parts.append("Secure")
        return "; ".join(parts)
