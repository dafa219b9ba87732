"""GET /auth/sessions: Administrative listing of live sessions.

Only users accepted by the app's ``is_admin`` check may list sessions.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..dependencies import get_facade, require_admin
from ..session.models import fingerprint

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/auth/sessions")
async def list_sessions(request: Request, _admin: dict[str, Any] = Depends(require_admin)):
    listing = await get_facade(request).coordinator.list_sessions()
    if not listing.ok:
        logger.error("Session listing failed: %s", listing.error)
        return JSONResponse({"error": "Session store unavailable"}, status_code=503)

    sessions = [
        {
            "session": fingerprint(session_id),
            "user_id": record.user.get("id"),
            "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        }
        for session_id, record in sorted(listing.value.items())
    ]
    return {"count": len(sessions), "sessions": sessions}
