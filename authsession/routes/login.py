"""POST /auth/login: Start a session for verified credentials."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import ocsf
from ..dependencies import get_facade, require_csrf

logger = logging.getLogger(__name__)

router = APIRouter()


class LoginRequest(BaseModel):
    credentials: dict[str, Any]
    redirect_to: str = "/"


@router.post("/auth/login")
async def login(
    body: LoginRequest,
    request: Request,
    _csrf: None = Depends(require_csrf),
):
    authenticator = request.app.state.authenticator
    if authenticator is None:
        return JSONResponse({"error": "No authenticator configured"}, status_code=501)

    user = await authenticator(body.credentials)
    if not user:
        ocsf.session_event(
            activity_id=ocsf.AuthActivity.LOGON,
            status_id=ocsf.Status.FAILURE,
            severity_id=ocsf.Severity.MEDIUM,
            message="Login rejected by authenticator",
        )
        return JSONResponse({"error": "Invalid credentials"}, status_code=401)

    result = await get_facade(request).login(user, body.redirect_to)
    return result.to_response()
