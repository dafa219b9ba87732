"""POST /auth/session: Update the session payload, rotating its id by default."""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..dependencies import get_facade, require_csrf

router = APIRouter()


class UpdateSessionRequest(BaseModel):
    patch: dict[str, Any] = {}
    rotate: bool = True
    redirect_to: str = "/"


@router.post("/auth/session")
async def update_session(
    body: UpdateSessionRequest,
    request: Request,
    _csrf: None = Depends(require_csrf),
):
    try:
        result = await get_facade(request).update_session(
            request, body.patch, body.redirect_to, rotate=body.rotate
        )
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return result.to_response()
