"""POST /auth/logout: Destroy session."""

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_facade, require_csrf

router = APIRouter()


@router.post("/auth/logout")
async def logout(
    request: Request,
    _csrf: None = Depends(require_csrf),
):
    result = await get_facade(request).logout(request)
    return result.to_response()
