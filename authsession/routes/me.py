"""GET /auth/me: Return the user bound to the current session."""

from typing import Any

from fastapi import APIRouter, Depends

from ..dependencies import require_user

router = APIRouter()


@router.get("/auth/me")
async def get_me(user: dict[str, Any] = Depends(require_user)):
    return {"user": user}
