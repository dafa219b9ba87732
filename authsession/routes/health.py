"""GET /health: Liveness check."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "mode": "session-store",
        "storage": request.app.state.facade.coordinator.adapter.name,
    }
