"""FastAPI routes exposed under ``/api``."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_session_registry
from api.schemas import HealthResponse
from api.twilio_routes import router as twilio_router
from bridge.session_registry import SessionRegistry

router = APIRouter()
router.include_router(twilio_router)


@router.get("/health", response_model=HealthResponse)
async def health(registry: SessionRegistry = Depends(get_session_registry)) -> HealthResponse:
    return HealthResponse(active_sessions=len(registry))
