"""FastAPI routes exposing service status and the Twilio endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_active_calls, get_dispatcher
from api.schemas import HealthResponse
from api.twilio_routes import router as twilio_router
from tools.dispatcher import CapabilityDispatcher

LOGGER = logging.getLogger(__name__)

router = APIRouter()
router.include_router(twilio_router)


@router.get("/health", response_model=HealthResponse)
async def health(
    active_calls: set = Depends(get_active_calls),
    dispatcher: CapabilityDispatcher = Depends(get_dispatcher),
) -> HealthResponse:
    return HealthResponse(active_calls=len(active_calls), capabilities=dispatcher.names)
