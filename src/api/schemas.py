"""API-facing Pydantic models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    active_calls: int = Field(default=0, description="Number of media streams currently relayed.")
    capabilities: list[str] = Field(default_factory=list)
