"""Pydantic models for health endpoints."""

from typing import Optional
from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Response model for service health checks."""

    status: str = "healthy"
    system_operational: bool = True
    review_queue_depth: Optional[int] = None
    review_queue_capacity: Optional[int] = None
    review_workers_running: Optional[int] = None
    instruments_loaded: Optional[int] = None
    error: Optional[str] = None
