"""
Pydantic schemas for the health endpoint.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from qkey_service.schemas.kme import PoolStatsResponse


class MaintenanceStatus(BaseModel):
    """State of the background pool maintenance task."""
    enabled: bool
    running: bool
    interval_seconds: Optional[float] = None
    last_run_at: Optional[datetime] = None
    last_error: Optional[str] = None
    failure_count: int = 0


class HealthResponse(BaseModel):
    """Service health with a pool summary."""
    status: str = Field(description="'healthy' or 'degraded'")
    kem_provider: str = Field(description="KEM used by the level3 strategy")
    pool: PoolStatsResponse
    maintenance: MaintenanceStatus
    timestamp: datetime
