"""
Health check endpoint for monitoring.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from qkey_service.schemas.health import HealthResponse, MaintenanceStatus
from qkey_service.schemas.kme import PoolStatsResponse
from qkey_service.services.crypto_engine import QuantumCryptoEngine, get_crypto_engine
from qkey_service.services.pool_maintainer import KeyPoolMaintainer, get_pool_maintainer
from qkey_service.utils.logger import get_logger

logger = get_logger("health")
router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check application health, key pool capacity and maintenance task state",
    responses={200: {"description": "Service is running"}}
)
async def health_check(
    engine: QuantumCryptoEngine = Depends(get_crypto_engine),
    maintainer: Optional[KeyPoolMaintainer] = Depends(get_pool_maintainer),
) -> HealthResponse:
    """
    Health check endpoint.

    Reports "degraded" when the pool has no active keys or the enabled
    maintenance task has stopped.
    """
    stats = await engine.key_service.pool_stats()

    if maintainer is None:
        maintenance = MaintenanceStatus(enabled=False, running=False)
    else:
        maintenance = MaintenanceStatus(
            enabled=True,
            running=maintainer.is_running,
            interval_seconds=maintainer.interval_seconds,
            last_run_at=maintainer.last_run_at,
            last_error=maintainer.last_error,
            failure_count=maintainer.failure_count,
        )

    healthy = stats.key_count > 0 and (maintainer is None or maintainer.is_running)
    if not healthy:
        logger.warning(
            "Health check: degraded",
            active_keys=stats.key_count,
            maintenance_running=maintenance.running,
        )

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        kem_provider=engine.kem_provider.get_provider_version(),
        pool=PoolStatsResponse(
            key_count=stats.key_count,
            total_capacity_bytes=stats.total_capacity_bytes,
            consumed_bytes=stats.consumed_bytes,
            remaining_bytes=stats.remaining_bytes,
            utilization_percent=stats.utilization_percent,
        ),
        maintenance=maintenance,
        timestamp=datetime.now(timezone.utc),
    )
