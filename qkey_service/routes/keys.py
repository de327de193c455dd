"""
Application-facing key pool endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, status

from qkey_service.config import settings
from qkey_service.schemas.kme import (
    AppKeyRequest,
    KeyListResponse,
    KeyResponse,
    KeySummary,
    MaintenanceResponse,
    PoolStatsResponse,
)
from qkey_service.services.key_service import (
    CapacityExceededError,
    KeyManagementService,
    get_key_service,
)
from qkey_service.utils.logger import get_logger

logger = get_logger("routes.keys")

router = APIRouter()


@router.get("/pool", response_model=PoolStatsResponse, summary="Key pool statistics")
async def get_pool_stats(
    key_service: KeyManagementService = Depends(get_key_service),
) -> PoolStatsResponse:
    stats = await key_service.pool_stats()
    return PoolStatsResponse(
        key_count=stats.key_count,
        total_capacity_bytes=stats.total_capacity_bytes,
        consumed_bytes=stats.consumed_bytes,
        remaining_bytes=stats.remaining_bytes,
        utilization_percent=stats.utilization_percent,
    )


@router.get("", response_model=KeyListResponse, summary="List keys")
async def list_keys(
    key_service: KeyManagementService = Depends(get_key_service),
) -> KeyListResponse:
    """Metadata of every retained key. Never includes key material."""
    keys = [KeySummary(**summary) for summary in key_service.list_keys()]
    return KeyListResponse(keys=keys, count=len(keys))


@router.post(
    "/request",
    response_model=KeyResponse,
    summary="Request a key by byte length",
    responses={400: {"description": "Invalid length or capacity exceeded"}}
)
async def request_key(
    body: AppKeyRequest,
    key_service: KeyManagementService = Depends(get_key_service),
) -> KeyResponse:
    try:
        delivery = await key_service.request_key(
            requested_bits=body.key_length * 8,
            recipient=body.recipient,
        )
    except (ValueError, CapacityExceededError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return KeyResponse(
        key_id=delivery.key_id,
        delivery_uri=delivery.delivery_uri,
        status=delivery.status,
    )


@router.post("/maintain", response_model=MaintenanceResponse, summary="Run pool maintenance now")
async def maintain_pool(
    key_service: KeyManagementService = Depends(get_key_service),
) -> MaintenanceResponse:
    """Remove expired keys and top the pool up to the configured target."""
    report = await key_service.maintain_pool(
        settings.KME_POOL_TARGET_KEYS,
        settings.KME_DEFAULT_KEY_SIZE_BYTES,
    )

    logger.info(
        "Manual pool maintenance completed",
        expired_removed=report.expired_removed,
        keys_issued=report.keys_issued,
    )

    return MaintenanceResponse(
        expired_removed=report.expired_removed,
        keys_issued=report.keys_issued,
        active_keys=report.active_keys,
    )
