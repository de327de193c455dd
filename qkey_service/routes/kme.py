"""
ETSI GS QKD 014 style key delivery endpoints.
"""
import base64
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response, status

from qkey_service.schemas.kme import (
    KeyAckRequest,
    KeyAckResponse,
    KeyMaterialResponse,
    KeyRequestBody,
    KeyResponse,
)
from qkey_service.services.key_service import (
    CapacityExceededError,
    ConsumptionOverrunError,
    DuplicateRequestError,
    KeyManagementService,
    KeyUnavailableError,
    get_key_service,
)
from qkey_service.utils.logger import get_logger

logger = get_logger("routes.kme")

router = APIRouter()


@router.post(
    "/requestKey",
    response_model=KeyResponse,
    status_code=status.HTTP_200_OK,
    summary="Request a key",
    responses={
        400: {"description": "Invalid length or capacity exceeded"},
        409: {"description": "request_id already used"},
    }
)
async def request_key(
    body: KeyRequestBody,
    key_service: KeyManagementService = Depends(get_key_service),
) -> KeyResponse:
    """
    Issue fresh key material and return its delivery locator.

    The material itself is fetched separately from the delivery URI.
    """
    try:
        delivery = await key_service.request_key(
            requested_bits=body.key_length_bits,
            recipient=body.recipient,
            request_id=body.request_id,
        )
    except (ValueError, CapacityExceededError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DuplicateRequestError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return KeyResponse(
        key_id=delivery.key_id,
        delivery_uri=delivery.delivery_uri,
        status=delivery.status,
    )


@router.get(
    "/keys/{key_id}",
    response_model=KeyMaterialResponse,
    summary="Fetch key material",
    responses={404: {"description": "Key unknown, expired, exhausted or destroyed"}}
)
async def get_key(
    key_id: str,
    key_service: KeyManagementService = Depends(get_key_service),
) -> KeyMaterialResponse:
    material = await key_service.fetch_key(key_id)
    if material is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Key {key_id} not found or inactive ({key_service.key_status(key_id).value})"
        )

    logger.info("Key material served", key_id=key_id)

    return KeyMaterialResponse(
        key_id=key_id,
        key_material=base64.b64encode(material).decode("ascii"),
        timestamp=datetime.now(timezone.utc),
    )


@router.post(
    "/keys/{key_id}/ack",
    response_model=KeyAckResponse,
    summary="Acknowledge key usage",
    responses={400: {"description": "Invalid amount, key unusable or capacity overrun"}}
)
async def acknowledge_key(
    key_id: str,
    body: KeyAckRequest,
    key_service: KeyManagementService = Depends(get_key_service),
) -> KeyAckResponse:
    """
    Account for bytes consumed from a key.

    An acknowledgement that would exceed the key's capacity is rejected and
    leaves its consumption unchanged.
    """
    try:
        total = await key_service.acknowledge_usage(
            key_id,
            body.consumed_bytes,
            message_id=body.message_id,
        )
    except (ValueError, KeyUnavailableError, ConsumptionOverrunError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return KeyAckResponse(status="acknowledged", consumed_bytes=total)


@router.delete(
    "/keys/{key_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Destroy a key",
    description="Irrecoverably erase key material. Idempotent."
)
async def destroy_key(
    key_id: str,
    key_service: KeyManagementService = Depends(get_key_service),
) -> Response:
    await key_service.destroy_key(key_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
