"""
Single-payload encryption and decryption endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, status

from qkey_service.models.key_entry import KeyStatus
from qkey_service.schemas.crypto import (
    DecryptRequest,
    DecryptResponse,
    EncryptRequest,
    EnvelopeSchema,
    as_text,
    decode_payload,
    encode_bytes,
)
from qkey_service.services.crypto_engine import (
    QuantumCryptoEngine,
    UnsupportedLevelError,
    describe_key_failure,
    get_crypto_engine,
)
from qkey_service.services.key_service import (
    CapacityExceededError,
    KeyServiceError,
    KeyUnavailableError,
)
from qkey_service.utils.logger import get_logger

logger = get_logger("routes.crypto")

router = APIRouter()


def key_failure_status(error: KeyUnavailableError) -> int:
    """404 for keys that never existed, 410 for keys that are gone."""
    if error.status is KeyStatus.UNKNOWN:
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_410_GONE


@router.post(
    "/encrypt",
    response_model=EnvelopeSchema,
    summary="Encrypt a payload",
    responses={
        400: {"description": "Unsupported level, bad payload or key too large"},
        409: {"description": "Key consumption was rejected"},
    }
)
async def encrypt_payload(
    body: EncryptRequest,
    engine: QuantumCryptoEngine = Depends(get_crypto_engine),
) -> EnvelopeSchema:
    """
    Encrypt a payload at the requested security level.

    The returned envelope is self-describing and can be passed to /decrypt
    as-is. The service does not keep a copy.
    """
    try:
        payload = decode_payload(body.payload, body.encoding)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        envelope = await engine.encrypt(payload, body.security_level, body.recipient)
    except (UnsupportedLevelError, CapacityExceededError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except KeyServiceError as e:
        logger.error("Encryption aborted by key service", error=str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return EnvelopeSchema.from_envelope(envelope)


@router.post(
    "/decrypt",
    response_model=DecryptResponse,
    summary="Decrypt an envelope",
    responses={
        400: {"description": "Malformed envelope"},
        404: {"description": "Referenced key does not exist"},
        410: {"description": "Referenced key expired or destroyed"},
    }
)
async def decrypt_envelope(
    body: DecryptRequest,
    engine: QuantumCryptoEngine = Depends(get_crypto_engine),
) -> DecryptResponse:
    """
    Decrypt an envelope.

    An authentication failure is a 200 with ``verified`` false and no
    plaintext. After a verified level1 read the key is destroyed here, so a
    second read of the same envelope returns 410.
    """
    try:
        envelope = body.envelope.to_envelope()
        result = await engine.decrypt(envelope)
    except KeyUnavailableError as e:
        raise HTTPException(status_code=key_failure_status(e), detail=describe_key_failure(e))
    except (UnsupportedLevelError, ValueError) as e:
        # EnvelopeFormatError and bad base64 are both ValueErrors
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if result.purge_required and result.key_id:
        await engine.key_service.destroy_key(result.key_id)

    if not result.verified:
        return DecryptResponse(
            verified=False,
            security_level=result.security_level,
            key_id=result.key_id,
        )

    return DecryptResponse(
        verified=True,
        security_level=result.security_level,
        key_id=result.key_id,
        plaintext_base64=encode_bytes(result.plaintext),
        plaintext=as_text(result.plaintext),
        purge_required=result.purge_required,
    )
