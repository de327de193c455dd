"""
Pydantic schemas for API request/response models.
"""
from qkey_service.schemas.crypto import (
    DecryptRequest,
    DecryptResponse,
    EncryptRequest,
    EnvelopeSchema,
    OpenResponse,
    SealedMessageSchema,
    SealRequest,
)
from qkey_service.schemas.kme import (
    AppKeyRequest,
    KeyAckRequest,
    KeyAckResponse,
    KeyMaterialResponse,
    KeyRequestBody,
    KeyResponse,
    KeySummary,
    PoolStatsResponse,
)

__all__ = [
    "DecryptRequest",
    "DecryptResponse",
    "EncryptRequest",
    "EnvelopeSchema",
    "OpenResponse",
    "SealedMessageSchema",
    "SealRequest",
    "AppKeyRequest",
    "KeyAckRequest",
    "KeyAckResponse",
    "KeyMaterialResponse",
    "KeyRequestBody",
    "KeyResponse",
    "KeySummary",
    "PoolStatsResponse",
]
