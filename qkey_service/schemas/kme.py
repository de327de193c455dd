"""
Pydantic schemas for the key management endpoints.

Key lengths on the ETSI-style surface are in bits; everything else is in bytes.
Key material only ever appears base64 encoded in KeyMaterialResponse.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from qkey_service.models.key_entry import KeyRequestStatus, KeyStatus


class KeyRequestBody(BaseModel):
    """ETSI-style key request."""
    request_id: str = Field(min_length=1, description="Caller-chosen unique request identifier")
    key_length_bits: int = Field(description="Requested key length in bits")
    recipient: Optional[str] = Field(None, description="Optional recipient hint")


class KeyResponse(BaseModel):
    """Delivery of a freshly issued key."""
    key_id: str = Field(description="Identifier of the issued key")
    delivery_uri: str = Field(description="Locator the key material can be fetched from")
    status: KeyRequestStatus = Field(description="Request status")


class KeyMaterialResponse(BaseModel):
    """Key material for an active key."""
    key_id: str
    key_material: str = Field(description="Base64 encoded key material")
    timestamp: datetime = Field(description="When the material was served")


class KeyAckRequest(BaseModel):
    """Acknowledgement of bytes consumed from a key."""
    consumed_bytes: int = Field(description="Bytes consumed by this use")
    message_id: Optional[str] = Field(None, description="Message that consumed the bytes")


class KeyAckResponse(BaseModel):
    """Result of an acknowledgement."""
    status: str = Field(default="acknowledged")
    consumed_bytes: int = Field(description="Total bytes consumed from the key")


class AppKeyRequest(BaseModel):
    """Application-facing key request (length in bytes)."""
    key_length: int = Field(default=8192, description="Requested key length in bytes")
    recipient: Optional[str] = Field(None, description="Optional recipient hint")


class KeySummary(BaseModel):
    """Key metadata without material."""
    key_id: str
    key_length: int
    consumed_bytes: int
    max_consumption_bytes: int
    utilization_percent: float
    expiry_time: datetime
    is_active: bool
    status: KeyStatus
    created_at: datetime


class KeyListResponse(BaseModel):
    """Inventory of retained keys."""
    keys: List[KeySummary]
    count: int


class PoolStatsResponse(BaseModel):
    """Aggregate figures over active keys."""
    key_count: int = Field(description="Number of active keys")
    total_capacity_bytes: int
    consumed_bytes: int
    remaining_bytes: int
    utilization_percent: float = Field(description="Consumed share of capacity, 0-100")


class MaintenanceResponse(BaseModel):
    """Outcome of an on-demand maintenance sweep."""
    expired_removed: int
    keys_issued: int
    active_keys: int
