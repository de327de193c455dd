"""
In-memory records held by the Key Management Entity (KME).

KeyEntry is a unit of issued key material. It is owned exclusively by the
KeyManagementService; callers only ever see the key identifier, copies of the
material, or the metadata snapshot returned by ``summary()``.

Lifecycle:
    request_key  -> ACTIVE
    acknowledge  -> ACTIVE (consumed_bytes grows) -> EXHAUSTED at the cap
    time passes  -> EXPIRED once now > expiry_time
    destroy_key  -> DESTROYED (material zeroed, tombstone retained until expiry)

KeyRequestRecord is the audit record of a request. It is independent of the
KeyEntry lifecycle and is never mutated after delivery.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class KeyStatus(str, Enum):
    """Observable state of a key identifier."""
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    DESTROYED = "destroyed"
    UNKNOWN = "unknown"


class KeyRequestStatus(str, Enum):
    """Status of a key request audit record."""
    PENDING = "pending"
    DELIVERED = "delivered"


@dataclass
class KeyEntry:
    """
    Issued key material plus its consumption bookkeeping.

    Attributes:
        key_id: Opaque unique identifier (qkey-<epoch ms>-<16 hex chars>)
        material: Raw key bytes (bytearray so destroy can zero it in place)
        key_length: Declared length in bytes
        max_consumption_bytes: Bytes that may be acknowledged in total
        expiry_time: Entry is unusable once now > expiry_time (UTC)
        consumed_bytes: Bytes acknowledged so far (monotonic)
        is_active: Cleared on exhaustion or destruction; summary() also
            reports False once the entry has expired
        created_at: Issuance timestamp (UTC)
        destroyed_at: Set when material was erased
        recipient: Optional recipient hint from the request
    """
    key_id: str
    material: bytearray
    key_length: int
    max_consumption_bytes: int
    expiry_time: datetime
    consumed_bytes: int = 0
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    destroyed_at: Optional[datetime] = None
    recipient: Optional[str] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def is_destroyed(self) -> bool:
        return self.destroyed_at is not None

    @property
    def remaining_bytes(self) -> int:
        return self.max_consumption_bytes - self.consumed_bytes

    def is_expired(self, now: datetime) -> bool:
        return now > self.expiry_time

    def status(self, now: datetime) -> KeyStatus:
        """Derive the observable status at ``now``."""
        if self.is_destroyed:
            return KeyStatus.DESTROYED
        if self.is_expired(now):
            return KeyStatus.EXPIRED
        if self.consumed_bytes >= self.max_consumption_bytes:
            return KeyStatus.EXHAUSTED
        return KeyStatus.ACTIVE

    def summary(self, now: datetime) -> dict:
        """Metadata snapshot without key material."""
        utilization = 0.0
        if self.max_consumption_bytes:
            utilization = round(self.consumed_bytes / self.max_consumption_bytes * 100, 2)

        status = self.status(now)
        return {
            "key_id": self.key_id,
            "key_length": self.key_length,
            "consumed_bytes": self.consumed_bytes,
            "max_consumption_bytes": self.max_consumption_bytes,
            "utilization_percent": utilization,
            "expiry_time": self.expiry_time,
            "is_active": status is KeyStatus.ACTIVE,
            "status": status,
            "created_at": self.created_at,
        }

    def __repr__(self) -> str:
        return (
            f"<KeyEntry key_id={self.key_id} "
            f"consumed={self.consumed_bytes}/{self.max_consumption_bytes} "
            f"active={self.is_active} destroyed={self.is_destroyed}>"
        )


@dataclass
class KeyRequestRecord:
    """Audit record of a single key request."""
    request_id: str
    key_length: int
    recipient: Optional[str] = None
    status: KeyRequestStatus = KeyRequestStatus.PENDING
    delivery_uri: Optional[str] = None
    key_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class KeyDelivery:
    """Result of a successful key request (ETSI-style delivery)."""
    key_id: str
    delivery_uri: str
    status: KeyRequestStatus = KeyRequestStatus.DELIVERED


@dataclass(frozen=True)
class PoolStats:
    """Aggregate capacity figures over the active entries."""
    key_count: int
    total_capacity_bytes: int
    consumed_bytes: int
    remaining_bytes: int
    utilization_percent: float


@dataclass(frozen=True)
class MaintenanceReport:
    """Outcome of one pool maintenance sweep."""
    expired_removed: int
    keys_issued: int
    active_keys: int
