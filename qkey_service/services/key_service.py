"""
Key Management Entity (KME) service.

Issues, tracks, consumes and destroys symmetric key material following an
ETSI GS QKD 014 style request / delivery / acknowledge protocol:

- request_key: generate fresh random material and deliver a key identifier
- fetch_key: return material for an active, unexpired key
- acknowledge_usage: account for consumed bytes (strict cap, atomic per key)
- destroy_key: erase material irrecoverably (view-once messages)
- pool_stats / maintain_pool: capacity reporting and background top-up

Concurrency:
    The pool is a plain dict owned by the service. Inserting and removing
    entries are single-step operations on the event loop, so the pool has no
    global lock. Operations that mutate a single entry (acknowledge, destroy)
    hold that entry's own asyncio.Lock. Maintenance sweeps are serialised
    against each other by a lock that only maintenance takes.

Usage:
    service = create_key_service()

    delivery = await service.request_key(requested_bits=512, recipient="bob@example.com")
    material = await service.fetch_key(delivery.key_id)
    await service.acknowledge_usage(delivery.key_id, consumed_bytes=64)
    await service.destroy_key(delivery.key_id)
"""

import asyncio
import math
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from fastapi import Request

from qkey_service.models.key_entry import (
    KeyDelivery,
    KeyEntry,
    KeyRequestRecord,
    KeyRequestStatus,
    KeyStatus,
    MaintenanceReport,
    PoolStats,
)
from qkey_service.services.audit import AuditSink, LoggingAuditSink
from qkey_service.utils.logger import get_logger

logger = get_logger("kme")


class KeyServiceError(Exception):
    """Base exception for key service errors."""

    pass


class CapacityExceededError(KeyServiceError):
    """Raised when a requested key length exceeds the configured maximum."""

    pass


class DuplicateRequestError(KeyServiceError):
    """Raised when a request_id has already been used."""

    pass


class KeyUnavailableError(KeyServiceError):
    """
    Raised when a referenced key cannot be used.

    The ``status`` attribute tells unknown, expired, exhausted and destroyed
    keys apart so callers can report each condition differently.
    """

    def __init__(self, key_id: str, status: KeyStatus):
        self.key_id = key_id
        self.status = status
        super().__init__(f"Key {key_id} is unavailable ({status.value})")


class ConsumptionOverrunError(KeyServiceError):
    """Raised when an acknowledgement would push consumption past the cap."""

    def __init__(self, key_id: str, requested: int, remaining: int):
        self.key_id = key_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Acknowledging {requested} bytes on key {key_id} exceeds "
            f"remaining capacity of {remaining} bytes"
        )


def _zeroize(entry: KeyEntry) -> None:
    """Overwrite key material in place, then drop the buffer."""
    entry.material[:] = bytes(len(entry.material))
    entry.material = bytearray()


class KeyManagementService:
    """
    Owner of the key pool.

    Thread Safety:
        Designed for a single asyncio event loop (the FastAPI loop). Per-entry
        locks make operations on the same key linearizable; operations on
        different keys never wait on each other.
    """

    def __init__(
        self,
        max_key_size_bytes: int,
        key_expiry_seconds: int,
        audit_sink: Optional[AuditSink] = None,
        delivery_uri_prefix: str = "/kme/keys",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize an empty key pool.

        Args:
            max_key_size_bytes: Largest key a single request may ask for
            key_expiry_seconds: Horizon from issuance to expiry
            audit_sink: Destination for audit events (defaults to logging)
            delivery_uri_prefix: Prefix of the delivery locator returned to callers
            clock: Returns the current UTC time (injectable for tests)

        Raises:
            ValueError: If size or expiry settings are not positive
        """
        if max_key_size_bytes <= 0:
            raise ValueError("max_key_size_bytes must be positive")
        if key_expiry_seconds <= 0:
            raise ValueError("key_expiry_seconds must be positive")

        self.max_key_size_bytes = max_key_size_bytes
        self.key_expiry = timedelta(seconds=key_expiry_seconds)
        self.delivery_uri_prefix = delivery_uri_prefix.rstrip("/")
        self.audit = audit_sink or LoggingAuditSink()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._keys: Dict[str, KeyEntry] = {}
        self._requests: Dict[str, KeyRequestRecord] = {}
        self._maintenance_lock = asyncio.Lock()

        logger.info(
            "KeyManagementService initialized",
            max_key_size_bytes=max_key_size_bytes,
            key_expiry_seconds=key_expiry_seconds,
        )

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Issuance
    # =========================================================================

    async def request_key(
        self,
        requested_bits: int,
        recipient: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> KeyDelivery:
        """
        Issue fresh key material.

        Generates ``ceil(requested_bits / 8)`` random bytes and stores them as
        a new active KeyEntry whose consumption cap equals its length. Callers
        that need authentication overhead must include it in the request.

        Args:
            requested_bits: Requested key length in bits
            recipient: Optional recipient hint recorded with the request
            request_id: Caller-supplied request identifier (generated if omitted)

        Returns:
            KeyDelivery with the new key_id and its delivery locator

        Raises:
            ValueError: If requested_bits is not positive
            CapacityExceededError: If the length exceeds the configured maximum
            DuplicateRequestError: If request_id was already used
        """
        if requested_bits <= 0:
            raise ValueError("Requested key length must be positive")

        key_length = math.ceil(requested_bits / 8)
        if key_length > self.max_key_size_bytes:
            logger.warning(
                "Key request exceeds maximum size",
                requested_bytes=key_length,
                max_key_size_bytes=self.max_key_size_bytes,
            )
            raise CapacityExceededError(
                f"Key size {key_length} bytes exceeds maximum of "
                f"{self.max_key_size_bytes} bytes"
            )

        request_id = request_id or os.urandom(16).hex()
        if request_id in self._requests:
            raise DuplicateRequestError(f"Request {request_id} was already processed")

        record = KeyRequestRecord(
            request_id=request_id,
            key_length=key_length,
            recipient=recipient,
            created_at=self.now(),
        )
        self._requests[request_id] = record

        issued_at = self.now()
        key_id = f"qkey-{int(time.time() * 1000)}-{os.urandom(8).hex()}"
        entry = KeyEntry(
            key_id=key_id,
            material=bytearray(os.urandom(key_length)),
            key_length=key_length,
            max_consumption_bytes=key_length,
            expiry_time=issued_at + self.key_expiry,
            created_at=issued_at,
            recipient=recipient,
        )
        self._keys[key_id] = entry

        delivery_uri = f"{self.delivery_uri_prefix}/{key_id}"
        record.status = KeyRequestStatus.DELIVERED
        record.delivery_uri = delivery_uri
        record.key_id = key_id

        logger.debug("Issued key", key_id=key_id, key_length=key_length)
        self.audit.record(
            "key_requested",
            {
                "request_id": request_id,
                "key_id": key_id,
                "key_length": key_length,
                "recipient": recipient,
            },
        )

        return KeyDelivery(key_id=key_id, delivery_uri=delivery_uri)

    def get_key_request(self, request_id: str) -> Optional[KeyRequestRecord]:
        """Return the audit record for a request, or None if unknown."""
        return self._requests.get(request_id)

    # =========================================================================
    # Retrieval
    # =========================================================================

    def key_status(self, key_id: str) -> KeyStatus:
        """Return the observable status of a key identifier."""
        entry = self._keys.get(key_id)
        if entry is None:
            return KeyStatus.UNKNOWN
        return entry.status(self.now())

    async def fetch_key(self, key_id: str) -> Optional[bytes]:
        """
        Return key material for an active, unexpired key.

        Args:
            key_id: Key identifier from request_key

        Returns:
            Copy of the key material, or None if the key is unknown, expired,
            exhausted or destroyed
        """
        entry = self._keys.get(key_id)
        if entry is None or entry.status(self.now()) is not KeyStatus.ACTIVE:
            logger.debug("Key not found or not active", key_id=key_id)
            return None

        return bytes(entry.material)

    async def get_decryption_key(self, key_id: str) -> bytes:
        """
        Return key material for the decrypting party.

        Exhaustion only stops further consumption; the bytes already spent
        on a ciphertext stay readable until the key expires or is destroyed.

        Args:
            key_id: Key identifier stored in the envelope

        Returns:
            Copy of the key material

        Raises:
            KeyUnavailableError: If the key is unknown, expired or destroyed
        """
        entry = self._keys.get(key_id)
        if entry is None:
            raise KeyUnavailableError(key_id, KeyStatus.UNKNOWN)

        status = entry.status(self.now())
        if status not in (KeyStatus.ACTIVE, KeyStatus.EXHAUSTED):
            logger.info("Decryption key unavailable", key_id=key_id, status=status.value)
            raise KeyUnavailableError(key_id, status)

        return bytes(entry.material)

    def list_keys(self) -> List[dict]:
        """Metadata for every retained entry (never key material)."""
        now = self.now()
        return [entry.summary(now) for entry in list(self._keys.values())]

    # =========================================================================
    # Consumption
    # =========================================================================

    async def acknowledge_usage(
        self,
        key_id: str,
        consumed_bytes: int,
        message_id: Optional[str] = None,
    ) -> int:
        """
        Account for bytes consumed from a key.

        The new total is computed and committed under the entry's lock. An
        acknowledgement that would exceed the cap is rejected and leaves the
        total unchanged. The entry is deactivated once the cap is reached.

        Args:
            key_id: Key identifier
            consumed_bytes: Bytes consumed by this use
            message_id: Optional identifier of the message that used the bytes

        Returns:
            New consumed_bytes total

        Raises:
            ValueError: If consumed_bytes is not positive
            KeyUnavailableError: If the key is unknown, expired or destroyed
            ConsumptionOverrunError: If the cap would be exceeded
        """
        if consumed_bytes <= 0:
            raise ValueError("consumed_bytes must be positive")

        entry = self._keys.get(key_id)
        if entry is None:
            raise KeyUnavailableError(key_id, KeyStatus.UNKNOWN)

        async with entry.lock:
            status = entry.status(self.now())
            if status in (KeyStatus.EXPIRED, KeyStatus.DESTROYED):
                if status is KeyStatus.EXPIRED:
                    entry.is_active = False
                raise KeyUnavailableError(key_id, status)

            new_total = entry.consumed_bytes + consumed_bytes
            if new_total > entry.max_consumption_bytes:
                remaining = entry.remaining_bytes
                error = ConsumptionOverrunError(key_id, consumed_bytes, remaining)
            else:
                error = None
                entry.consumed_bytes = new_total
                if new_total >= entry.max_consumption_bytes:
                    entry.is_active = False

        if error is not None:
            logger.warning(
                "Rejected key usage acknowledgement",
                key_id=key_id,
                requested=consumed_bytes,
                remaining=error.remaining,
            )
            self.audit.record(
                "key_usage_rejected",
                {
                    "key_id": key_id,
                    "consumed_bytes": consumed_bytes,
                    "remaining_bytes": error.remaining,
                    "message_id": message_id,
                },
            )
            raise error

        logger.debug(
            "Key usage acknowledged",
            key_id=key_id,
            consumed=new_total,
            max_consumption=entry.max_consumption_bytes,
        )
        self.audit.record(
            "key_usage_acknowledged",
            {
                "key_id": key_id,
                "consumed_bytes": consumed_bytes,
                "total_consumed_bytes": new_total,
                "message_id": message_id,
            },
        )

        return new_total

    # =========================================================================
    # Destruction
    # =========================================================================

    async def destroy_key(self, key_id: str) -> bool:
        """
        Irrecoverably erase a key's material.

        The material is zeroed in place and the entry kept as a tombstone so
        later lookups report DESTROYED rather than UNKNOWN. Destroying an
        unknown or already destroyed key is not an error.

        Args:
            key_id: Key identifier

        Returns:
            True if material was erased by this call, False otherwise
        """
        entry = self._keys.get(key_id)
        if entry is None:
            logger.debug("Destroy requested for unknown key", key_id=key_id)
            return False

        async with entry.lock:
            if entry.is_destroyed:
                return False

            _zeroize(entry)
            entry.is_active = False
            entry.destroyed_at = self.now()

        logger.info("Destroyed key material", key_id=key_id)
        self.audit.record("key_destroyed", {"key_id": key_id})

        return True

    # =========================================================================
    # Pool management
    # =========================================================================

    def _active_entries(self, now: datetime) -> List[KeyEntry]:
        return [
            entry for entry in list(self._keys.values())
            if entry.status(now) is KeyStatus.ACTIVE
        ]

    async def pool_stats(self) -> PoolStats:
        """
        Aggregate capacity figures over the active entries.

        Returns:
            PoolStats with counts in bytes and utilization as a percentage
        """
        active = self._active_entries(self.now())
        total = sum(entry.max_consumption_bytes for entry in active)
        consumed = sum(entry.consumed_bytes for entry in active)
        utilization = round(consumed / total * 100, 2) if total else 0.0

        return PoolStats(
            key_count=len(active),
            total_capacity_bytes=total,
            consumed_bytes=consumed,
            remaining_bytes=total - consumed,
            utilization_percent=utilization,
        )

    async def maintain_pool(
        self,
        target_active_keys: int,
        default_key_size_bytes: int,
    ) -> MaintenanceReport:
        """
        Remove expired entries and top the pool up to the target.

        Idempotent: a second call with the same target issues nothing. Only
        other maintenance sweeps wait on this one; requests keep flowing.

        Args:
            target_active_keys: Desired number of active keys
            default_key_size_bytes: Size of each key issued by the top-up

        Returns:
            MaintenanceReport describing what the sweep did

        Raises:
            ValueError: If the target is negative
            CapacityExceededError: If default_key_size_bytes exceeds the maximum
        """
        if target_active_keys < 0:
            raise ValueError("target_active_keys cannot be negative")
        if default_key_size_bytes <= 0:
            raise ValueError("default_key_size_bytes must be positive")
        if default_key_size_bytes > self.max_key_size_bytes:
            raise CapacityExceededError(
                f"Default key size {default_key_size_bytes} bytes exceeds maximum of "
                f"{self.max_key_size_bytes} bytes"
            )

        async with self._maintenance_lock:
            now = self.now()
            expired_ids = [
                key_id for key_id, entry in list(self._keys.items())
                if entry.is_expired(now)
            ]
            for key_id in expired_ids:
                entry = self._keys.pop(key_id, None)
                if entry is not None:
                    _zeroize(entry)
                    entry.is_active = False

            active_count = len(self._active_entries(now))
            keys_to_add = max(0, target_active_keys - active_count)

            for i in range(keys_to_add):
                await self.request_key(
                    requested_bits=default_key_size_bytes * 8,
                    request_id=f"maintenance-{int(time.time() * 1000)}-{i}-{os.urandom(4).hex()}",
                )
                # Yield so a caller's timeout can cancel a long top-up
                await asyncio.sleep(0)

            report = MaintenanceReport(
                expired_removed=len(expired_ids),
                keys_issued=keys_to_add,
                active_keys=active_count + keys_to_add,
            )

        if expired_ids or keys_to_add:
            logger.info(
                "Key pool maintained",
                expired_removed=report.expired_removed,
                keys_issued=report.keys_issued,
                active_keys=report.active_keys,
            )
            self.audit.record(
                "key_pool_maintained",
                {
                    "expired_removed": report.expired_removed,
                    "keys_issued": report.keys_issued,
                    "active_keys": report.active_keys,
                },
            )

        return report


# =============================================================================
# Factory Function
# =============================================================================


def create_key_service(audit_sink: Optional[AuditSink] = None) -> KeyManagementService:
    """
    Factory function to create a key service from application settings.

    Example:
        >>> service = create_key_service()
    """
    from qkey_service.config import settings

    return KeyManagementService(
        max_key_size_bytes=settings.KME_MAX_KEY_SIZE_BYTES,
        key_expiry_seconds=settings.key_expiry_seconds,
        audit_sink=audit_sink,
        delivery_uri_prefix=settings.KME_DELIVERY_URI_PREFIX,
    )


# =============================================================================
# Dependency Injection Helper
# =============================================================================


def get_key_service(request: Request) -> KeyManagementService:
    """
    Dependency to get the key service from app state.

    Raises:
        RuntimeError: If the application started without a key service
    """
    service = getattr(request.app.state, "key_service", None)
    if service is None:
        raise RuntimeError("Key service unavailable")
    return service
