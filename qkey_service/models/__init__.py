"""
Domain records for the key service and the cryptographic engine.
"""
from qkey_service.models.key_entry import (
    KeyEntry,
    KeyStatus,
    KeyRequestRecord,
    KeyRequestStatus,
    KeyDelivery,
    PoolStats,
    MaintenanceReport,
)
from qkey_service.models.envelope import (
    SecurityLevel,
    EncryptionEnvelope,
    DecryptionResult,
)

__all__ = [
    "KeyEntry",
    "KeyStatus",
    "KeyRequestRecord",
    "KeyRequestStatus",
    "KeyDelivery",
    "PoolStats",
    "MaintenanceReport",
    "SecurityLevel",
    "EncryptionEnvelope",
    "DecryptionResult",
]
