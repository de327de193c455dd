"""
Envelope types produced and consumed by the cryptographic engine.

An EncryptionEnvelope is self-describing: together with a fresh fetch of the
referenced key it is all the engine needs to decrypt. The engine never stores
envelopes; callers persist or transport them.

Framing per level (ciphertext field):
    level1: ciphertext || tag(32)
    level2: nonce(12) || ciphertext || tag(16)
    level3: nonce(12) || kem_ciphertext(kem_ciphertext_length) || ciphertext || tag(16)
    level4: plaintext
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SecurityLevel(str, Enum):
    """Encryption strategy selector. The levels are independent, not ranked."""
    LEVEL1_OTP = "level1"
    LEVEL2_SEEDED_STREAM = "level2"
    LEVEL3_HYBRID_SIMULATED = "level3"
    LEVEL4_PLAIN = "level4"


@dataclass
class EncryptionEnvelope:
    """Ciphertext plus the framing metadata needed to reverse it."""
    security_level: SecurityLevel
    ciphertext: bytes
    key_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        """Encode for a text-only boundary (JSON with base64 ciphertext)."""
        return {
            "security_level": self.security_level.value,
            "key_id": self.key_id,
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "EncryptionEnvelope":
        """
        Decode an envelope produced by ``to_wire``.

        Raises:
            ValueError: If the level is unknown or the ciphertext is not base64
        """
        return cls(
            security_level=SecurityLevel(data["security_level"]),
            ciphertext=base64.b64decode(data["ciphertext"], validate=True),
            key_id=data.get("key_id"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class DecryptionResult:
    """
    Outcome of a decrypt call.

    ``plaintext`` is None whenever ``verified`` is False; callers must not
    surface content from an unverified envelope. ``purge_required`` is set
    after a verified level-1 decrypt: the caller must destroy the key and
    overwrite its stored copy of the envelope (view-once).
    """
    verified: bool
    plaintext: Optional[bytes] = None
    security_level: Optional[SecurityLevel] = None
    key_id: Optional[str] = None
    purge_required: bool = False
