"""
Tiered cryptographic engine.

Turns (payload, security_level, recipient) into an EncryptionEnvelope and back.
Key material always comes from the KeyManagementService; consumption is
acknowledged there before an envelope is returned.

Levels:
- level1 (OTP): pad of len(payload) + 32 bytes. XOR with pad[:n], tag is
  HMAC-SHA256 keyed by pad[n:n+32]. View-once: a verified decrypt sets
  purge_required.
- level2 (seeded stream): 32-byte seed, derived key, hash-chain keystream,
  truncated HMAC tag over nonce || ciphertext.
- level3 (simulated hybrid): 96-byte seed fed to a KEMProvider; the shared
  secret keys the level-2 stream.
- level4 (plain): identity transform, no key involved.

The engine never downgrades a level on key shortage and never persists
envelopes.

Usage:
    engine = QuantumCryptoEngine(key_service, create_kem_provider())
    envelope = await engine.encrypt(b"hello", SecurityLevel.LEVEL2_SEEDED_STREAM)
    result = await engine.decrypt(envelope)
    if result.verified:
        ...
"""

import os
from typing import Optional, Union

from fastapi import Request

from qkey_service.models.envelope import DecryptionResult, EncryptionEnvelope, SecurityLevel
from qkey_service.models.key_entry import KeyStatus
from qkey_service.services.kem_providers.base import KEMProvider
from qkey_service.services.key_service import KeyManagementService, KeyUnavailableError
from qkey_service.utils.logger import get_logger
from qkey_service.utils.stream_cipher import (
    NONCE_LENGTH,
    STREAM_TAG_LENGTH,
    derive_key,
    hmac_sha256,
    open_stream,
    seal_stream,
    verify_hmac_sha256,
    xor_bytes,
)

logger = get_logger("crypto.engine")

# Constants
OTP_AUTH_KEY_LENGTH = 32  # HMAC-SHA256 subkey taken from the pad
OTP_TAG_LENGTH = 32  # Full HMAC-SHA256 tag
STREAM_SEED_LENGTH = 32  # Level-2 quantum seed
STREAM_KEY_LENGTH = 32
STREAM_KEY_CONTEXT = b"QuMail-AES-Key"


class CryptoEngineError(Exception):
    """Base exception for engine errors."""

    pass


class UnsupportedLevelError(CryptoEngineError):
    """Raised for a security level outside the closed set."""

    pass


class EnvelopeFormatError(CryptoEngineError, ValueError):
    """Raised when an envelope's framing does not match its metadata."""

    pass


def coerce_security_level(value: Union[SecurityLevel, str]) -> SecurityLevel:
    """
    Normalize a level given as enum or string.

    Raises:
        UnsupportedLevelError: If the value is not a known level
    """
    if isinstance(value, SecurityLevel):
        return value
    try:
        return SecurityLevel(value)
    except ValueError:
        raise UnsupportedLevelError(f"Unsupported security level: {value}") from None


class QuantumCryptoEngine:
    """
    Strategy dispatch over SecurityLevel.

    Thread Safety:
        Holds no per-call state; key bookkeeping lives in the key service.
    """

    def __init__(self, key_service: KeyManagementService, kem_provider: KEMProvider):
        """
        Args:
            key_service: Source of key material and consumption accounting
            kem_provider: KEM used by the level-3 strategy
        """
        self.key_service = key_service
        self.kem_provider = kem_provider
        logger.info(
            "QuantumCryptoEngine initialized",
            kem_provider=kem_provider.get_provider_version(),
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def encrypt(
        self,
        payload: Union[str, bytes],
        security_level: Union[SecurityLevel, str],
        recipient: Optional[str] = None,
    ) -> EncryptionEnvelope:
        """
        Encrypt a payload at the given security level.

        Args:
            payload: Data to encrypt (str is UTF-8 encoded)
            security_level: Strategy selector
            recipient: Optional recipient hint passed to the key service

        Returns:
            EncryptionEnvelope ready to be stored or transported

        Raises:
            UnsupportedLevelError: For an unknown level
            CapacityExceededError: If the key service refuses the key size
            ConsumptionOverrunError: If the key service rejects consumption
            KeyUnavailableError: If freshly issued material cannot be fetched
        """
        level = coerce_security_level(security_level)
        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)

        if level is SecurityLevel.LEVEL1_OTP:
            return await self._encrypt_otp(data, recipient)
        elif level is SecurityLevel.LEVEL2_SEEDED_STREAM:
            return await self._encrypt_stream(data, recipient)
        elif level is SecurityLevel.LEVEL3_HYBRID_SIMULATED:
            return await self._encrypt_hybrid(data, recipient)
        elif level is SecurityLevel.LEVEL4_PLAIN:
            return EncryptionEnvelope(
                security_level=level,
                ciphertext=data,
                metadata={"algorithm": "none"},
            )

        raise UnsupportedLevelError(f"Unsupported security level: {level}")

    async def decrypt(self, envelope: EncryptionEnvelope) -> DecryptionResult:
        """
        Decrypt an envelope.

        Tag mismatch is reported as ``verified=False`` with no plaintext; it
        is never raised.

        Args:
            envelope: Envelope produced by encrypt()

        Returns:
            DecryptionResult

        Raises:
            UnsupportedLevelError: For an unknown level
            KeyUnavailableError: If the referenced key is unknown, expired or
                destroyed (status attribute says which)
            EnvelopeFormatError: If the framing is inconsistent
        """
        level = coerce_security_level(envelope.security_level)

        if level is SecurityLevel.LEVEL4_PLAIN:
            return DecryptionResult(
                verified=True,
                plaintext=envelope.ciphertext,
                security_level=level,
            )

        if not envelope.key_id:
            raise EnvelopeFormatError(f"Envelope for {level.value} has no key_id")

        if level is SecurityLevel.LEVEL1_OTP:
            verified, plaintext = await self._decrypt_otp(envelope)
        elif level is SecurityLevel.LEVEL2_SEEDED_STREAM:
            verified, plaintext = await self._decrypt_stream(envelope)
        elif level is SecurityLevel.LEVEL3_HYBRID_SIMULATED:
            verified, plaintext = await self._decrypt_hybrid(envelope)
        else:
            raise UnsupportedLevelError(f"Unsupported security level: {level}")

        if not verified:
            logger.warning(
                "Envelope authentication failed",
                key_id=envelope.key_id,
                security_level=level.value,
            )

        return DecryptionResult(
            verified=verified,
            plaintext=plaintext if verified else None,
            security_level=level,
            key_id=envelope.key_id,
            purge_required=verified and level is SecurityLevel.LEVEL1_OTP,
        )

    # =========================================================================
    # Key acquisition
    # =========================================================================

    async def _acquire(self, length: int, recipient: Optional[str]) -> tuple[str, str, bytes]:
        """
        Request and fetch ``length`` bytes of fresh key material.

        Returns:
            Tuple of (key_id, request_id, material)
        """
        request_id = os.urandom(16).hex()
        delivery = await self.key_service.request_key(
            requested_bits=length * 8,
            recipient=recipient,
            request_id=request_id,
        )

        material = await self.key_service.fetch_key(delivery.key_id)
        if material is None:
            raise KeyUnavailableError(delivery.key_id, self.key_service.key_status(delivery.key_id))

        return delivery.key_id, request_id, material

    async def _commit(self, key_id: str, consumed_bytes: int, request_id: str) -> None:
        """
        Acknowledge consumption; on failure the issued key is destroyed.

        An envelope whose consumption could not be acknowledged must never
        reach the caller, so its key is not left behind either.
        """
        try:
            await self.key_service.acknowledge_usage(
                key_id, consumed_bytes, message_id=request_id
            )
        except Exception as e:
            logger.error(
                "Key consumption rejected; discarding envelope",
                key_id=key_id,
                consumed_bytes=consumed_bytes,
                error=str(e),
            )
            await self.key_service.destroy_key(key_id)
            raise

    # =========================================================================
    # Level 1: One-Time Pad
    # =========================================================================

    async def _encrypt_otp(self, data: bytes, recipient: Optional[str]) -> EncryptionEnvelope:
        length = len(data)
        key_id, request_id, pad = await self._acquire(length + OTP_AUTH_KEY_LENGTH, recipient)

        ciphertext = xor_bytes(data, pad)
        auth_key = pad[length : length + OTP_AUTH_KEY_LENGTH]
        tag = hmac_sha256(auth_key, ciphertext)

        await self._commit(key_id, length + OTP_AUTH_KEY_LENGTH, request_id)

        logger.debug("Encrypted payload with OTP", key_id=key_id, data_length=length)

        return EncryptionEnvelope(
            security_level=SecurityLevel.LEVEL1_OTP,
            ciphertext=ciphertext + tag,
            key_id=key_id,
            metadata={
                "data_length": length,
                "tag_length": OTP_TAG_LENGTH,
                "algorithm": "OTP-XOR",
                "auth_algorithm": "HMAC-SHA256",
            },
        )

    async def _decrypt_otp(self, envelope: EncryptionEnvelope) -> tuple[bool, bytes]:
        length = envelope.metadata.get("data_length")
        if not isinstance(length, int) or length < 0:
            raise EnvelopeFormatError("OTP envelope is missing a valid data_length")
        if len(envelope.ciphertext) != length + OTP_TAG_LENGTH:
            raise EnvelopeFormatError(
                f"OTP envelope is {len(envelope.ciphertext)} bytes, "
                f"expected {length + OTP_TAG_LENGTH}"
            )

        pad = await self.key_service.get_decryption_key(envelope.key_id)
        if len(pad) < length + OTP_AUTH_KEY_LENGTH:
            raise EnvelopeFormatError(
                f"Key {envelope.key_id} is shorter than the envelope requires"
            )

        ciphertext = envelope.ciphertext[:length]
        tag = envelope.ciphertext[length:]
        auth_key = pad[length : length + OTP_AUTH_KEY_LENGTH]

        if not verify_hmac_sha256(auth_key, tag, ciphertext):
            return False, b""

        return True, xor_bytes(ciphertext, pad)

    # =========================================================================
    # Level 2: Quantum-seeded authenticated stream
    # =========================================================================

    async def _encrypt_stream(self, data: bytes, recipient: Optional[str]) -> EncryptionEnvelope:
        key_id, request_id, seed = await self._acquire(STREAM_SEED_LENGTH, recipient)

        stream_key = derive_key(seed, STREAM_KEY_LENGTH, STREAM_KEY_CONTEXT)
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext, tag = seal_stream(stream_key, nonce, data)

        await self._commit(key_id, STREAM_SEED_LENGTH, request_id)

        return EncryptionEnvelope(
            security_level=SecurityLevel.LEVEL2_SEEDED_STREAM,
            ciphertext=nonce + ciphertext + tag,
            key_id=key_id,
            metadata={
                "nonce_length": NONCE_LENGTH,
                "tag_length": STREAM_TAG_LENGTH,
                "algorithm": "QKD-Seeded-SHA256-Stream",
                "auth_algorithm": "HMAC-SHA256-128",
            },
        )

    async def _decrypt_stream(self, envelope: EncryptionEnvelope) -> tuple[bool, bytes]:
        nonce_length, tag_length = self._stream_framing(envelope)
        body = envelope.ciphertext
        if len(body) < nonce_length + tag_length:
            raise EnvelopeFormatError("Stream envelope is shorter than nonce and tag")

        seed = await self.key_service.get_decryption_key(envelope.key_id)
        stream_key = derive_key(seed, STREAM_KEY_LENGTH, STREAM_KEY_CONTEXT)

        nonce = body[:nonce_length]
        ciphertext = body[nonce_length : len(body) - tag_length]
        tag = body[len(body) - tag_length :]

        return open_stream(stream_key, nonce, ciphertext, tag)

    # =========================================================================
    # Level 3: Simulated hybrid KEM
    # =========================================================================

    async def _encrypt_hybrid(self, data: bytes, recipient: Optional[str]) -> EncryptionEnvelope:
        seed_length = self.kem_provider.seed_length
        key_id, request_id, seed = await self._acquire(seed_length, recipient)

        encapsulation = self.kem_provider.encapsulate(seed)
        ciphertext, tag = seal_stream(
            encapsulation.shared_secret, encapsulation.nonce, data
        )

        await self._commit(key_id, seed_length, request_id)

        return EncryptionEnvelope(
            security_level=SecurityLevel.LEVEL3_HYBRID_SIMULATED,
            ciphertext=encapsulation.nonce + encapsulation.kem_ciphertext + ciphertext + tag,
            key_id=key_id,
            metadata={
                "nonce_length": len(encapsulation.nonce),
                "kem_ciphertext_length": len(encapsulation.kem_ciphertext),
                "tag_length": STREAM_TAG_LENGTH,
                "algorithm": self.kem_provider.get_provider_version(),
            },
        )

    async def _decrypt_hybrid(self, envelope: EncryptionEnvelope) -> tuple[bool, bytes]:
        nonce_length, tag_length = self._stream_framing(envelope)
        kem_length = envelope.metadata.get("kem_ciphertext_length")
        if not isinstance(kem_length, int) or kem_length <= 0:
            raise EnvelopeFormatError("Hybrid envelope is missing kem_ciphertext_length")

        body = envelope.ciphertext
        header_length = nonce_length + kem_length
        if len(body) < header_length + tag_length:
            raise EnvelopeFormatError("Hybrid envelope is shorter than its framing")

        seed = await self.key_service.get_decryption_key(envelope.key_id)

        nonce = body[:nonce_length]
        kem_ciphertext = body[nonce_length:header_length]
        ciphertext = body[header_length : len(body) - tag_length]
        tag = body[len(body) - tag_length :]

        try:
            shared_secret = self.kem_provider.decapsulate(seed, kem_ciphertext)
        except ValueError as e:
            raise EnvelopeFormatError(f"Decapsulation failed: {e}") from e

        return open_stream(shared_secret, nonce, ciphertext, tag)

    @staticmethod
    def _stream_framing(envelope: EncryptionEnvelope) -> tuple[int, int]:
        nonce_length = envelope.metadata.get("nonce_length", NONCE_LENGTH)
        tag_length = envelope.metadata.get("tag_length", STREAM_TAG_LENGTH)
        if nonce_length != NONCE_LENGTH or tag_length != STREAM_TAG_LENGTH:
            raise EnvelopeFormatError(
                f"Unsupported stream framing: nonce={nonce_length}, tag={tag_length}"
            )
        return nonce_length, tag_length


def describe_key_failure(error: KeyUnavailableError) -> str:
    """Human-readable reason for a key failure, one per status."""
    messages = {
        KeyStatus.UNKNOWN: "The key referenced by this message does not exist",
        KeyStatus.EXPIRED: "The key referenced by this message has expired",
        KeyStatus.EXHAUSTED: "The key referenced by this message is exhausted",
        KeyStatus.DESTROYED: "This message was already read and its key destroyed",
    }
    return messages.get(error.status, "The key referenced by this message is unavailable")


# =============================================================================
# Dependency Injection Helper
# =============================================================================


def get_crypto_engine(request: Request) -> QuantumCryptoEngine:
    """
    Dependency to get the crypto engine from app state.

    Raises:
        RuntimeError: If the application started without an engine
    """
    engine = getattr(request.app.state, "crypto_engine", None)
    if engine is None:
        raise RuntimeError("Crypto engine unavailable")
    return engine
