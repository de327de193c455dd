"""
Key derivation and stream-cipher primitives shared by the engine's levels.

Constructions:
    derive_key(ikm, length, context) = SHA-256(ikm || context)[:length]
    keystream block i                 = SHA-256(key || nonce || uint32_be(i))
    stream tag                        = HMAC-SHA256(key, nonce || ciphertext)[:16]

These are explicit constructions over SHA-256 and HMAC, not an AEAD.
"""

import struct

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import constant_time, hashes, hmac

DIGEST_SIZE = 32  # SHA-256 output
NONCE_LENGTH = 12  # 96-bit nonce
STREAM_TAG_LENGTH = 16  # Truncated HMAC-SHA256
MAX_BLOCKS = 2 ** 32  # uint32 block counter


def sha256(*parts: bytes) -> bytes:
    """SHA-256 over the concatenation of parts."""
    digest = hashes.Hash(hashes.SHA256())
    for part in parts:
        digest.update(part)
    return digest.finalize()


def derive_key(ikm: bytes, length: int, context: bytes) -> bytes:
    """
    Derive a key from input key material and a context string.

    Args:
        ikm: Input key material (e.g., a quantum seed)
        length: Output length in bytes (1-32)
        context: Domain-separation label, one per use

    Returns:
        Derived key bytes

    Raises:
        ValueError: If length is outside 1-32
    """
    if not 0 < length <= DIGEST_SIZE:
        raise ValueError(f"Derived key length must be 1-{DIGEST_SIZE} bytes, got {length}")
    return sha256(ikm, context)[:length]


def xor_bytes(data: bytes, pad: bytes) -> bytes:
    """
    XOR data against the first len(data) bytes of pad.

    Raises:
        ValueError: If pad is shorter than data
    """
    length = len(data)
    if len(pad) < length:
        raise ValueError(f"Pad too short: {len(pad)} bytes for {length} bytes of data")
    if length == 0:
        return b""

    mixed = int.from_bytes(data, "big") ^ int.from_bytes(pad[:length], "big")
    return mixed.to_bytes(length, "big")


def generate_keystream(key: bytes, nonce: bytes, length: int) -> bytes:
    """
    Deterministic keystream from a hash chain of key || nonce || counter.

    Raises:
        ValueError: If length needs more blocks than the counter can address
    """
    blocks = -(-length // DIGEST_SIZE)
    if blocks > MAX_BLOCKS:
        raise ValueError("Keystream length exceeds counter range")

    prefix = hashes.Hash(hashes.SHA256())
    prefix.update(key)
    prefix.update(nonce)

    stream = bytearray()
    for counter in range(blocks):
        block = prefix.copy()
        block.update(struct.pack(">I", counter))
        stream += block.finalize()

    return bytes(stream[:length])


def stream_xor(key: bytes, nonce: bytes, data: bytes) -> bytes:
    """Encrypt or decrypt data with the keystream for (key, nonce)."""
    return xor_bytes(data, generate_keystream(key, nonce, len(data)))


def hmac_sha256(key: bytes, *parts: bytes) -> bytes:
    """HMAC-SHA256 over the concatenation of parts."""
    mac = hmac.HMAC(key, hashes.SHA256())
    for part in parts:
        mac.update(part)
    return mac.finalize()


def verify_hmac_sha256(key: bytes, tag: bytes, *parts: bytes) -> bool:
    """Constant-time check of a full-length HMAC-SHA256 tag."""
    mac = hmac.HMAC(key, hashes.SHA256())
    for part in parts:
        mac.update(part)
    try:
        mac.verify(tag)
        return True
    except InvalidSignature:
        return False


def stream_tag(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Truncated authentication tag over nonce || ciphertext."""
    return hmac_sha256(key, nonce, ciphertext)[:STREAM_TAG_LENGTH]


def verify_stream_tag(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bool:
    """Constant-time check of a truncated stream tag."""
    return constant_time.bytes_eq(stream_tag(key, nonce, ciphertext), tag)


def seal_stream(key: bytes, nonce: bytes, plaintext: bytes) -> tuple[bytes, bytes]:
    """
    Encrypt and authenticate.

    Returns:
        Tuple of (ciphertext, tag)
    """
    ciphertext = stream_xor(key, nonce, plaintext)
    return ciphertext, stream_tag(key, nonce, ciphertext)


def open_stream(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> tuple[bool, bytes]:
    """
    Verify then decrypt.

    Returns:
        Tuple of (verified, plaintext); plaintext is empty when not verified
    """
    if not verify_stream_tag(key, nonce, ciphertext, tag):
        return False, b""
    return True, stream_xor(key, nonce, ciphertext)
