"""
Unit tests for the key derivation and stream-cipher primitives.
"""

import hashlib
import hmac as std_hmac
import os

import pytest

from qkey_service.utils.stream_cipher import (
    NONCE_LENGTH,
    STREAM_TAG_LENGTH,
    derive_key,
    generate_keystream,
    hmac_sha256,
    open_stream,
    seal_stream,
    verify_hmac_sha256,
    xor_bytes,
)


class TestDeriveKey:
    """Unit tests for derive_key."""

    def test_matches_sha256_of_ikm_and_context(self):
        """Derived keys are SHA-256 of seed and context."""
        seed = os.urandom(32)
        expected = hashlib.sha256(seed + b"QuMail-AES-Key").digest()

        assert derive_key(seed, 32, b"QuMail-AES-Key") == expected

    def test_truncates_to_length(self):
        """Derived keys are truncated to the requested length."""
        assert len(derive_key(b"seed", 16, b"ctx")) == 16

    def test_contexts_are_separated(self):
        """Different contexts derive different keys."""
        seed = os.urandom(32)
        assert derive_key(seed, 32, b"a") != derive_key(seed, 32, b"b")

    @pytest.mark.parametrize("length", [0, 33])
    def test_rejects_out_of_range_length(self, length):
        """Lengths outside 1-32 are rejected."""
        with pytest.raises(ValueError, match="1-32"):
            derive_key(b"seed", length, b"ctx")


class TestXorBytes:
    """Unit tests for xor_bytes."""

    def test_xor_is_involution(self):
        """XOR with the same pad twice restores the data."""
        data = os.urandom(100)
        pad = os.urandom(132)

        assert xor_bytes(xor_bytes(data, pad), pad) == data

    def test_preserves_leading_zero_bytes(self):
        """Leading zero bytes are kept."""
        assert xor_bytes(b"\x00\x00\x01", b"\x00\x00\x00") == b"\x00\x00\x01"

    def test_empty_data(self):
        """Empty input gives empty output."""
        assert xor_bytes(b"", b"") == b""

    def test_short_pad_rejected(self):
        """A pad shorter than the data is rejected."""
        with pytest.raises(ValueError, match="Pad too short"):
            xor_bytes(b"abc", b"ab")


class TestKeystream:
    """Unit tests for generate_keystream."""

    def test_deterministic_per_key_and_nonce(self):
        """Keystream depends only on key and nonce."""
        key, nonce = os.urandom(32), os.urandom(NONCE_LENGTH)

        assert generate_keystream(key, nonce, 100) == generate_keystream(key, nonce, 100)
        assert generate_keystream(key, nonce, 100) != generate_keystream(key, os.urandom(NONCE_LENGTH), 100)

    def test_first_block_layout(self):
        """First block is SHA-256 of key, nonce and counter zero."""
        key, nonce = b"k" * 32, b"n" * NONCE_LENGTH
        expected = hashlib.sha256(key + nonce + (0).to_bytes(4, "big")).digest()

        assert generate_keystream(key, nonce, 32) == expected

    def test_prefix_property(self):
        """Shorter keystreams are prefixes of longer ones."""
        key, nonce = os.urandom(32), os.urandom(NONCE_LENGTH)

        assert generate_keystream(key, nonce, 70)[:40] == generate_keystream(key, nonce, 40)

    def test_no_repetition_past_256_blocks(self):
        """The block counter does not wrap after 256 blocks."""
        key, nonce = os.urandom(32), os.urandom(NONCE_LENGTH)
        stream = generate_keystream(key, nonce, 257 * 32)

        assert stream[256 * 32:] != stream[:32]


class TestHmac:
    """Unit tests for HMAC helpers."""

    def test_matches_stdlib_hmac(self):
        """hmac_sha256 matches the reference HMAC-SHA256."""
        key, data = os.urandom(32), b"message"
        expected = std_hmac.new(key, data, hashlib.sha256).digest()

        assert hmac_sha256(key, data) == expected

    def test_verify_accepts_valid_and_rejects_altered(self):
        """Verification accepts the right tag only."""
        key = os.urandom(32)
        tag = hmac_sha256(key, b"a", b"b")

        assert verify_hmac_sha256(key, tag, b"ab")
        assert not verify_hmac_sha256(key, tag[:-1] + bytes([tag[-1] ^ 1]), b"ab")
        assert not verify_hmac_sha256(key, tag[:16], b"ab")


class TestSealOpen:
    """Unit tests for seal_stream and open_stream."""

    def test_round_trip(self):
        """Sealed data opens under the same key and nonce."""
        key, nonce = os.urandom(32), os.urandom(NONCE_LENGTH)
        ciphertext, tag = seal_stream(key, nonce, b"hello stream")

        assert len(tag) == STREAM_TAG_LENGTH
        assert open_stream(key, nonce, ciphertext, tag) == (True, b"hello stream")

    def test_tampered_ciphertext_fails(self):
        """Tampered ciphertext fails to open."""
        key, nonce = os.urandom(32), os.urandom(NONCE_LENGTH)
        ciphertext, tag = seal_stream(key, nonce, b"hello stream")
        tampered = bytes([ciphertext[0] ^ 0x01]) + ciphertext[1:]

        assert open_stream(key, nonce, tampered, tag) == (False, b"")

    def test_wrong_nonce_fails(self):
        """Opening with another nonce fails."""
        key, nonce = os.urandom(32), os.urandom(NONCE_LENGTH)
        ciphertext, tag = seal_stream(key, nonce, b"hello stream")

        verified, _ = open_stream(key, os.urandom(NONCE_LENGTH), ciphertext, tag)
        assert not verified
