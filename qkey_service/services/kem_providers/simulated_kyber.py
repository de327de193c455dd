"""
Simulated CRYSTALS-Kyber-768 KEM provider.

This is NOT a lattice KEM. It reproduces the interface and sizes of
Kyber-768 over SHA-256 derivations so the level-3 path can run end to end:

    kyber_seed   = seed[:64]
    private_key  = derive(kyber_seed, "Kyber-PrivateKey")
    public_key   = derive(kyber_seed, "Kyber-PublicKey")
    kem_ct       = random(1088), first bytes XOR-mixed with seed[64:]
    ephemeral    = derive(kem_ct, "Kyber-Ephemeral")
    shared       = derive(private_key || ephemeral, "Kyber-SharedSecret")

Decapsulation repeats the last two lines, which is why it needs no state
from encapsulation. The ephemeral value covers the whole KEM ciphertext, so
any change to it yields a different shared secret.
"""

import os

from qkey_service.services.kem_providers.base import Encapsulation, KEMProvider
from qkey_service.utils.logger import get_logger
from qkey_service.utils.stream_cipher import NONCE_LENGTH, derive_key

logger = get_logger("kem.simulated_kyber")


class SimulatedKyberKEM(KEMProvider):
    """
    Kyber-768 shaped KEM simulation keyed by a 96-byte quantum seed.

    Thread Safety:
        Stateless; safe for concurrent use.
    """

    VERSION = "CRYSTALS-Kyber-768-Simulated"
    KYBER_SEED_LENGTH = 64
    SEED_LENGTH = 96  # 64 bytes of KEM seed + 32 bytes mixed into the ciphertext
    CIPHERTEXT_LENGTH = 1088  # Kyber-768 ciphertext size
    SECRET_LENGTH = 32

    @property
    def seed_length(self) -> int:
        return self.SEED_LENGTH

    def _check_seed(self, seed: bytes) -> None:
        if len(seed) < self.SEED_LENGTH:
            raise ValueError(
                f"KEM seed too short: {len(seed)} bytes, minimum {self.SEED_LENGTH}"
            )

    def derive_keypair(self, seed: bytes) -> tuple[bytes, bytes]:
        """
        Derive the (private_key, public_key) pair from the seed.

        The two halves use independent derivation contexts.
        """
        kyber_seed = seed[: self.KYBER_SEED_LENGTH]
        private_key = derive_key(kyber_seed, self.SECRET_LENGTH, b"Kyber-PrivateKey")
        public_key = derive_key(kyber_seed, self.SECRET_LENGTH, b"Kyber-PublicKey")
        return private_key, public_key

    def _shared_secret(self, private_key: bytes, kem_ciphertext: bytes) -> bytes:
        ephemeral = derive_key(kem_ciphertext, self.SECRET_LENGTH, b"Kyber-Ephemeral")
        return derive_key(private_key + ephemeral, self.SECRET_LENGTH, b"Kyber-SharedSecret")

    def encapsulate(self, seed: bytes) -> Encapsulation:
        self._check_seed(seed)
        private_key, _ = self.derive_keypair(seed)

        kem_ciphertext = bytearray(os.urandom(self.CIPHERTEXT_LENGTH))
        leftover = seed[self.KYBER_SEED_LENGTH : self.SEED_LENGTH]
        for i, value in enumerate(leftover[: self.CIPHERTEXT_LENGTH]):
            kem_ciphertext[i] ^= value
        kem_ciphertext = bytes(kem_ciphertext)

        return Encapsulation(
            shared_secret=self._shared_secret(private_key, kem_ciphertext),
            kem_ciphertext=kem_ciphertext,
            nonce=os.urandom(NONCE_LENGTH),
        )

    def decapsulate(self, seed: bytes, kem_ciphertext: bytes) -> bytes:
        self._check_seed(seed)
        if len(kem_ciphertext) != self.CIPHERTEXT_LENGTH:
            raise ValueError(
                f"KEM ciphertext must be {self.CIPHERTEXT_LENGTH} bytes, "
                f"got {len(kem_ciphertext)}"
            )

        private_key, _ = self.derive_keypair(seed)
        return self._shared_secret(private_key, kem_ciphertext)

    def get_provider_version(self) -> str:
        return self.VERSION


def create_kem_provider(provider: str = "simulated-kyber768") -> KEMProvider:
    """
    Factory function to create a KEM provider.

    Args:
        provider: Provider type ("simulated-kyber768")

    Raises:
        ValueError: If provider is not supported
    """
    if provider == "simulated-kyber768":
        kem = SimulatedKyberKEM()
        logger.info("KEM provider initialized", version=kem.get_provider_version())
        return kem

    raise ValueError(f"Unsupported KEM provider: {provider}")
