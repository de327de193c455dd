"""
Abstract base class for Key Encapsulation Mechanism (KEM) providers.

KEM providers supply the shared secret for the level-3 hybrid strategy. The
engine only relies on two calls:

1. encapsulate(seed) -> Encapsulation(shared_secret, kem_ciphertext, nonce)
2. decapsulate(seed, kem_ciphertext) -> shared_secret

The level-3 envelope framing (nonce || kem_ciphertext || ciphertext || tag,
with kem_ciphertext_length in metadata) does not depend on the provider, so a
real post-quantum KEM can replace the simulated one without touching the
engine or stored envelopes' layout.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Encapsulation:
    """Result of a KEM encapsulation."""
    shared_secret: bytes
    kem_ciphertext: bytes
    nonce: bytes


class KEMProvider(ABC):
    """
    Abstract base class for KEM providers.

    Decapsulation must be deterministic: the same seed and kem_ciphertext
    always yield the shared secret produced by the matching encapsulation.

    Example:
        >>> provider = SimulatedKyberKEM()
        >>> enc = provider.encapsulate(seed)
        >>> assert provider.decapsulate(seed, enc.kem_ciphertext) == enc.shared_secret
    """

    @property
    @abstractmethod
    def seed_length(self) -> int:
        """Bytes of quantum seed one encapsulation consumes."""
        pass

    @abstractmethod
    def encapsulate(self, seed: bytes) -> Encapsulation:
        """
        Produce a fresh shared secret and its encapsulation.

        Args:
            seed: Quantum key material of at least ``seed_length`` bytes

        Returns:
            Encapsulation with shared secret, KEM ciphertext and stream nonce

        Raises:
            ValueError: If the seed is too short
        """
        pass

    @abstractmethod
    def decapsulate(self, seed: bytes, kem_ciphertext: bytes) -> bytes:
        """
        Recover the shared secret from the seed and KEM ciphertext.

        Raises:
            ValueError: If the seed or ciphertext has the wrong size
        """
        pass

    @abstractmethod
    def get_provider_version(self) -> str:
        """
        Get the version identifier for this KEM provider.

        Recorded as the envelope's algorithm so decryption can detect a
        provider mismatch.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} version={self.get_provider_version()}>"
