"""
Key encapsulation providers package.

Provides KEM providers for the level-3 hybrid strategy.
Each provider implements the KEMProvider ABC.

Available providers:
- SimulatedKyberKEM: Kyber-768 shaped simulation over SHA-256 derivations
"""

from qkey_service.services.kem_providers.base import Encapsulation, KEMProvider
from qkey_service.services.kem_providers.simulated_kyber import (
    SimulatedKyberKEM,
    create_kem_provider,
)

__all__ = ["Encapsulation", "KEMProvider", "SimulatedKyberKEM", "create_kem_provider"]
