"""
Pytest configuration and fixtures for quantum-key service tests.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import pytest
from httpx import AsyncClient, ASGITransport

# Set environment before importing Settings so the app never starts background work in tests
os.environ.setdefault("KME_MAINTENANCE_ENABLED", "false")
os.environ.setdefault("KME_POOL_TARGET_KEYS", "3")
os.environ.setdefault("KME_DEFAULT_KEY_SIZE_BYTES", "1024")

from qkey_service.main import app
from qkey_service.services.audit import AuditSink
from qkey_service.services.crypto_engine import QuantumCryptoEngine
from qkey_service.services.kem_providers import SimulatedKyberKEM
from qkey_service.services.key_service import KeyManagementService
from qkey_service.services.message_crypto import MessageCryptoService

TEST_MAX_KEY_SIZE_BYTES = 1024 * 1024
TEST_KEY_EXPIRY_SECONDS = 24 * 60 * 60


class FakeClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingAuditSink(AuditSink):
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def record(self, action: str, details: Dict[str, Any]) -> None:
        self.events.append((action, details))

    def actions(self) -> List[str]:
        return [action for action, _ in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture
def key_service(clock: FakeClock, audit_sink: RecordingAuditSink) -> KeyManagementService:
    """Key service with an empty pool and a controllable clock."""
    return KeyManagementService(
        max_key_size_bytes=TEST_MAX_KEY_SIZE_BYTES,
        key_expiry_seconds=TEST_KEY_EXPIRY_SECONDS,
        audit_sink=audit_sink,
        clock=clock,
    )


@pytest.fixture
def kem_provider() -> SimulatedKyberKEM:
    return SimulatedKyberKEM()


@pytest.fixture
def engine(key_service: KeyManagementService, kem_provider: SimulatedKyberKEM) -> QuantumCryptoEngine:
    return QuantumCryptoEngine(key_service, kem_provider)


@pytest.fixture
def message_service(engine: QuantumCryptoEngine, audit_sink: RecordingAuditSink) -> MessageCryptoService:
    return MessageCryptoService(engine, audit_sink=audit_sink)


@pytest.fixture
async def client(
    key_service: KeyManagementService,
    engine: QuantumCryptoEngine,
    message_service: MessageCryptoService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async test client for the FastAPI application.

    ASGITransport does not run the lifespan, so the services are placed on
    app.state directly. Maintenance is left disabled.
    """
    app.state.key_service = key_service
    app.state.crypto_engine = engine
    app.state.message_crypto_service = message_service
    app.state.pool_maintainer = None

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.state.key_service = None
    app.state.crypto_engine = None
    app.state.message_crypto_service = None
    app.state.pool_maintainer = None
