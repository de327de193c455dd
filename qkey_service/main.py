"""
Main FastAPI application for the quantum-key lifecycle service.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from qkey_service.config import settings
from qkey_service.middleware.logging import RequestLoggingMiddleware
from qkey_service.routes import crypto, health, keys, kme, messages
from qkey_service.services.audit import create_audit_sink
from qkey_service.services.crypto_engine import QuantumCryptoEngine
from qkey_service.services.kem_providers import create_kem_provider
from qkey_service.services.key_service import create_key_service
from qkey_service.services.message_crypto import MessageCryptoService
from qkey_service.services.pool_maintainer import KeyPoolMaintainer
from qkey_service.utils.logger import get_logger

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the key service, engine and message service, warms the key pool
    and runs the maintenance task until shutdown.
    """
    logger.info("Starting quantum-key lifecycle service")
    logger.info(f"Environment: {'DEBUG' if settings.DEBUG else 'PRODUCTION'}")

    audit_sink = create_audit_sink()
    key_service = create_key_service(audit_sink=audit_sink)

    try:
        kem_provider = create_kem_provider(settings.KEM_PROVIDER)
    except ValueError as e:
        raise RuntimeError(f"Cannot start application without a KEM provider: {e}") from e

    engine = QuantumCryptoEngine(key_service, kem_provider)

    app.state.key_service = key_service
    app.state.crypto_engine = engine
    app.state.message_crypto_service = MessageCryptoService(engine, audit_sink=audit_sink)

    report = await key_service.maintain_pool(
        settings.KME_POOL_TARGET_KEYS,
        settings.KME_DEFAULT_KEY_SIZE_BYTES,
    )
    logger.info("Key pool warmed up", active_keys=report.active_keys)

    maintainer = None
    if settings.KME_MAINTENANCE_ENABLED:
        maintainer = KeyPoolMaintainer(
            key_service,
            target_active_keys=settings.KME_POOL_TARGET_KEYS,
            default_key_size_bytes=settings.KME_DEFAULT_KEY_SIZE_BYTES,
            interval_seconds=settings.KME_MAINTENANCE_INTERVAL_SECONDS,
            timeout_seconds=settings.KME_MAINTENANCE_TIMEOUT_SECONDS,
        )
        maintainer.start()
    else:
        logger.info("Key pool maintenance disabled via configuration")
    app.state.pool_maintainer = maintainer

    yield

    logger.info("Shutting down quantum-key lifecycle service")
    if maintainer is not None:
        await maintainer.stop()
    app.state.pool_maintainer = None
    app.state.message_crypto_service = None
    app.state.crypto_engine = None
    app.state.key_service = None


app = FastAPI(
    title="Quantum-Key Lifecycle Service",
    description="Key management entity and tiered cryptographic engine for quantum-seeded messaging",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(health.router, tags=["Health"])
app.include_router(kme.router, prefix="/kme", tags=["KME"])
app.include_router(keys.router, prefix="/api/v1/keys", tags=["Keys"])
app.include_router(crypto.router, prefix="/api/v1/crypto", tags=["Crypto"])
app.include_router(messages.router, prefix="/api/v1/messages", tags=["Messages"])


@app.get("/", include_in_schema=False)
async def root():
    return {
        "message": "Quantum-Key Lifecycle Service",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "qkey_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower()
    )
