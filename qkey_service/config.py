"""
Configuration management using Pydantic Settings.
Loads configuration from environment variables and .env file.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "*"

    # Development/Debug
    DEBUG: bool = False
    RELOAD: bool = False

    # Key Management Entity (KME) Configuration
    KME_MAX_KEY_SIZE_BYTES: int = 1024 * 1024  # 1MB max per issued key
    KME_KEY_EXPIRY_HOURS: int = 24  # Horizon from issuance to expiry
    KME_POOL_TARGET_KEYS: int = 10  # Active keys the maintenance sweep keeps available
    KME_DEFAULT_KEY_SIZE_BYTES: int = 8192  # Size of keys issued by the sweep
    KME_DELIVERY_URI_PREFIX: str = "/kme/keys"

    # Pool Maintenance Configuration
    KME_MAINTENANCE_ENABLED: bool = True
    KME_MAINTENANCE_INTERVAL_SECONDS: float = 300.0  # Every 5 minutes
    KME_MAINTENANCE_TIMEOUT_SECONDS: float = 30.0  # Upper bound for a single sweep

    # Key Encapsulation Configuration (level 3)
    KEM_PROVIDER: str = "simulated-kyber768"  # Options: simulated-kyber768

    # Logging Configuration (Optional - per-module log levels)
    APP_LOG_LEVEL: Optional[str] = None
    UVICORN_LOG_LEVEL: Optional[str] = None
    HTTPX_LOG_LEVEL: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def key_expiry_seconds(self) -> int:
        """Convert key expiry horizon from hours to seconds."""
        return self.KME_KEY_EXPIRY_HOURS * 60 * 60


# Global settings instance
settings = Settings()
