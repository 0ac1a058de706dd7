from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "Wallet Session Service"
    APP_VERSION: str = "1.0.0"
    ENV: str = Field(default="dev", description="dev|prod")
    DEBUG: bool = Field(default=True)

    # API
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Security
    INTERNAL_API_KEY: str = Field(default="", description="Required for admin endpoints (cleanup, listings, analytics)")

    # Key-value backend
    KV_BACKEND: str = Field(default="redis", description="redis|memory")
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    REDIS_MAX_CONNECTIONS: int = Field(default=20)
    BACKEND_TIMEOUT_SEC: float = Field(default=2.0)
    BACKEND_RETRIES: int = Field(default=3)

    # Sessions
    SESSION_TTL_SEC: int = Field(default=86400)
    ACTIVE_WINDOW_SEC: int = Field(default=86400)
    SUPPORTED_CHAIN_IDS: List[int] = Field(default_factory=lambda: [1, 8453])
    METADATA_MAX_BYTES: int = Field(default=10 * 1024)

    # Reconciliation
    RECONCILE_ENABLED: bool = True
    RECONCILE_INTERVAL_SEC: int = Field(default=300)
    INDEX_GRACE_SEC: int = Field(default=60, description="Max time an address index may outlive its newest session")

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SEC: int = 60
    RATE_LIMIT_SWEEP_SEC: int = 300

    # Analytics
    ANALYTICS_ENABLED: bool = True


settings = Settings()
