"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings shared by the engine, the repositories and the HTTP layer."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "ERP Logistics API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB
    DATABASE_URL: str = "sqlite+aiosqlite:///./erp_logistics.db"
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    # Ignored for SQLite, which is serialised through SQLITE_BEGIN_STATEMENT instead.
    DB_ISOLATION_LEVEL: str = "SERIALIZABLE"
    SQLITE_BEGIN_STATEMENT: str = "BEGIN IMMEDIATE"
    DB_AUTO_CREATE: bool = True
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025
    DB_NOWAIT_LOCKS: bool = False

    # Upper bound on waiting for a document / stock lock held by another request.
    LOCK_TIMEOUT_SEC: float = 10.0
    IDEMPOTENCY_TTL_MINUTES: int = 5

    # Delivery orders
    DO_SEQUENCE_LIMIT: int = 9999
    ALLOW_DELETE_DRAFT_WITH_LINES: bool = True
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 200
    SYSTEM_ACTOR: str = "system"

    # HTTP
    MAX_BODY_BYTES: int = 1_000_000


settings = Settings()
