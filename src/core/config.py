"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============== Environment ==============
    environment: Literal["development", "staging", "production"] = "development"

    # ============== Database ==============
    postgres_user: str = "petrecords"
    postgres_password: str = "petrecords_dev_password"
    postgres_db: str = "petrecords"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    # Any SQLAlchemy async URL; sqlite+aiosqlite is used by the test suite
    database_url: str | None = None

    @property
    def db_url(self) -> str:
        """Construct database URL from components or use explicit URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def db_url_sync(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.db_url.replace("postgresql+asyncpg://", "postgresql://")

    @property
    def is_sqlite(self) -> bool:
        return self.db_url.startswith("sqlite")

    # ============== Redis ==============
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_url: RedisDsn | None = None

    @property
    def redis_dsn(self) -> str:
        """Construct Redis URL from components or use explicit URL."""
        if self.redis_url:
            return str(self.redis_url)
        return f"redis://{self.redis_host}:{self.redis_port}/0"

    # ============== API ==============
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    api_reload: bool = False
    cors_origins_str: str = Field(default="http://localhost:3000,http://localhost:8000", alias="cors_origins")

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # ============== LLM Configuration ==============
    llm_provider: Literal["claude", "gemini", "mock"] = "claude"
    anthropic_api_key: str | None = None
    claude_model: str = "claude-sonnet-4-20250514"
    google_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    llm_max_tokens: int = Field(default=4096, ge=256, le=32768)
    analysis_timeout_seconds: float = Field(default=120.0, gt=0, le=900)
    # An in-flight run older than the analysis timeout plus this grace is treated as lost
    stale_run_grace_seconds: float = Field(default=300.0, ge=0, le=3600)

    @property
    def stale_run_after_seconds(self) -> float:
        return self.analysis_timeout_seconds + self.stale_run_grace_seconds

    # ============== Uploads ==============
    pdf_max_size_mb: int = Field(default=20, ge=1, le=200)
    image_max_size_mb: int = Field(default=10, ge=1, le=100)
    # Items below this confidence are flagged for review
    review_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    # Classification must reach this score before its type steers extraction
    type_hint_min_confidence: int = Field(default=50, ge=0, le=100)

    @property
    def pdf_max_bytes(self) -> int:
        return self.pdf_max_size_mb * 1024 * 1024

    @property
    def image_max_bytes(self) -> int:
        return self.image_max_size_mb * 1024 * 1024

    # ============== Storage ==============
    storage_provider: Literal["local", "s3"] = "local"
    storage_local_dir: str = "./data/uploads"
    s3_bucket: str | None = None
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None

    # ============== Celery ==============
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_task_always_eager: bool = False  # Synchronous execution for testing

    @property
    def celery_broker(self) -> str:
        """Get Celery broker URL."""
        return self.celery_broker_url or self.redis_dsn

    @property
    def celery_backend(self) -> str:
        """Get Celery result backend URL."""
        return self.celery_result_backend or self.redis_dsn

    # ============== Merge Locks ==============
    redis_locks_enabled: bool = True
    merge_lock_timeout_seconds: float = Field(default=30.0, gt=0, le=600)

    # ============== Logging ==============
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @field_validator("storage_local_dir")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/") or "/"

    # ============== Computed Properties ==============
    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
