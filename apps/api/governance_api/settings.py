"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PRINT_TOKEN_SECRET = "dev-print-token-secret-change-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_db: str = "governance"
    postgres_port: int = 5432

    # API
    environment: str = "development"
    public_base_url: str = "http://localhost:8000"

    # Logging
    log_level: str = "INFO"

    # Ledger
    ledger_append_max_attempts: int = 5
    ledger_append_backoff_seconds: float = 0.05
    ledger_append_backoff_max_seconds: float = 1.0
    ledger_verify_batch_size: int = 500

    # Report runs
    report_run_dedupe_seconds: int = 30

    # Print tokens (HMAC secret for the headless renderer capability)
    print_token_secret: str = DEFAULT_PRINT_TOKEN_SECRET
    print_token_ttl_seconds: int = 300

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        if self.postgres_user and self.postgres_password:
            return (
                f"postgresql://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return "sqlite:///./governance.db"

    @property
    def is_development(self) -> bool:
        """Check if running in development or test."""
        return self.environment.lower() in ("development", "test", "dev")

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if not self.is_development:
            if self.print_token_secret == DEFAULT_PRINT_TOKEN_SECRET:
                raise ValueError(
                    "PRINT_TOKEN_SECRET must be set in production. "
                    "Do not use the development default."
                )
            if len(self.print_token_secret) < 32:
                raise ValueError("PRINT_TOKEN_SECRET must be at least 32 characters.")
            if self.database_url_computed.startswith("sqlite"):
                raise ValueError(
                    "SQLite is not allowed in production. "
                    "Set DATABASE_URL to a PostgreSQL instance."
                )
        if self.ledger_append_max_attempts < 1:
            raise ValueError("LEDGER_APPEND_MAX_ATTEMPTS must be at least 1.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
