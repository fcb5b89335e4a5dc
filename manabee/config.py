"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage - "sql" for the database-backed store, "memory" for local runs
    storage_backend: str = "sql"

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations: bool = True

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Manabee Backend"
    api_version: str = "0.1.0"
    api_description: str = "AI job processing, quotas and notifications for Manabee tutoring"

    # Generative AI (Gemini)
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # Usage limits
    daily_ai_limit: int = 10  # AI requests per user per UTC day
    quota_retention_days: int = 7

    # Background jobs
    sweep_interval_seconds: int = 86400
    stale_processing_seconds: int = 900

    # Firebase (identity verification + push delivery)
    firebase_credentials: str = ""  # Service account JSON or path to it
    firebase_project_id: str = ""
    push_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "manabee-backend"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if self.storage_backend not in ("sql", "memory"):
            errors.append(f"STORAGE_BACKEND must be 'sql' or 'memory', got: {self.storage_backend}")
        elif self.storage_backend == "sql":
            if not self.database_url:
                errors.append("DATABASE_URL is required when STORAGE_BACKEND=sql")
            elif not self.database_url.startswith(("postgresql", "postgres", "sqlite")):
                errors.append(
                    f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
                )

        if self.daily_ai_limit <= 0:
            errors.append(f"DAILY_AI_LIMIT must be positive, got: {self.daily_ai_limit}")
        if self.quota_retention_days <= 0:
            errors.append(
                f"QUOTA_RETENTION_DAYS must be positive, got: {self.quota_retention_days}"
            )
        if self.log_format not in ("json", "console"):
            errors.append(f"LOG_FORMAT must be 'json' or 'console', got: {self.log_format}")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_sqlite(self) -> bool:
        """True when the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


# Global settings instance - validates at import time
settings = Settings()
