"""History engine configuration using pydantic-settings."""

from functools import lru_cache

from pydantic import computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from entity_history.core.constants import DEFAULT_DATE_TIME_FORMAT


class Settings(BaseSettings):
    """History settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HISTORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"  # development, test, staging, production

    # Failure handling: when enabled, auditing errors abort the flush
    strict: bool = False

    # Rendering
    date_format: str = DEFAULT_DATE_TIME_FORMAT

    # Fields never recorded on any entity (merged with per-classifier lists)
    ignored_fields: list[str] = []

    # Metadata detection
    cache_metadata: bool = True

    # Observability
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name.

        Raises:
            ValueError: If the level is not a standard logging level
        """
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def use_json_logs(self) -> bool:
        """Render logs as JSON unless explicitly configured otherwise."""
        if self.json_logs is not None:
            return self.json_logs
        return self.is_production


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
