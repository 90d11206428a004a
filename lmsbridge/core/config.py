"""Application configuration."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Application
    app_name: str = Field(default="lms-bridge")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_dir: Optional[Path] = Field(default=None)

    # NATS
    nats_url: str = Field(default="nats://localhost:4222")
    nats_client_name: str = Field(default="lms-bridge")
    nats_queue_group: Optional[str] = Field(default=None)
    subject_prefix: str = Field(default="models")

    # LM Studio
    lmstudio_base_url: str = Field(default="http://localhost:1234")
    lmstudio_models_dir: Path = Field(default=Path("~/.lmstudio/models"))
    lmstudio_cli: str = Field(default="lms")
    lmstudio_timeout: float = Field(default=120.0, gt=0)

    # Per-operation deadlines (seconds)
    list_timeout: float = Field(default=30.0, gt=0)
    pull_timeout: float = Field(default=600.0, gt=0)
    delete_timeout: float = Field(default=120.0, gt=0)
    chat_timeout: float = Field(default=120.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("lmstudio_base_url")
    @classmethod
    def _strip_base_url(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("lmstudio_models_dir")
    @classmethod
    def _expand_models_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("subject_prefix")
    @classmethod
    def _strip_subject_prefix(cls, value: str) -> str:
        return value.strip(".")

    @property
    def console_level(self) -> str:
        """Console log level, forced to DEBUG in debug mode."""
        return "DEBUG" if self.debug else self.log_level

    def subject(self, operation: str) -> str:
        """Full bus subject for an operation name such as ``list``."""
        if not self.subject_prefix:
            return operation
        return f"{self.subject_prefix}.{operation}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
