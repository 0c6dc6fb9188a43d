"""Configuration loader for the content factory pipeline (Pydantic edition)."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Visibility
from .utils.secrets import secret_value

LOGGER = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded safely."""


class AppConfig(BaseSettings):
    """Strongly typed runtime configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        validate_default=True,
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("APP_ENVIRONMENT", "APP_ENV"),
    )
    log_path: Path = Field(
        default=Path("logs/content_factory.log"),
        validation_alias=AliasChoices("APP_LOG_PATH", "LOG_PATH"),
    )
    output_dir: Path = Field(
        default=Path("data/videos"),
        validation_alias=AliasChoices("APP_OUTPUT_DIR", "VIDEO_OUT_DIR"),
    )

    # Mode switches
    mock_pipeline: bool = Field(False, validation_alias=AliasChoices("MOCK_PIPELINE", "APP_MOCK_PIPELINE"))
    mock_simulate_upload: bool = Field(False, validation_alias="MOCK_SIMULATE_UPLOAD")

    # Veo generation provider
    veo_api_key: SecretStr | None = Field(default=None, validation_alias=AliasChoices("VEO_API_KEY", "GEMINI_API_KEY"))
    veo_api_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        validation_alias="VEO_API_URL",
    )
    veo_model: str = Field(default="veo-3.0-generate-001", validation_alias="VEO_MODEL")
    veo_project_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("VEO_PROJECT_ID", "GOOGLE_CLOUD_PROJECT"),
    )
    veo_location: str = Field(default="us-central1", validation_alias=AliasChoices("VEO_LOCATION", "VEO_REGION"))
    poll_interval_seconds: float = Field(5.0, gt=0, validation_alias="VEO_POLL_INTERVAL")
    poll_max_interval_seconds: float = Field(30.0, gt=0, validation_alias="VEO_POLL_MAX_INTERVAL")
    poll_timeout_seconds: float = Field(600.0, gt=0, validation_alias="VEO_POLL_TIMEOUT")
    request_timeout_seconds: float = Field(60.0, gt=0, validation_alias="VEO_REQUEST_TIMEOUT")

    # YouTube upload provider
    youtube_client_id: SecretStr | None = Field(default=None, validation_alias="YOUTUBE_CLIENT_ID")
    youtube_client_secret: SecretStr | None = Field(default=None, validation_alias="YOUTUBE_CLIENT_SECRET")
    youtube_refresh_token: SecretStr | None = Field(default=None, validation_alias="YOUTUBE_REFRESH_TOKEN")
    youtube_access_token: SecretStr | None = Field(default=None, validation_alias="YOUTUBE_ACCESS_TOKEN")
    youtube_token_uri: str = Field(default="https://oauth2.googleapis.com/token", validation_alias="YOUTUBE_TOKEN_URI")
    youtube_default_visibility: Visibility = Field(default="unlisted", validation_alias="YOUTUBE_DEFAULT_VISIBILITY")
    youtube_category_id: str = Field(default="15", validation_alias="YOUTUBE_CATEGORY_ID")

    @field_validator("log_path", "output_dir", mode="after")
    @classmethod
    def _expand_path(cls, value: Path) -> Path:
        expanded = value.expanduser()
        return expanded if expanded.is_absolute() else (Path.cwd() / expanded).resolve()

    @field_validator("veo_api_url", mode="after")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _validate_polling(self) -> "AppConfig":
        if self.poll_interval_seconds > self.poll_max_interval_seconds:
            raise ConfigError("poll_interval_seconds cannot exceed poll_max_interval_seconds")
        return self

    def ensure_runtime_directories(self) -> None:
        """Create directories required for runtime operation."""
        for directory in (self.output_dir, self.log_path.parent):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def has_generation_credentials(self) -> bool:
        return bool(secret_value(self.veo_api_key))

    @property
    def has_youtube_credentials(self) -> bool:
        return all(
            secret_value(value)
            for value in (self.youtube_client_id, self.youtube_client_secret, self.youtube_refresh_token)
        )

    @property
    def uses_mock_generation(self) -> bool:
        """Mock generation applies when forced or when the Veo key is missing."""
        return self.mock_pipeline or not self.has_generation_credentials


def load_config(env_path: Path | None = None) -> AppConfig:
    """Load configuration from .env/environment with validation."""
    load_kwargs: dict[str, str] = {}
    if env_path is not None:
        load_dotenv(env_path, override=False)
        load_kwargs["_env_file"] = str(env_path)
    else:
        load_dotenv(override=False)
    try:
        config = AppConfig(**load_kwargs)
    except ValidationError as exc:
        raise ConfigError("Invalid configuration") from exc

    config.ensure_runtime_directories()

    LOGGER.info(
        "AppConfig loaded",
        extra={
            "event": "config.loaded",
            "environment": config.environment,
            "mock_generation": config.uses_mock_generation,
            "youtube_configured": config.has_youtube_credentials,
        },
    )
    return config
