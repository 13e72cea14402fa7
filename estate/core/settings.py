"""Estate configuration management.

Configuration is loaded from the following sources, highest priority first:
1. Explicit keyword arguments
2. Environment variables (``DATABASE_URL``, ``NODE_ENV`` and ``ESTATE_*``)
3. ``.env`` in the working directory
4. YAML file: ``ESTATE_CONFIG`` if set, else the nearest estate.config.yaml
   walking up from the working directory
5. Default values

``DATABASE_URL`` has no default: building settings without it raises
:class:`~estate.core.exceptions.ConfigurationError` so the process refuses
to start.

Example usage:
    from estate.core.settings import get_settings

    settings = get_settings()
    print(settings.async_database_url)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from estate.core.exceptions import ConfigurationError
from estate.core.security import mask_database_url

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "ESTATE_CONFIG"
CONFIG_FILE_NAMES = ("estate.config.yaml", "estate.config.yml")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

PRODUCTION_ENV = "production"


def locate_config_file(start_dir: Path | None = None) -> Path | None:
    """Path of the YAML configuration file, or None when there is none.

    Raises:
        ConfigurationError: If ``ESTATE_CONFIG`` names a file that does not exist.
    """
    explicit = os.environ.get(CONFIG_PATH_ENV)
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise ConfigurationError(f"{CONFIG_PATH_ENV} points to a missing file: {path}")
        return path

    here = start_dir or Path.cwd()
    for directory in (here, *here.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def _yaml_source(
    settings_cls: type[BaseSettings], config_path: Path
) -> PydanticBaseSettingsSource:
    # The source parses the file on construction
    try:
        source = YamlConfigSettingsSource(settings_cls, yaml_file=config_path)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    logger.debug("Loaded configuration from %s", config_path)
    return source


class EstateSettings(BaseSettings):
    """Settings for the tenant routing layer.

    Example:
        settings = EstateSettings(database_url="postgresql://app@db/estate")
        print(settings.pool_size)
    """

    model_config = SettingsConfigDict(
        env_prefix="ESTATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        validate_default=True,
    )

    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("database_url", "DATABASE_URL"),
        description="PostgreSQL connection URL (required)",
    )
    node_env: str = Field(
        default="development",
        validation_alias=AliasChoices("node_env", "NODE_ENV"),
        description="Deployment environment; 'production' enables SSL",
    )

    # Pool settings
    pool_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum number of pooled physical connections",
    )
    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for a connection (acquire and connect)",
    )
    query_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds before a statement is abandoned",
    )
    idle_timeout: int = Field(
        default=30,
        ge=1,
        description="Seconds before idle connections are recycled",
    )

    # Filesystem
    uploads_dir: Path = Field(
        default=Path("uploads"),
        description="Root directory of per-tenant upload trees",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Application log level",
    )
    log_json: bool | None = Field(
        default=None,
        description="Force JSON log output; auto-detected when unset",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Slot the YAML file in below the environment."""
        sources = [init_settings, env_settings, dotenv_settings]
        config_path = locate_config_file()
        if config_path is not None:
            sources.append(_yaml_source(settings_cls, config_path))
        sources.append(file_secret_settings)
        return tuple(sources)

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {v!r}")
        return level

    @model_validator(mode="after")
    def require_database_url(self) -> "EstateSettings":
        """Refuse to build settings without a database URL."""
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL must be set")
        return self

    @property
    def is_production(self) -> bool:
        """Whether SSL is required on database connections."""
        return self.node_env.lower() == PRODUCTION_ENV

    @property
    def async_database_url(self) -> str:
        """Database URL with the asyncpg driver selected."""
        url = self.database_url or ""
        for prefix in ("postgres://", "postgresql://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix) :]
        return url

    def to_dict(self) -> dict[str, Any]:
        """Plain values for logging, with the database password masked."""
        values = self.model_dump(mode="json")
        if values.get("database_url"):
            values["database_url"] = mask_database_url(values["database_url"])
        return values


def get_settings(**overrides: Any) -> EstateSettings:
    """Get the estate settings.

    Without overrides the instance is cached for the lifetime of the
    process; pass overrides to build a fresh, uncached instance.

    Raises:
        ConfigurationError: If no database URL is configured.
    """
    if overrides:
        return EstateSettings(**overrides)
    return _cached_settings()


@lru_cache
def _cached_settings() -> EstateSettings:
    return EstateSettings()


def reset_settings() -> None:
    """Clear the cached settings (used by tests and the CLI)."""
    _cached_settings.cache_clear()
