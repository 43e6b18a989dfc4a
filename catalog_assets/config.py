import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so env vars are available for YAML interpolation
load_dotenv(Path.cwd() / ".env")

# Pattern to match $VAR_NAME environment variable references
ENV_VAR_PATTERN = re.compile(r"\$([A-Z_][A-Z0-9_]*)")

ENV_VAR_NAME = "CATALOG_ASSETS_ENV"

_config_path_override: Path | None = None


def interpolate_env_vars(value):
    """Recursively replace $VAR_NAME with os.environ values."""
    if isinstance(value, str):

        def replace(match):
            var = match.group(1)
            val = os.environ.get(var)
            if val is None:
                raise ValueError(f"Environment variable ${var} not set")
            return val

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]
    return value


def set_config_path(path: Path | str | None) -> None:
    """Override the config file location (used by the ``-f`` CLI option)."""
    global _config_path_override
    _config_path_override = Path(path) if path is not None else None


def get_config_path() -> Path:
    """Resolve the config file: explicit override, then app.{env}.yaml, then app.yaml."""
    if _config_path_override is not None:
        return _config_path_override
    env = os.environ.get(ENV_VAR_NAME, "").strip()
    if env and env != "production":
        return Path.cwd() / f"app.{env}.yaml"
    return Path.cwd() / "app.yaml"


def load_app_config() -> dict:
    """Load and parse the YAML config with environment variable interpolation."""
    config_path = get_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found at {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f) or {}

    return interpolate_env_vars(config)


class StorageConfig(BaseModel):
    """Which physical medium assets live on and how to reach it."""

    backend: Literal["local-fs", "object-store-a", "object-store-b"] = "local-fs"
    bucket_or_root_path: str = "./assets"
    # Opaque to everything but the backend: access_key_id, secret_access_key, session_token
    credentials: dict[str, str] = {}
    region: str = "us-east-1"
    endpoint_url: str | None = None
    prefix: str = ""
    public_url: str | None = None
    acl: str | None = None
    presign_ttl: int = 3600
    operation_timeout: float | None = 30.0
    max_upload_size: int = 50 * 1024 * 1024


class DatabaseConfig(BaseModel):
    """Database connection configuration for the asset metadata store."""

    url: str = "sqlite+aiosqlite:///./assets.db"
    echo: bool = False


class LogfireConfig(BaseModel):
    """Pydantic Logfire tracing configuration."""

    enabled: bool = False
    service_name: str = "catalog-assets"
    environment: str | None = None
    sample_rate: float = 1.0
    console: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CATALOG_ASSETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Sections below are loaded from the YAML config
    storage: StorageConfig = StorageConfig()
    db: DatabaseConfig = DatabaseConfig()
    logfire: LogfireConfig = LogfireConfig()


@lru_cache
def get_settings() -> Settings:
    """Load settings from .env and the YAML config file."""
    base_settings = Settings()

    try:
        app_config = load_app_config()
    except FileNotFoundError:
        return base_settings

    updates = {}

    if "debug" in app_config:
        updates["debug"] = bool(app_config["debug"])

    if "storage" in app_config:
        updates["storage"] = StorageConfig(**app_config["storage"])

    if "db" in app_config:
        updates["db"] = DatabaseConfig(**app_config["db"])

    if "logfire" in app_config:
        updates["logfire"] = LogfireConfig(**app_config["logfire"])

    if updates:
        return base_settings.model_copy(update=updates)

    return base_settings


def clear_settings_cache() -> None:
    get_settings.cache_clear()
