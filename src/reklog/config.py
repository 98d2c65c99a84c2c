"""
Configuration management for the RekLog client.

Uses Pydantic Settings for environment variable handling and validation.
An optional reklog.yaml file provides defaults; environment variables
override the file.
"""

import json
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_MASK_KEYS = [
    "password",
    "token",
    "authorization",
    "api_key",
    "apikey",
    "x-api-key",
    "secret",
    "card_number",
    "cookie",
    "set-cookie",
]


def load_config_file(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    if config_path is None:
        config_path = os.environ.get("REKLOG_CONFIG_FILE")

    if config_path is None:
        for path in ("reklog.yaml", "reklog.yml"):
            if os.path.exists(path):
                config_path = path
                break
        else:
            return {}

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
            return config_data
    return {}


class MaskingSettings(BaseSettings):
    """Sensitive field masking configuration."""

    baseline_keys: List[str] = Field(
        default_factory=lambda: list(DEFAULT_MASK_KEYS),
        description="Built-in keys that are always masked",
    )
    extra_keys: List[str] = Field(
        default_factory=list,
        description="Additional caller-supplied keys to mask",
    )

    @field_validator("extra_keys", mode="before")
    def parse_extra_keys(cls, v: Any) -> List[str]:
        """Accept a comma separated string as well as a list."""
        if isinstance(v, str):
            return [key.strip() for key in v.split(",") if key.strip()]
        return v

    class Config:
        env_prefix = "REKLOG_MASKING_"


class DeliverySettings(BaseSettings):
    """Collector delivery configuration."""

    api_url: str = Field(default="https://www.reklog.com/api", description="Collector base URL")
    timeout_ms: int = Field(default=5000, gt=0, description="Per-attempt timeout")
    retry_attempts: int = Field(default=3, ge=1, description="Maximum delivery attempts")
    retry_delay_ms: int = Field(default=1000, ge=0, description="Linear backoff base delay")

    @property
    def logs_url(self) -> str:
        """Full collector logs URL."""
        return f"{self.api_url.rstrip('/')}/logs"

    class Config:
        env_prefix = "REKLOG_DELIVERY_"


class MiddlewareSettings(BaseSettings):
    """ASGI middleware configuration."""

    capture_max_bytes: int = Field(
        default=1048576,
        ge=0,
        description="Largest response body (1MB) kept for the log record",
    )

    class Config:
        env_prefix = "REKLOG_MIDDLEWARE_"


class Settings(BaseSettings):
    """Main client settings."""

    api_key: str = Field(default="", description="Collector API key")
    environment: str = Field(default="development", description="Environment tag")
    host: Optional[str] = Field(default=None, description="Host tag")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")
    log_renderer: str = Field(default="console", description="Log renderer: console or json")
    configure_logging: bool = Field(default=False, description="Configure structlog on init")

    # Component settings
    masking: MaskingSettings = Field(default_factory=MaskingSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    middleware: MiddlewareSettings = Field(default_factory=MiddlewareSettings)

    class Config:
        env_prefix = "REKLOG_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance with config file and env support."""

    config_data = load_config_file()

    # Config file provides defaults, env vars override
    if config_data:
        _set_env_from_config(config_data)

    settings = Settings()
    return settings


def _set_env_from_config(config_data: Dict[str, Any]) -> None:
    """Set environment variables from config file if not already set."""
    mappings = {
        ("tracker", "api_key"): "REKLOG_API_KEY",
        ("tracker", "environment"): "REKLOG_ENVIRONMENT",
        ("tracker", "host"): "REKLOG_HOST",
        ("tracker", "debug"): "REKLOG_DEBUG",
        ("tracker", "log_level"): "REKLOG_LOG_LEVEL",
        ("tracker", "log_renderer"): "REKLOG_LOG_RENDERER",
        ("tracker", "configure_logging"): "REKLOG_CONFIGURE_LOGGING",
        ("delivery", "api_url"): "REKLOG_DELIVERY_API_URL",
        ("delivery", "timeout_ms"): "REKLOG_DELIVERY_TIMEOUT_MS",
        ("delivery", "retry_attempts"): "REKLOG_DELIVERY_RETRY_ATTEMPTS",
        ("delivery", "retry_delay_ms"): "REKLOG_DELIVERY_RETRY_DELAY_MS",
        ("middleware", "capture_max_bytes"): "REKLOG_MIDDLEWARE_CAPTURE_MAX_BYTES",
    }

    for (section, key), env_var in mappings.items():
        if env_var not in os.environ:
            value = (config_data.get(section) or {}).get(key)
            if value is not None:
                os.environ[env_var] = str(value)

    # List settings are passed as JSON
    for key, env_var in (
        ("baseline_keys", "REKLOG_MASKING_BASELINE_KEYS"),
        ("extra_keys", "REKLOG_MASKING_EXTRA_KEYS"),
    ):
        if env_var not in os.environ:
            value = (config_data.get("masking") or {}).get(key)
            if value:
                os.environ[env_var] = json.dumps(value)


def reload_settings() -> Settings:
    """Reload settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
