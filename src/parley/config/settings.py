"""
config/settings.py — Parley Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - ClientConfig rejects display names outside 2–32 characters
  - GatewayConfig rejects non-websocket gateway URLs and a backoff cap < 1
  - validate_all() performs startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects the PARLEY_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_REST_URL = "https://eludris.tooty.xyz"


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class ClientConfig(BaseModel):
    name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _valid_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not (2 <= len(v) <= 32):
            raise ValueError(
                "client.name must be between 2 and 32 characters long"
            )
        return v


class GatewayConfig(BaseModel):
    """Connection settings. url=None means discover it from the REST root."""
    url: Optional[str] = None
    rest_url: str = DEFAULT_REST_URL
    max_backoff_seconds: int = 64
    hello_timeout_seconds: Optional[float] = 30.0
    open_timeout_seconds: float = 10.0

    @field_validator("url")
    @classmethod
    def _ws_scheme(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("ws://", "wss://")):
            raise ValueError(
                f"gateway.url must start with ws:// or wss://, got '{v}'"
            )
        return v

    @field_validator("rest_url")
    @classmethod
    def _http_scheme(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"gateway.rest_url must start with http:// or https://, got '{v}'"
            )
        return v.rstrip("/")

    @field_validator("max_backoff_seconds")
    @classmethod
    def _positive_backoff(cls, v: int) -> int:
        if v < 1:
            raise ValueError("gateway.max_backoff_seconds must be >= 1")
        return v

    @field_validator("hello_timeout_seconds")
    @classmethod
    def _positive_hello_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError(
                "gateway.hello_timeout_seconds must be > 0 (use null to wait forever)"
            )
        return v


class NotificationsConfig(BaseModel):
    enabled: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Parley runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    token: Optional[str] = Field(default=None, alias="PARLEY_TOKEN")
    name_override: Optional[str] = Field(default=None, alias="PARLEY_NAME")

    # -- Structured config (from config.yaml) --------------------------------
    client: ClientConfig = Field(default_factory=ClientConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("client", mode="before")
    @classmethod
    def _coerce_client(cls, v: Any) -> Any:
        return ClientConfig(**v) if isinstance(v, dict) else v

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("notifications", mode="before")
    @classmethod
    def _coerce_notifications(cls, v: Any) -> Any:
        return NotificationsConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def display_name(self) -> Optional[str]:
        """PARLEY_NAME wins over client.name from config.yaml."""
        if self.name_override:
            return self.name_override.strip()
        return self.client.name

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches what they can't see (secret presence, env overrides).
        """
        errors: list[str] = []

        if not self.token:
            errors.append(
                "PARLEY_TOKEN is not set. Add your session token to the .env "
                "file or the environment."
            )

        name = self.display_name
        if not name:
            errors.append(
                "No display name configured. Set client.name in config.yaml "
                "or PARLEY_NAME in the environment."
            )
        elif not (2 <= len(name) <= 32):
            errors.append(
                f"Display name '{name}' must be between 2 and 32 characters long."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nParley startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.RLock()  # load_settings() re-enters it

_KNOWN_SECTIONS = {"client", "gateway", "notifications", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. PARLEY_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("PARLEY_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading it from the default
    config path on first use. Thread-safe.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        # Re-check inside the lock in case another thread just initialised it
        if _singleton is None:
            load_settings()
        return _singleton  # type: ignore[return-value]
