"""Configuration loader -- reads config.yaml + .env, validates with Pydantic.

Resolves ${ENV_VAR} references in YAML values from environment variables.
Fails fast with clear errors if a value has the wrong shape.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from core.duration import duration_seconds

logger = logging.getLogger(__name__)

# Default home directory for all state files
DEFAULT_HOME = Path.home() / ".actionscron"

HOME_ENV = "ACTIONSCRON_HOME"

_ENV_REF = re.compile(r"\$\{(\w+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} references in config values."""
    if isinstance(value, str):
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                logger.warning("Environment variable %s not set", var_name)
                return ""
            return env_value
        return _ENV_REF.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Config models (Pydantic)
# ---------------------------------------------------------------------------

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class GitHubConfig(BaseModel):
    token: str = ""
    base_url: str = "https://api.github.com"
    timeout: str = "30s"
    user_agent: str = "actionscron"

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, value: str) -> str:
        duration_seconds(value)
        return value

    @property
    def timeout_seconds(self) -> float:
        return duration_seconds(self.timeout)


class SchedulerConfig(BaseModel):
    timezone: str = "UTC"
    check_interval: str = "60s"
    overlap_guard: bool = True

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @field_validator("check_interval")
    @classmethod
    def validate_check_interval(cls, value: str) -> str:
        if duration_seconds(value) <= 0:
            raise ValueError("check_interval must be positive")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def check_interval_seconds(self) -> float:
        return duration_seconds(self.check_interval)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    audit_events: bool = True


class AppConfig(BaseModel):
    """Top-level application configuration."""

    home_dir: str = str(DEFAULT_HOME)
    server: ServerConfig = Field(default_factory=ServerConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def home_path(self) -> Path:
        """Resolved home directory as a Path."""
        return Path(self.home_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.home_path / "tasks.sqlite"

    @property
    def events_dir(self) -> Path:
        return self.home_path / "events"


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    env_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML + .env files.

    1. Load .env into environment variables
    2. Load config.yaml and resolve ${ENV_VAR} references
    3. Fall back to GITHUB_TOKEN when no token is configured
    4. Validate against Pydantic models
    5. Create home directory structure if needed
    """
    home = Path(os.environ.get(HOME_ENV, str(DEFAULT_HOME))).expanduser()

    if env_path is None:
        env_path = home / ".env"
    if config_path is None:
        config_path = home / "config.yaml"

    env_path = Path(env_path)
    config_path = Path(config_path)

    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    else:
        logger.debug("No .env file at %s", env_path)

    raw_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}
        logger.info("Loaded config from %s", config_path)
    else:
        logger.warning("No config file at %s, using defaults", config_path)

    resolved = _resolve_env_vars(raw_config)

    if HOME_ENV in os.environ:
        resolved["home_dir"] = os.environ[HOME_ENV]

    github = resolved.setdefault("github", {}) or {}
    resolved["github"] = github
    if not github.get("token"):
        github["token"] = os.environ.get("GITHUB_TOKEN", "")

    config = AppConfig(**resolved)

    if not config.github.token:
        logger.warning("No GitHub token configured; remote calls will be unauthenticated")

    _ensure_directories(config.home_path)

    return config


def _ensure_directories(home: Path) -> None:
    """Create the state directory structure if it doesn't exist."""
    for d in (home, home / "events"):
        d.mkdir(parents=True, exist_ok=True)
