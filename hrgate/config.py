"""
Configuration module for hrgate.

Two layers:
- process settings from environment variables (read once at import)
- the per-scope config file (``hrgate.config.json``) written at bootstrap
  time and read, never cached, on every gate call
"""

import json
import os
import re
from pathlib import Path
from typing import Dict, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator

from .errors import ConfigError

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("HRGATE_ENV", "dev")  # dev|stage|prod

LOG_LEVEL = os.getenv("HRGATE_LOG_LEVEL", "ERROR")
LOG_JSON = os.getenv("HRGATE_LOG_JSON", "1").lower() in ("1", "true", "yes")

# Transport
GIT_REMOTE = os.getenv("HRGATE_REMOTE", "origin")
GIT_TIMEOUT_SECONDS = float(os.getenv("HRGATE_GIT_TIMEOUT", "10"))

# Decision log sync
SYNC_THRESHOLD = int(os.getenv("HRGATE_SYNC_THRESHOLD", "10"))

# Signer side
TTL_SECONDS = int(os.getenv("HRGATE_TTL_SECONDS", "15"))
DEBOUNCE_SECONDS = float(os.getenv("HRGATE_DEBOUNCE_SECONDS", "5"))
STALE_SECONDS = float(os.getenv("HRGATE_STALE_SECONDS", "30"))
SIGNING_KEY_PATH = os.getenv("HRGATE_SIGNING_KEY_PATH", "secrets/hrgate_signing_key.json")
API_TOKEN = os.getenv("HRGATE_API_TOKEN", "")


# ============================================================
# Fixed protocol names
# ============================================================

SIGNAL_VERSION = 1
CONFIG_FILENAME = "hrgate.config.json"
DISABLE_FILENAME = ".hrgate-disable"
STATS_LOG_RELPATH = ".git/hrgate-stats.jsonl"
PAYLOAD_FILENAME = "hr-signal.json"
STATS_FILENAME = "tool-stats.jsonl"
SIGNAL_REF_PATTERN = "refs/hrgate/hr/{user_key}"
STATS_REF_PATTERN = "refs/hrgate/stats/{user_key}"

# user_key is interpolated into ref names
USER_KEY_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


# ============================================================
# Scope configuration
# ============================================================

class ScopeConfig(BaseModel):
    """
    Per-scope (per gated repository) configuration.

    Created once at bootstrap; read-only afterwards except for explicit key
    rotation, which bumps ``public_key_version`` and replaces ``public_key``.
    ``ttl_seconds`` is informational: freshness is enforced through the
    signed ``exp_unix``.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    version: StrictInt = 1
    user_key: StrictStr
    signal_ref_pattern: StrictStr = SIGNAL_REF_PATTERN
    payload_filename: StrictStr = PAYLOAD_FILENAME
    public_key: StrictStr = Field(min_length=1)
    public_key_version: StrictInt = 1
    ttl_seconds: StrictInt = TTL_SECONDS

    @field_validator("user_key")
    @classmethod
    def _check_user_key(cls, value: str) -> str:
        if not USER_KEY_PATTERN.match(value) or ".." in value or value.endswith(".lock"):
            raise ValueError(f"user_key {value!r} is not usable in a ref name")
        return value

    @field_validator("signal_ref_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        if "{user_key}" not in value:
            raise ValueError("signal_ref_pattern must contain {user_key}")
        if not value.startswith("refs/"):
            raise ValueError("signal_ref_pattern must start with refs/")
        return value

    @field_validator("payload_filename")
    @classmethod
    def _check_filename(cls, value: str) -> str:
        if not value or "/" in value or "\t" in value or "\n" in value:
            raise ValueError("payload_filename must be a single path component")
        return value

    @property
    def signal_ref(self) -> str:
        return self.signal_ref_pattern.replace("{user_key}", self.user_key)

    @property
    def stats_ref(self) -> str:
        return STATS_REF_PATTERN.replace("{user_key}", self.user_key)

    def to_dict(self) -> Dict[str, object]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> 'ScopeConfig':
        """Validate a config mapping; any problem is a ConfigError."""
        if not isinstance(data, dict):
            raise ConfigError("config must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ConfigError(f"invalid config fields: {fields}") from e


def config_path(scope_root: Union[str, Path]) -> Path:
    return Path(scope_root) / CONFIG_FILENAME


def disable_path(scope_root: Union[str, Path]) -> Path:
    return Path(scope_root) / DISABLE_FILENAME


def stats_log_path(scope_root: Union[str, Path]) -> Path:
    return Path(scope_root) / STATS_LOG_RELPATH


def load_scope_config(scope_root: Union[str, Path]) -> ScopeConfig:
    """
    Load and validate the scope config file.

    Raises:
        ConfigError: file missing, unreadable, not JSON, or incomplete
    """
    path = config_path(scope_root)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"config not found: {path}") from e
    except (OSError, ValueError) as e:
        raise ConfigError(f"config unreadable: {e}") from e
    return ScopeConfig.from_dict(data)


# ============================================================
# Validation
# ============================================================

def validate_scope(scope_root: Union[str, Path]) -> Dict[str, bool]:
    """
    Report which scope files exist.
    Returns dict of name -> exists.
    """
    return {
        "config": config_path(scope_root).exists(),
        "disable_override": disable_path(scope_root).exists(),
        "stats_log": stats_log_path(scope_root).exists(),
        "git_dir": (Path(scope_root) / ".git").exists(),
    }


def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"
