"""Configuration management for the Vaulton SDK.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
import warnings
from typing import Any, Mapping, Optional, TypedDict

from dotenv import load_dotenv

_TRUTHY_VALUES = {"1", "true", "yes", "on"}
_SESSION_BACKENDS = {"memory", "file", "redis"}

DEFAULT_BACKEND_URL = "https://vaulton-testnet.dahiya.tech"
DEFAULT_STORAGE_KEY = "vaulton_wallet_sdk_session"


class VaultonConfig(TypedDict):
    """Typed representation of the SDK's configuration."""

    VAULTON_ENV: str
    VAULTON_BACKEND_URL: str
    VAULTON_STORAGE_KEY: str
    SESSION_BACKEND: str
    SESSION_FILE: str
    REDIS_HOST: str
    REDIS_PORT: int
    REDIS_PASSWORD: Optional[str]
    REDIS_DB: int
    REDIS_URL: Optional[str]
    HTTP_TIMEOUT_SECONDS: float
    ASSERTION_TIMEOUT_SECONDS: float
    RP_ID: str
    RP_NAME: str
    RP_ORIGIN: str
    LOG_LEVEL: str
    RATE_LIMIT_ENABLED: bool
    RATE_LIMIT_DEFAULT: str
    DEV_BACKEND_HOST: str
    DEV_BACKEND_PORT: int
    DEV_INITIAL_BALANCE_STROOPS: int


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def _get_env_float(name: str, default: float) -> float:
    """Return an environment variable as a float, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number (got {raw_value!r})") from exc


def get_config() -> VaultonConfig:
    """Load SDK configuration from environment variables."""

    return {
        "VAULTON_ENV": os.getenv("VAULTON_ENV", "development"),
        # Backend
        "VAULTON_BACKEND_URL": os.getenv("VAULTON_BACKEND_URL", DEFAULT_BACKEND_URL).strip().rstrip("/"),
        "HTTP_TIMEOUT_SECONDS": _get_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
        # Session persistence
        "VAULTON_STORAGE_KEY": os.getenv("VAULTON_STORAGE_KEY", DEFAULT_STORAGE_KEY),
        "SESSION_BACKEND": os.getenv("SESSION_BACKEND", "file").strip().lower(),
        "SESSION_FILE": os.path.expanduser(os.getenv("SESSION_FILE", "~/.vaulton/session.json")),
        # Redis Configuration (SESSION_BACKEND=redis)
        "REDIS_HOST": os.getenv("REDIS_HOST", "localhost"),
        "REDIS_PORT": _get_env_int("REDIS_PORT", 6379),
        "REDIS_PASSWORD": os.getenv("REDIS_PASSWORD"),
        "REDIS_DB": _get_env_int("REDIS_DB", 0),
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("REDIS_DSN"),
        # Passkey ceremony
        "ASSERTION_TIMEOUT_SECONDS": _get_env_float("ASSERTION_TIMEOUT_SECONDS", 120.0),
        "RP_ID": os.getenv("RP_ID", "localhost"),
        "RP_NAME": os.getenv("RP_NAME", "Vaulton"),
        "RP_ORIGIN": os.getenv("RP_ORIGIN", "http://localhost:3000"),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
        # Development backend
        "DEV_BACKEND_HOST": os.getenv("DEV_BACKEND_HOST", "127.0.0.1"),
        "DEV_BACKEND_PORT": _get_env_int("DEV_BACKEND_PORT", 8787),
        "DEV_INITIAL_BALANCE_STROOPS": _get_env_int("DEV_INITIAL_BALANCE_STROOPS", 1000 * 10_000_000),
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATE_LIMIT_DEFAULT": os.getenv("RATE_LIMIT_DEFAULT", "300/minute"),
    }


def load_config() -> VaultonConfig:
    """Read ``.env`` (if present), then load and validate configuration."""

    load_dotenv()
    config = get_config()
    validate_config(config)
    return config


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    backend_url = str(config.get("VAULTON_BACKEND_URL") or "")
    if not backend_url.startswith(("http://", "https://")):
        raise ValueError(f"VAULTON_BACKEND_URL must be an http(s) URL (got {backend_url!r})")

    session_backend = config.get("SESSION_BACKEND", "file")
    if session_backend not in _SESSION_BACKENDS:
        raise ValueError(f"SESSION_BACKEND must be one of {sorted(_SESSION_BACKENDS)} (got {session_backend!r})")

    for name in ("HTTP_TIMEOUT_SECONDS", "ASSERTION_TIMEOUT_SECONDS"):
        value = config.get(name)
        if value is not None and value <= 0:
            raise ValueError(f"{name} must be positive (got {value!r})")

    if config.get("VAULTON_ENV") == "production":
        if not backend_url.startswith("https://"):
            raise ValueError("⚠️  VAULTON_BACKEND_URL must use https in production!")

        if session_backend == "memory":
            warnings.warn("⚠️  SESSION_BACKEND=memory - sessions will not survive a restart!", stacklevel=2)

        if session_backend == "redis" and not config.get("REDIS_PASSWORD") and not config.get("REDIS_URL"):
            warnings.warn("⚠️  REDIS_PASSWORD not set - Redis will be unprotected!", stacklevel=2)

    return True
