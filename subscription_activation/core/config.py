# subscription_activation/core/config.py

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional

from dotenv import load_dotenv

from subscription_activation.services.errors import ConfigurationError

DEFAULT_SEAL_API_URL = "https://app.sealsubscriptions.com/shopify/merchant/api/subscription"
MAX_SUBSCRIPTION_TIMEOUT = 15.0
RECORD_STORE_BACKENDS = ("sql", "postgres", "redis", "sheets", "memory")


@dataclass(frozen=True)
class Settings:
    app_url: str = ""
    seal_api_key: str = ""
    seal_api_url: str = DEFAULT_SEAL_API_URL
    seal_api_secret: str = ""
    seal_webhook_strict: bool = False
    code_length: int = 12
    subscription_timeout: float = MAX_SUBSCRIPTION_TIMEOUT
    subscription_max_attempts: int = 3
    subscription_backoff: float = 0.5
    record_store: str = "sql"
    database_url: str = "sqlite+aiosqlite:///./activations.db"
    redis_url: str = "redis://localhost:6379"
    google_credentials_path: str = ""
    google_sheet_id: str = ""
    google_sheet_name_for_codes: str = "Codes"
    log_level: str = "INFO"


def _getenv(environ: Mapping[str, str], name: str, default: str = "") -> str:
    val = environ.get(name)
    if val is None:
        return default
    return val.strip()


def _getint(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = _getenv(environ, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _getfloat(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _getenv(environ, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _getbool(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = _getenv(environ, name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    if environ is None:
        load_dotenv()
        environ = os.environ

    code_length = _getint(environ, "ACTIVATION_CODE_LENGTH", 12)
    if code_length < 8:
        raise ConfigurationError("ACTIVATION_CODE_LENGTH must be at least 8")

    timeout = _getfloat(environ, "SUBSCRIPTION_TIMEOUT", MAX_SUBSCRIPTION_TIMEOUT)
    if timeout <= 0:
        raise ConfigurationError("SUBSCRIPTION_TIMEOUT must be positive")

    max_attempts = _getint(environ, "SUBSCRIPTION_MAX_ATTEMPTS", 3)
    if max_attempts < 1:
        raise ConfigurationError("SUBSCRIPTION_MAX_ATTEMPTS must be at least 1")

    record_store = _getenv(environ, "RECORD_STORE", "sql").lower()
    if record_store not in RECORD_STORE_BACKENDS:
        raise ConfigurationError(
            f"RECORD_STORE must be one of {', '.join(RECORD_STORE_BACKENDS)}, got {record_store!r}"
        )

    return Settings(
        app_url=_getenv(environ, "APP_URL").rstrip("/"),
        seal_api_key=_getenv(environ, "SEAL_API_KEY"),
        seal_api_url=_getenv(environ, "SEAL_API_URL", DEFAULT_SEAL_API_URL),
        seal_api_secret=_getenv(environ, "SEAL_API_SECRET"),
        seal_webhook_strict=_getbool(environ, "SEAL_WEBHOOK_STRICT"),
        code_length=code_length,
        subscription_timeout=min(timeout, MAX_SUBSCRIPTION_TIMEOUT),
        subscription_max_attempts=max_attempts,
        subscription_backoff=_getfloat(environ, "SUBSCRIPTION_BACKOFF", 0.5),
        record_store=record_store,
        database_url=_getenv(environ, "DATABASE_URL", Settings.database_url),
        redis_url=_getenv(environ, "REDIS_URL", Settings.redis_url),
        google_credentials_path=_getenv(environ, "GOOGLE_SHEETS_CREDENTIALS_PATH"),
        google_sheet_id=_getenv(environ, "GOOGLE_SHEET_ID"),
        google_sheet_name_for_codes=_getenv(environ, "GOOGLE_SHEET_NAME_FOR_CODES", "Codes"),
        log_level=_getenv(environ, "LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
