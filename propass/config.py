"""Environment-driven settings for PROPASS."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Tuple


_TRUE_VALUES = {"1", "true", "yes", "on"}
_PLANS = {"free", "pro"}

DEFAULT_DATABASE_URL = "sqlite:///./propass.sqlite3"
DEFAULT_STATE_FILE = Path("~/.propass/state.json")


def _flag(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    if raw is None:
        return False
    return raw.strip().lower() in _TRUE_VALUES


def database_url() -> str:
    return (os.getenv("DATABASE_URL") or "").strip() or DEFAULT_DATABASE_URL


def store_timeout() -> float:
    """Seconds a store call may block before it is reported as unavailable."""
    raw = os.getenv("STORE_TIMEOUT_SEC", "5") or "5"
    try:
        value = float(raw)
    except ValueError:
        return 5.0
    return value if value > 0 else 5.0


def session_secret() -> str:
    secret = os.getenv("SESSION_SECRET")
    if not secret:
        raise RuntimeError("SESSION_SECRET must be set to issue sessions")
    return secret


def app_base_url() -> str:
    base = os.getenv("APP_BASE_URL", "http://localhost:8000")
    cleaned = (base or "").strip().rstrip("/")
    if not cleaned:
        raise RuntimeError("APP_BASE_URL is invalid")
    return cleaned


def is_email_enabled() -> bool:
    return _flag("EMAIL_ENABLED")


def trust_proxy_headers() -> bool:
    """Honor X-Forwarded-For only when a trusted proxy sets it."""
    return _flag("TRUST_PROXY_HEADERS")


def default_plan() -> str:
    """Plan given to accounts at creation. Redemption never consults this."""
    value = (os.getenv("DEFAULT_PLAN", "free") or "free").strip().lower()
    if value not in _PLANS:
        raise RuntimeError(f"DEFAULT_PLAN must be one of {sorted(_PLANS)}, got {value!r}")
    return value


def extra_redeem_codes() -> Tuple[str, ...]:
    raw = os.getenv("REDEEM_CODES", "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def cors_origins() -> list:
    raw = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3000,http://localhost:8000") or ""
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def state_file() -> Path:
    raw = os.getenv("PROPASS_STATE_FILE")
    if raw:
        return Path(raw).expanduser()
    return DEFAULT_STATE_FILE.expanduser()


__all__ = [
    "app_base_url",
    "cors_origins",
    "database_url",
    "default_plan",
    "extra_redeem_codes",
    "is_email_enabled",
    "session_secret",
    "state_file",
    "store_timeout",
    "trust_proxy_headers",
]
