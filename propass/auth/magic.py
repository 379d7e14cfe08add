"""Single-use magic sign-in links."""

from __future__ import annotations

import logging
import threading
from typing import Optional, Set

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from starlette.types import ASGIApp

from ..config import app_base_url, session_secret


logger = logging.getLogger("propass.auth")

TOKEN_TTL_SECONDS = 60 * 10  # magic links valid for 10 minutes
MAGIC_SERIALIZER_SALT = "propass.magiclink.v1"


class MagicLinkError(Exception):
    """Base exception for magic link failures."""


class ExpiredMagicLink(MagicLinkError):
    """Raised when a link has expired."""


class InvalidMagicLink(MagicLinkError):
    """Raised when a token fails signature validation."""


class UsedMagicLink(MagicLinkError):
    """Raised when a token has already been redeemed."""


class MagicLinkManager:
    """Issue and consume sign-in links. Issued tokens are tracked in process."""

    def __init__(self, secret_key: str, app_base_url: str, *, token_ttl: int = TOKEN_TTL_SECONDS) -> None:
        self._serializer = URLSafeTimedSerializer(secret_key=secret_key, salt=MAGIC_SERIALIZER_SALT)
        self._token_ttl = token_ttl
        self._issued: Set[str] = set()
        self._lock = threading.Lock()
        self._base_url = app_base_url

    def issue_link(self, email: str) -> str:
        normalized = (email or "").strip().lower()
        if not normalized:
            raise ValueError("email is required")

        token = self._serializer.dumps({"email": normalized})
        with self._lock:
            self._issued.add(token)

        return f"{self._base_url}/auth/callback?token={token}"

    def consume(self, token: str) -> str:
        if not token:
            raise InvalidMagicLink

        try:
            data = self._serializer.loads(token, max_age=self._token_ttl)
        except SignatureExpired as exc:
            raise ExpiredMagicLink from exc
        except BadSignature as exc:
            raise InvalidMagicLink from exc

        with self._lock:
            if token not in self._issued:
                raise UsedMagicLink
            self._issued.remove(token)

        email = data.get("email") if isinstance(data, dict) else None
        normalized = (email or "").strip().lower()
        if not normalized:
            raise InvalidMagicLink

        return normalized


def ensure_magic(app: ASGIApp) -> MagicLinkManager:
    state = getattr(app, "state", None)
    existing = getattr(state, "magic_links", None) if state is not None else None
    if isinstance(existing, MagicLinkManager):
        return existing

    manager = MagicLinkManager(secret_key=session_secret(), app_base_url=app_base_url())
    if state is not None:
        setattr(state, "magic_links", manager)
    return manager


def request_link(request: Request, email: str) -> str:
    return ensure_magic(request.app).issue_link(email)


def verify_token(request: Request, token: Optional[str]) -> str:
    return ensure_magic(request.app).consume(token or "")


__all__ = [
    "ExpiredMagicLink",
    "InvalidMagicLink",
    "MagicLinkError",
    "MagicLinkManager",
    "UsedMagicLink",
    "ensure_magic",
    "request_link",
    "verify_token",
]
