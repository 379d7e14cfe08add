"""Session authority: signed session tokens that cache the user's plan.

The cached plan is a snapshot taken from the entitlement store when the token is
issued. It is advisory for UI; pro-only server capabilities must call
``entitlements.is_pro`` instead of trusting it. A live session is never edited:
``refresh`` re-reads the store and mints a new token.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session
from starlette.responses import Response
from starlette.types import ASGIApp

from . import models
from .config import app_base_url, session_secret
from .entitlements import get_user
from .errors import UnknownUser


logger = logging.getLogger("propass.sessions")

SESSION_COOKIE_NAME = "propass_session"
SESSION_MAX_AGE = 60 * 60 * 12  # 12 hours
SESSION_SERIALIZER_SALT = "propass.session.v1"

_VALID_PLANS = {models.PLAN_FREE, models.PLAN_PRO}


@dataclass(frozen=True)
class UserSession:
    subject: int
    email: str
    plan: str
    issued_at: float

    @property
    def is_pro(self) -> bool:
        return self.plan == models.PLAN_PRO

    def to_public(self) -> Dict[str, Any]:
        issued = datetime.fromtimestamp(self.issued_at, tz=timezone.utc)
        return {
            "subject": self.subject,
            "email": self.email,
            "plan": self.plan,
            "issuedAt": issued.isoformat(),
        }


def _looks_like_localhost(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return True

    host = (parsed.hostname or "").lower()
    if host in {"localhost", "127.0.0.1", "0.0.0.0", "testserver"}:
        return True
    return host.endswith(".local")


class SessionAuthority:
    """Issue, refresh and (de)serialize session tokens."""

    def __init__(
        self,
        secret_key: str,
        *,
        secure_cookie: bool = False,
        max_age: int = SESSION_MAX_AGE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._serializer = URLSafeTimedSerializer(secret_key=secret_key, salt=SESSION_SERIALIZER_SALT)
        self._secure_cookie = secure_cookie
        self._max_age = max_age
        self._clock = clock

    @property
    def secure_cookie(self) -> bool:
        return self._secure_cookie

    def issue(self, db: Session, user_id: int) -> UserSession:
        user = get_user(db, user_id)
        if user is None:
            raise UnknownUser()
        return UserSession(
            subject=int(user.id),
            email=user.email,
            plan=user.plan or models.PLAN_FREE,
            issued_at=self._clock(),
        )

    def refresh(self, db: Session, existing: UserSession) -> UserSession:
        session = self.issue(db, existing.subject)
        if session.plan != existing.plan:
            logger.info(
                "Session plan for user=%s converged %s -> %s", existing.subject, existing.plan, session.plan
            )
        return session

    def encode(self, session: UserSession) -> str:
        payload = {
            "sub": int(session.subject),
            "email": session.email,
            "plan": session.plan,
            "iat": session.issued_at,
        }
        return self._serializer.dumps(payload)

    def decode(self, raw: Optional[str]) -> Optional[UserSession]:
        if not raw:
            return None
        try:
            data = self._serializer.loads(raw, max_age=self._max_age)
        except SignatureExpired:
            logger.info("Rejected expired session token")
            return None
        except BadSignature:
            logger.info("Rejected invalid session token")
            return None

        if not isinstance(data, dict):
            return None
        try:
            subject = int(data.get("sub"))
            issued_at = float(data.get("iat"))
        except (TypeError, ValueError):
            return None
        email = data.get("email")
        plan = data.get("plan")
        if not isinstance(email, str) or not email or plan not in _VALID_PLANS:
            return None
        return UserSession(subject=subject, email=email, plan=plan, issued_at=issued_at)

    def set_cookie(self, response: Response, session: UserSession) -> None:
        response.set_cookie(
            key=SESSION_COOKIE_NAME,
            value=self.encode(session),
            max_age=self._max_age,
            expires=self._max_age,
            httponly=True,
            secure=self._secure_cookie,
            samesite="lax",
            path="/",
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=SESSION_COOKIE_NAME,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self._secure_cookie,
        )

    def read(self, request: Request) -> Optional[UserSession]:
        """Session from the cookie, or from an ``Authorization: Bearer`` header."""
        raw = request.cookies.get(SESSION_COOKIE_NAME)
        if not raw:
            header = request.headers.get("authorization") or ""
            scheme, _, token = header.partition(" ")
            if scheme.lower() == "bearer":
                raw = token.strip()
        return self.decode(raw)


def ensure_sessions(app: ASGIApp) -> SessionAuthority:
    state = getattr(app, "state", None)
    existing = getattr(state, "session_authority", None) if state is not None else None
    if isinstance(existing, SessionAuthority):
        return existing

    base_url = app_base_url()
    authority = SessionAuthority(session_secret(), secure_cookie=not _looks_like_localhost(base_url))
    if state is not None:
        setattr(state, "session_authority", authority)
    logger.info(
        "Session authority ready; cookie '%s' secure=%s", SESSION_COOKIE_NAME, authority.secure_cookie
    )
    return authority


def get_session_authority(request: Request) -> SessionAuthority:
    return ensure_sessions(request.app)


def get_request_session(request: Request) -> Optional[UserSession]:
    """Session decoded by the request middleware, falling back to a fresh read."""
    if hasattr(request.state, "session"):
        return request.state.session
    return get_session_authority(request).read(request)


__all__ = [
    "SESSION_COOKIE_NAME",
    "SessionAuthority",
    "UserSession",
    "ensure_sessions",
    "get_request_session",
    "get_session_authority",
]
