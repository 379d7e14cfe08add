"""Helpers for managing PROPASS user accounts."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..config import default_plan
from ..entitlements import store_call


logger = logging.getLogger("propass.auth.accounts")


def _normalize_email(raw: str) -> str:
    if raw is None:
        raise ValueError("email is required")
    normalized = raw.strip().lower()
    if not normalized:
        raise ValueError("email is required")
    return normalized


def create_user(db: Session, *, email: str, name: Optional[str] = None) -> models.User:
    """Create a new user record on the configured default plan.

    Raises a ValueError if the email is empty. If a unique constraint violation occurs,
    the existing user is returned.
    """
    normalized = _normalize_email(email)
    user = models.User(email=normalized, name=name, plan=default_plan())
    with store_call(db, "create_user"):
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = db.execute(
                select(models.User).where(models.User.email == normalized)
            ).scalar_one_or_none()
            if existing is None:
                raise
            logger.info("User already existed for email=%s", normalized)
            return existing

        db.refresh(user)
    logger.info("Created user id=%s email=%s plan=%s", user.id, user.email, user.plan)
    return user


def get_or_create_user_by_email(
    db: Session, *, email: str, name: Optional[str] = None
) -> models.User:
    """Look up a user by email, creating a new record if needed."""
    normalized = _normalize_email(email)
    with store_call(db, "find_user"):
        existing = db.execute(
            select(models.User).where(models.User.email == normalized)
        ).scalar_one_or_none()
    if existing is not None:
        return existing

    return create_user(db, email=normalized, name=name)


__all__ = [
    "create_user",
    "get_or_create_user_by_email",
]
