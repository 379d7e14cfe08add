"""Authoritative entitlement store and the idempotent upgrade applier.

The ``users.plan`` column and the ``applied_grants`` rows are only written here.
A grant is applied by inserting ``(user_id, grant_id)`` and promoting the plan in
one transaction; the unique constraint on that pair is what makes concurrent
redemptions from several tabs or devices safe without any client coordination.
"""

from __future__ import annotations

import enum
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from . import models
from .codes import Grant
from .errors import InternalError, StoreUnavailable, UnknownUser


logger = logging.getLogger("propass.entitlements")


class AppliedOutcome(str, enum.Enum):
    NEWLY_APPLIED = "newlyApplied"
    ALREADY_APPLIED = "alreadyApplied"


@contextmanager
def store_call(db: Session, operation: str) -> Iterator[None]:
    """Translate driver and pool failures into StoreUnavailable."""
    try:
        yield
    except IntegrityError:
        raise
    except (DBAPIError, PoolTimeoutError) as exc:
        db.rollback()
        logger.warning("Entitlement store unavailable during %s: %s", operation, exc)
        raise StoreUnavailable() from exc


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    with store_call(db, "get_user"):
        return db.get(models.User, int(user_id))


def get_plan(db: Session, user_id: int) -> str:
    """Current plan from the store. Raises UnknownUser for a missing account."""
    user = get_user(db, user_id)
    if user is None:
        raise UnknownUser()
    return user.plan or models.PLAN_FREE


def is_pro(db: Session, user_id: int) -> bool:
    """Authoritative pro check for gating server capabilities.

    Session snapshots are advisory; anything that matters goes through here.
    """
    return get_plan(db, user_id) == models.PLAN_PRO


def list_grants(db: Session, user_id: int) -> List[str]:
    with store_call(db, "list_grants"):
        rows = db.execute(
            select(models.AppliedGrant.grant_id)
            .where(models.AppliedGrant.user_id == int(user_id))
            .order_by(models.AppliedGrant.id)
        ).scalars()
        return list(rows)


def _grant_recorded(db: Session, user_id: int, grant_id: str) -> bool:
    row = db.execute(
        select(models.AppliedGrant.id).where(
            models.AppliedGrant.user_id == user_id,
            models.AppliedGrant.grant_id == grant_id,
        )
    ).first()
    return row is not None


def _confirm_already_applied(db: Session, user_id: int, grant: Grant) -> AppliedOutcome:
    with store_call(db, "confirm_grant"):
        user = db.get(models.User, user_id)
        if user is None:
            raise UnknownUser()
        if not _grant_recorded(db, user_id, grant.id):
            # The insert conflicted on something other than (user, grant).
            raise InternalError("grant insert conflicted without a recorded grant")
        if user.plan != grant.effect:
            logger.warning("Re-asserting plan=%s for user=%s holding %s", grant.effect, user_id, grant.id)
            user.plan = grant.effect
            db.commit()
    return AppliedOutcome.ALREADY_APPLIED


def apply_grant(db: Session, user_id: int, grant: Grant) -> AppliedOutcome:
    """Apply ``grant`` to the user at most once.

    Returns NEWLY_APPLIED on the first commit for ``(user_id, grant.id)`` and
    ALREADY_APPLIED on every later or losing concurrent call. Raises
    StoreUnavailable (retryable) or UnknownUser.
    """
    uid = int(user_id)
    try:
        with store_call(db, "apply_grant"):
            db.add(models.AppliedGrant(user_id=uid, grant_id=grant.id, code=grant.code))
            db.flush()
            result = db.execute(
                update(models.User)
                .where(models.User.id == uid)
                .values(plan=grant.effect)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise UnknownUser()
            db.add(
                models.Audit(
                    entity_type="user",
                    entity_id=uid,
                    action="grant_applied",
                    meta={"grant_id": grant.id, "plan": grant.effect},
                )
            )
            db.commit()
    except IntegrityError:
        db.rollback()
        outcome = _confirm_already_applied(db, uid, grant)
        logger.info("Grant %s already applied for user=%s", grant.id, uid)
        return outcome

    logger.info("Grant %s applied for user=%s plan=%s", grant.id, uid, grant.effect)
    return AppliedOutcome.NEWLY_APPLIED


__all__ = [
    "AppliedOutcome",
    "apply_grant",
    "get_plan",
    "get_user",
    "is_pro",
    "list_grants",
    "store_call",
]
