"""Client-side reconciliation of pending redemptions.

The reconciler owns the pending-redemption record. It runs at checkpoints the
host application chooses (sign-in completed, app foregrounded, user action) and
never starts threads. Replaying a pending code is safe because the server
applies each grant at most once per user.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Callable, Optional, Protocol

from ..errors import InternalError, InvalidCode, StoreUnavailable, Unauthorized
from ..models import PLAN_PRO
from ..redemption import normalize_code
from .api import EntitlementClient, RedeemResult
from .pending import PendingRedemption


logger = logging.getLogger("propass.client.reconciler")

# Statuses the redeem route only returns after the code passed validation.
VALIDATED_FAILURE_STATUSES = (500, 503)


class PendingStore(Protocol):
    def load(self) -> PendingRedemption: ...

    def save(self, code: str) -> PendingRedemption: ...

    def clear(self) -> None: ...


class ReconcilerState(str, enum.Enum):
    NO_SESSION = "NoSession"
    SESSION_FREE_NO_PENDING = "SessionFreeNoPending"
    SESSION_FREE_PENDING = "SessionFreePending"
    SESSION_PRO = "SessionPro"


class ClientReconciler:
    def __init__(self, client: EntitlementClient, store: PendingStore) -> None:
        self.client = client
        self.store = store
        self.state = ReconcilerState.NO_SESSION

    @property
    def pending(self) -> PendingRedemption:
        return self.store.load()

    def _clear_pending(self) -> None:
        try:
            self.store.clear()
        except OSError as exc:
            # The grant is committed; a leftover record only causes an idempotent replay.
            logger.warning("Could not clear pending redemption: %s", exc)

    def redeem(self, code: str) -> RedeemResult:
        """Submit a code. Keeps it as pending when it cannot be applied yet.

        A code is kept only once the server has accepted it: on ``requiresSignIn``
        or when the store failed after validation. Failures that precede
        validation, such as timeouts or a 429, store nothing.
        InvalidCode propagates and nothing is stored.
        """
        normalized = normalize_code(code)
        try:
            result = self.client.redeem(code)
        except (StoreUnavailable, InternalError) as exc:
            if normalized and exc.response_status in VALIDATED_FAILURE_STATUSES:
                self.store.save(normalized)
                logger.info("Redemption failed transiently; kept %s as pending", normalized)
            raise

        if result.requires_sign_in:
            self.store.save(normalized)
            self.state = ReconcilerState.NO_SESSION
            logger.info("Redemption stored as pending until sign-in")
        elif result.plan == PLAN_PRO:
            if self.store.load().present:
                self._clear_pending()
            self.state = ReconcilerState.SESSION_PRO
        return result

    def check(self) -> ReconcilerState:
        """Re-evaluate session and pending record; replay the grant if needed."""
        pending = self.store.load()
        try:
            session = self.client.session()
        except (StoreUnavailable, InternalError) as exc:
            logger.info("Session check deferred: %s", exc)
            return self.state

        if session is None:
            self.state = ReconcilerState.NO_SESSION
            return self.state

        if session.plan == PLAN_PRO:
            if pending.present:
                self._clear_pending()
            self.state = ReconcilerState.SESSION_PRO
            return self.state

        if not pending.present:
            self.state = ReconcilerState.SESSION_FREE_NO_PENDING
            return self.state

        self.state = ReconcilerState.SESSION_FREE_PENDING
        return self._replay(pending)

    def _replay(self, pending: PendingRedemption) -> ReconcilerState:
        try:
            self.client.upgrade(pending.code)
        except InvalidCode as exc:
            logger.warning("Discarding pending code %s: %s", pending.code, exc)
            self._clear_pending()
            self.state = ReconcilerState.SESSION_FREE_NO_PENDING
            return self.state
        except Unauthorized:
            self.state = ReconcilerState.NO_SESSION
            return self.state
        except (StoreUnavailable, InternalError) as exc:
            logger.info("Pending redemption kept for retry: %s", exc)
            return self.state

        self._clear_pending()
        try:
            self.client.update_session(PLAN_PRO)
        except (StoreUnavailable, InternalError) as exc:
            # The upgrade response already carried a refreshed session.
            logger.info("Session refresh after upgrade failed: %s", exc)
        self.state = ReconcilerState.SESSION_PRO
        logger.info("Pending redemption %s reconciled", pending.code)
        return self.state

    def reconcile_with_backoff(
        self,
        *,
        max_attempts: Optional[int] = None,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> ReconcilerState:
        """Call ``check`` until the pending record is settled.

        Only the retryable SESSION_FREE_PENDING outcome is retried, with
        exponential backoff capped at ``max_delay``. ``max_attempts=None`` retries
        without bound.
        """
        attempt = 0
        while True:
            state = self.check()
            if state is not ReconcilerState.SESSION_FREE_PENDING:
                return state
            attempt += 1
            if max_attempts is not None and attempt >= max_attempts:
                return state
            sleep(min(max_delay, base_delay * (2 ** (attempt - 1))))


__all__ = ["ClientReconciler", "PendingStore", "ReconcilerState"]
