"""Redemption and upgrade endpoints consumed by the UI."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import models, schemas
from .db import get_db
from .entitlements import AppliedOutcome, apply_grant, get_plan, list_grants
from .errors import EntitlementError, InternalError, InvalidCode, Unauthorized
from .middleware import entitlement_error_response, json_error_response
from .redemption import validate
from .sessions import get_request_session, get_session_authority


logger = logging.getLogger("propass.redeem")

router = APIRouter(tags=["redeem"])


@router.post("/api/redeem-code", include_in_schema=False)
@router.post("/redeem", response_model=schemas.RedeemResponse, response_model_exclude_none=True)
def redeem(request: Request, payload: Optional[schemas.RedeemRequest] = None, db: Session = Depends(get_db)):
    """Validate a code and, when signed in, apply its grant.

    Without a session the caller gets ``requiresSignIn`` and is expected to keep
    the code as a pending redemption until a session exists.
    """
    try:
        grant = validate(payload.code if payload is not None else None)
    except InvalidCode as exc:
        return entitlement_error_response(request, exc)

    session = get_request_session(request)
    if session is None:
        logger.info("Anonymous redemption of %s; sign-in required", grant.id)
        return {"success": True, "requiresSignIn": True}

    authority = get_session_authority(request)
    try:
        outcome = apply_grant(db, session.subject, grant)
        refreshed = authority.refresh(db, session)
    except EntitlementError as exc:
        return entitlement_error_response(request, exc)
    except Exception:
        logger.exception("Redemption failed for user=%s", session.subject)
        return entitlement_error_response(request, InternalError())

    response = JSONResponse(
        {
            "success": True,
            "plan": refreshed.plan,
            "alreadyApplied": outcome is AppliedOutcome.ALREADY_APPLIED,
        }
    )
    authority.set_cookie(response, refreshed)
    return response


@router.post("/api/upgrade-plan", include_in_schema=False)
@router.post("/upgrade", response_model=schemas.UpgradeResponse)
def upgrade(request: Request, payload: Optional[schemas.UpgradeRequest] = None, db: Session = Depends(get_db)):
    """Re-run grant logic for a signed-in user and refresh their session.

    ``hasProCode`` is never persisted; with a code the grant is re-validated and
    applied, without one the store decides whether the user is already pro.
    """
    session = get_request_session(request)
    if session is None:
        return entitlement_error_response(request, Unauthorized())
    if payload is None or not payload.has_pro_code:
        return json_error_response(request, "invalid_upgrade", status_code=400, message="Invalid upgrade request")

    authority = get_session_authority(request)
    try:
        if payload.code is not None:
            grant = validate(payload.code)
            apply_grant(db, session.subject, grant)
        refreshed = authority.refresh(db, session)
    except EntitlementError as exc:
        return entitlement_error_response(request, exc)
    except Exception:
        logger.exception("Upgrade failed for user=%s", session.subject)
        return entitlement_error_response(request, InternalError())

    if refreshed.plan != models.PLAN_PRO:
        return json_error_response(request, "code_required", status_code=400, message="Redeem code is required")

    response = JSONResponse({"success": True, "plan": refreshed.plan})
    authority.set_cookie(response, refreshed)
    return response


@router.get("/api/entitlements", response_model=schemas.EntitlementsOut)
def read_entitlements(request: Request, db: Session = Depends(get_db)):
    """Authoritative plan and applied grants straight from the store."""
    session = get_request_session(request)
    if session is None:
        return entitlement_error_response(request, Unauthorized())
    try:
        plan = get_plan(db, session.subject)
        grants = list_grants(db, session.subject)
    except EntitlementError as exc:
        return entitlement_error_response(request, exc)
    return {"plan": plan, "pro": plan == models.PLAN_PRO, "grants": grants}
