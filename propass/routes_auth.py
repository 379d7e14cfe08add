"""Sign-in routes and the session update operation."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response
from sqlalchemy.orm import Session

from . import schemas
from .auth.accounts import get_or_create_user_by_email
from .auth.magic import (
    ExpiredMagicLink,
    InvalidMagicLink,
    UsedMagicLink,
    request_link as issue_magic_link,
    verify_token,
)
from .config import app_base_url, is_email_enabled
from .db import get_db
from .errors import EntitlementError, Unauthorized
from .middleware import entitlement_error_response, json_error_response
from .sessions import get_request_session, get_session_authority


logger = logging.getLogger("propass.auth.routes")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/request-link")
def request_magic_link(payload: schemas.RequestLinkPayload, request: Request) -> JSONResponse:
    try:
        link = issue_magic_link(request, payload.email)
    except ValueError as exc:
        return json_error_response(request, "invalid_email", status_code=422, message=str(exc))

    if is_email_enabled():
        logger.info("Magic login link for %s: %s", payload.email.lower(), link)
        return JSONResponse(status_code=202, content={"detail": "link_sent"})

    logger.info("EMAIL_ENABLED=0; magic login link (not sent) for %s: %s", payload.email.lower(), link)
    # In dev mode, return the link so the client can follow it directly
    return JSONResponse(status_code=202, content={"detail": "link_sent", "dev_link": link})


@router.get("/callback")
def auth_callback(token: str, request: Request, db: Session = Depends(get_db)):
    try:
        email = verify_token(request, token)
    except ExpiredMagicLink:
        return json_error_response(request, "expired_token", status_code=400, message="Magic link expired.")
    except UsedMagicLink:
        return json_error_response(request, "token_already_used", status_code=400, message="Token already used.")
    except InvalidMagicLink:
        return json_error_response(request, "invalid_token", status_code=400, message="Invalid magic link token.")

    authority = get_session_authority(request)
    try:
        user = get_or_create_user_by_email(db, email=email)
        session = authority.issue(db, user.id)
    except EntitlementError as exc:
        return entitlement_error_response(request, exc)

    response = RedirectResponse(url=f"{app_base_url()}/dashboard", status_code=302)
    authority.set_cookie(response, session)
    logger.info("User login success id=%s email=%s plan=%s", user.id, user.email, session.plan)
    return response


@router.get("/session", response_model=schemas.SessionOut)
def read_session(request: Request):
    """The session snapshot as carried by the token (advisory)."""
    session = get_request_session(request)
    if session is None:
        return entitlement_error_response(request, Unauthorized())
    return session.to_public()


@router.post("/session", response_model=schemas.SessionOut)
def update_session(payload: schemas.SessionUpdate, request: Request, db: Session = Depends(get_db)):
    """Refresh the session from the store. The plan in the body is only a hint."""
    session = get_request_session(request)
    if session is None:
        return entitlement_error_response(request, Unauthorized())

    authority = get_session_authority(request)
    try:
        refreshed = authority.refresh(db, session)
    except EntitlementError as exc:
        return entitlement_error_response(request, exc)

    if payload.plan and payload.plan != refreshed.plan:
        logger.info(
            "Ignoring plan hint %r for user=%s; store says %s", payload.plan, refreshed.subject, refreshed.plan
        )

    response = JSONResponse(refreshed.to_public())
    authority.set_cookie(response, refreshed)
    return response


@router.post("/logout", status_code=204)
def logout(request: Request):
    response = Response(status_code=204)
    get_session_authority(request).clear_cookie(response)
    return response
