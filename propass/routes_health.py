import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .db import execute_scalar


logger = logging.getLogger("propass.health")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/healthz/db")
def healthz_db():
    try:
        value = execute_scalar("SELECT 1")
    except SQLAlchemyError as exc:
        logger.warning("DB health check failed: %s", exc)
        return JSONResponse(status_code=503, content={"message": "Entitlement store unavailable"})
    if value == 1:
        return {"db": "ok"}
    return JSONResponse(status_code=503, content={"message": "unexpected scalar"})
