"""Error taxonomy for the entitlement protocol and the FastAPI handlers that render it."""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger("propass.errors")


class EntitlementError(Exception):
    """Base class for failures surfaced by the entitlement protocol."""

    status_code = 500
    message = "Internal server error"
    retryable = False

    def __init__(self, message: Optional[str] = None, *, response_status: Optional[int] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message
        # HTTP status the server answered with, when raised from a client response.
        self.response_status = response_status


class InvalidCode(EntitlementError):
    """The submitted code is empty or unknown to the registry. Not retried."""

    status_code = 400
    message = "Invalid redeem code"


class StoreUnavailable(EntitlementError):
    """The entitlement store could not be reached in time. Safe to retry."""

    status_code = 503
    message = "Entitlement store unavailable"
    retryable = True


class Unauthorized(EntitlementError):
    """An operation that needs a session was called without one."""

    status_code = 401
    message = "Unauthorized"


class UnknownUser(Unauthorized):
    """The session subject no longer exists in the store."""


class InternalError(EntitlementError):
    """Unexpected failure; the grant may or may not have been applied."""


def json_error(code: str, *, status_code: int = 400, message: Optional[str] = None) -> JSONResponse:
    payload: Dict[str, Any] = {"message": message or code}
    return JSONResponse(status_code=status_code, content=payload)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


def _with_request_id(response: JSONResponse, request: Request) -> JSONResponse:
    request_id = _get_request_id(request)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(EntitlementError)
    async def entitlement_exception_handler(request: Request, exc: EntitlementError):
        if isinstance(exc, InternalError):
            logger.error("Entitlement failure path=%s: %s", request.url.path, exc)
        else:
            logger.info("Entitlement error path=%s type=%s", request.url.path, type(exc).__name__)
        resp = json_error(type(exc).__name__, status_code=exc.status_code, message=exc.message)
        return _with_request_id(resp, request)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail_str = str(getattr(exc, "detail", "") or "http_error")
        resp = json_error("http_error", status_code=exc.status_code, message=detail_str)
        return _with_request_id(resp, request)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        resp = json_error("validation_error", status_code=422, message=str(exc))
        return _with_request_id(resp, request)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled server error: %s", exc)
        resp = json_error("internal_error", status_code=500, message=InternalError.message)
        return _with_request_id(resp, request)


__all__ = [
    "EntitlementError",
    "InternalError",
    "InvalidCode",
    "StoreUnavailable",
    "Unauthorized",
    "UnknownUser",
    "install_exception_handlers",
    "json_error",
]
