import logging
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from ..errors import EntitlementError, json_error
from ..sessions import get_session_authority


logger = logging.getLogger("propass.request")


def _attach_request_id(response: Response, request: Request) -> Response:
    request_id = get_request_id(request)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def json_error_response(
    request: Request,
    code: str,
    *,
    status_code: int = 400,
    message: Optional[str] = None,
) -> JSONResponse:
    """Create a ``{"message": ...}`` error response carrying X-Request-ID."""

    response = json_error(code, status_code=status_code, message=message)
    return _attach_request_id(response, request)


def entitlement_error_response(request: Request, exc: EntitlementError) -> JSONResponse:
    return json_error_response(
        request,
        type(exc).__name__,
        status_code=exc.status_code,
        message=exc.message,
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a request ID and the decoded session to every request, and log timing.

    - If the client provides `X-Request-ID`, we echo it back; otherwise we generate a UUIDv4.
    - The session token (cookie or bearer) is decoded once into `request.state.session`.
    - We log method, path, status code, and elapsed time in milliseconds.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.session = get_session_authority(request).read(request)

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.exception("Unhandled exception processing request")
            logger.info(
                "method=%s path=%s status=%s ms=%s request_id=%s",
                request.method,
                request.url.path,
                500,
                elapsed_ms,
                request_id,
            )
            raise

        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "method=%s path=%s status=%s ms=%s request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request_id,
        )
        return _attach_request_id(response, request)


def get_request_id(request: Request) -> str:
    """Helper to read the request id from request.state, if set."""
    return getattr(request.state, "request_id", "")
