import os
import time
import threading
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from ..config import trust_proxy_headers
from . import json_error_response


DEFAULT_PATH_PREFIXES = ("/redeem", "/upgrade", "/api/redeem-code", "/api/upgrade-plan", "/auth/request-link")


def _now() -> float:
    return time.monotonic()


def _client_key(request: Request) -> str:
    """Session subject when signed in, otherwise the caller IP.

    X-Forwarded-For is only honored with TRUST_PROXY_HEADERS set.
    """
    session = getattr(request.state, "session", None)
    if session is not None:
        return f"user:{session.subject}"
    xff = request.headers.get("x-forwarded-for") if trust_proxy_headers() else None
    if xff:
        parts = [p.strip() for p in xff.split(",") if p.strip()]
        if parts:
            return f"ip:{parts[0]}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


class SlidingWindow:
    """Sliding-window counter over a deque of monotonic timestamps."""

    def __init__(self, window_seconds: int) -> None:
        self.window_seconds = max(int(window_seconds or 60), 1)
        self._events: Deque[float] = deque()

    def add_and_prune(self, now_value: Optional[float] = None) -> int:
        now_value = now_value or _now()
        self._events.append(now_value)
        cutoff = now_value - self.window_seconds
        while self._events and self._events[0] < cutoff:
            self._events.popleft()
        return len(self._events)

    def is_idle(self, now_value: float) -> bool:
        return not self._events or self._events[-1] < now_value - self.window_seconds


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Throttle code guessing on the redemption endpoints.

    - Default limit: 20 POSTs per minute per client per tracked path prefix.
    - Clients are keyed by session subject, falling back to IP.
    - RATE_LIMIT_PATH_PREFIXES, RATE_LIMIT_LIMIT and RATE_LIMIT_WINDOW_SEC override
      the defaults; they are read per request so tests can tighten them.
    """

    def __init__(self, app, *, path_prefixes: Optional[Iterable[str]] = None, limit_per_window: Optional[int] = None, window_seconds: Optional[int] = None) -> None:
        super().__init__(app)
        self._path_prefixes = tuple(path_prefixes or ())
        self._limit = limit_per_window
        self._window = window_seconds
        self._lock = threading.Lock()
        self._buckets: Dict[Tuple[str, str, int], SlidingWindow] = {}
        self._last_sweep = _now()

    def _sweep(self, now_value: float, window: int) -> None:
        """Drop idle buckets at most once per window. Caller holds the lock."""
        if now_value - self._last_sweep < window:
            return
        self._last_sweep = now_value
        for key in [k for k, b in self._buckets.items() if b.is_idle(now_value)]:
            del self._buckets[key]

    def _settings(self) -> Tuple[Tuple[str, ...], int, int]:
        raw_prefixes = os.getenv("RATE_LIMIT_PATH_PREFIXES", "")
        env_prefixes: List[str] = [p.strip() for p in raw_prefixes.split(",") if p.strip()]
        prefixes = tuple(dict.fromkeys([*self._path_prefixes, *env_prefixes])) or DEFAULT_PATH_PREFIXES
        limit = int(self._limit or int(os.getenv("RATE_LIMIT_LIMIT", "0") or "0") or 20)
        window = int(self._window or int(os.getenv("RATE_LIMIT_WINDOW_SEC", "0") or "0") or 60)
        return prefixes, limit, window

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method != "POST":
            return await call_next(request)

        prefixes, limit, window = self._settings()
        prefix = next((p for p in prefixes if request.url.path.startswith(p)), None)
        if prefix is not None:
            key = (_client_key(request), prefix, window)
            now_value = _now()
            with self._lock:
                self._sweep(now_value, window)
                bucket = self._buckets.get(key)
                if bucket is None:
                    bucket = SlidingWindow(window)
                    self._buckets[key] = bucket
                count = bucket.add_and_prune(now_value)
            if count > limit:
                return json_error_response(
                    request,
                    "rate_limited",
                    status_code=429,
                    message="Too many requests; please slow down.",
                )

        return await call_next(request)


__all__ = ["RateLimitMiddleware", "SlidingWindow"]
