"""Thin httpx client for the entitlement API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..errors import EntitlementError, InternalError, InvalidCode, StoreUnavailable, Unauthorized


logger = logging.getLogger("propass.client")

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class RedeemResult:
    success: bool
    plan: Optional[str] = None
    requires_sign_in: bool = False
    already_applied: bool = False


@dataclass(frozen=True)
class SessionSnapshot:
    subject: int
    email: str
    plan: str
    issued_at: str

    @classmethod
    def from_json(cls, body: Dict[str, Any]) -> "SessionSnapshot":
        return cls(
            subject=int(body["subject"]),
            email=str(body.get("email") or ""),
            plan=str(body.get("plan") or "free"),
            issued_at=str(body.get("issuedAt") or ""),
        )


def _message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return None


def raise_for_entitlement_status(response: httpx.Response) -> None:
    """Map an error response back onto the server's error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    message = _message(response)
    if status == 400:
        raise InvalidCode(message, response_status=status)
    if status == 401:
        raise Unauthorized(message, response_status=status)
    if status in (408, 429, 502, 503, 504):
        raise StoreUnavailable(message, response_status=status)
    if status >= 500:
        raise InternalError(message, response_status=status)
    raise EntitlementError(message or f"unexpected status {status}", response_status=status)


class EntitlementClient:
    """Calls the entitlement API with bounded timeouts.

    Pass ``http`` to reuse an existing ``httpx.Client`` (its cookie jar carries the
    session); otherwise one is created for ``base_url``. Timeouts and transport
    failures surface as StoreUnavailable, which callers may retry.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        http: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_TIMEOUT,
        token: Optional[str] = None,
    ) -> None:
        if http is None:
            if not base_url:
                raise ValueError("base_url is required when no http client is given")
            http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)
            self._owns_http = True
        else:
            self._owns_http = False
        self._http = http
        self._timeout = timeout
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "EntitlementClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = self._http.request(method, path, json=json, headers=self._headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out: %s", method, path, exc)
            raise StoreUnavailable("Request timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise StoreUnavailable("Entitlement API unreachable") from exc
        raise_for_entitlement_status(response)
        return response

    def redeem(self, code: str) -> RedeemResult:
        body = self._request("POST", "/redeem", json={"code": code}).json()
        return RedeemResult(
            success=bool(body.get("success")),
            plan=body.get("plan"),
            requires_sign_in=bool(body.get("requiresSignIn")),
            already_applied=bool(body.get("alreadyApplied")),
        )

    def upgrade(self, code: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {"hasProCode": True}
        if code:
            payload["code"] = code
        body = self._request("POST", "/upgrade", json=payload).json()
        return str(body.get("plan") or "")

    def session(self) -> Optional[SessionSnapshot]:
        """Current session snapshot, or None when signed out."""
        try:
            response = self._request("GET", "/auth/session")
        except Unauthorized:
            return None
        return SessionSnapshot.from_json(response.json())

    def update_session(self, plan_hint: Optional[str] = None) -> SessionSnapshot:
        payload = {"plan": plan_hint} if plan_hint else {}
        return SessionSnapshot.from_json(self._request("POST", "/auth/session", json=payload).json())


__all__ = ["EntitlementClient", "RedeemResult", "SessionSnapshot", "raise_for_entitlement_status"]
