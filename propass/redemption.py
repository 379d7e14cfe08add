"""Redemption code validation. Never touches the store or the session."""

from __future__ import annotations

from typing import Any, Optional

from .codes import CodeRegistry, Grant, canonical_code, default_registry
from .errors import InvalidCode


def normalize_code(raw: Any) -> str:
    """Return the canonical form of a submitted code, or "" when unusable."""
    if not isinstance(raw, str):
        return ""
    return canonical_code(raw)


def validate(submitted_code: Any, registry: Optional[CodeRegistry] = None) -> Grant:
    """Resolve a submitted code to its Grant.

    Matching is case-insensitive because lookup happens on the canonical form.
    Raises InvalidCode when the code is missing, empty or unknown.
    """
    code = normalize_code(submitted_code)
    if not code:
        raise InvalidCode()

    grant = (registry or default_registry()).lookup(code)
    if grant is None:
        raise InvalidCode()
    return grant


__all__ = ["normalize_code", "validate"]
