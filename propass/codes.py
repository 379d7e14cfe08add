"""Registry of redemption codes and the grants they confer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

from .config import extra_redeem_codes
from .models import PLAN_PRO


BUILTIN_CODES: Mapping[str, str] = {
    "FREEPRO2024": PLAN_PRO,
}

GRANT_ID_PREFIX = "code:"


@dataclass(frozen=True)
class Grant:
    code: str
    id: str
    effect: str


def canonical_code(raw: str) -> str:
    """Registry canonical form: surrounding whitespace stripped, upper case."""
    return raw.strip().upper()


def grant_id_for(code: str) -> str:
    return f"{GRANT_ID_PREFIX}{canonical_code(code)}"


class CodeRegistry:
    """Immutable lookup of canonical code -> Grant."""

    def __init__(self, codes: Mapping[str, str]) -> None:
        grants: Dict[str, Grant] = {}
        for raw, effect in codes.items():
            code = canonical_code(raw)
            if not code:
                continue
            grants[code] = Grant(code=code, id=grant_id_for(code), effect=effect)
        self._grants = grants

    def lookup(self, code: str) -> Optional[Grant]:
        return self._grants.get(code)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code in self._grants

    def __len__(self) -> int:
        return len(self._grants)

    def codes(self) -> Iterable[str]:
        return tuple(sorted(self._grants))


def default_registry() -> CodeRegistry:
    """Built-in codes plus any listed in REDEEM_CODES (all confer pro)."""
    codes: Dict[str, str] = dict(BUILTIN_CODES)
    for code in extra_redeem_codes():
        codes[code] = PLAN_PRO
    return CodeRegistry(codes)


__all__ = ["BUILTIN_CODES", "CodeRegistry", "Grant", "canonical_code", "default_registry", "grant_id_for"]
