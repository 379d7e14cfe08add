"""Client-held record of a redemption waiting for a session.

The persisted document keeps the keys the web client uses in local storage:
``hasProCode: "true"`` and ``proCodeRedeemed: <code>``. Only the reconciler reads
or writes it.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import state_file
from ..redemption import normalize_code


HAS_PRO_CODE_KEY = "hasProCode"
CODE_KEY = "proCodeRedeemed"


@dataclass(frozen=True)
class PendingRedemption:
    present: bool
    code: str = ""


NO_PENDING = PendingRedemption(present=False)


def _from_document(doc: Any) -> PendingRedemption:
    if not isinstance(doc, dict):
        return NO_PENDING
    code = normalize_code(doc.get(CODE_KEY))
    if doc.get(HAS_PRO_CODE_KEY) != "true" or not code:
        return NO_PENDING
    return PendingRedemption(present=True, code=code)


class MemoryPendingStore:
    """In-process store, for tests and short-lived clients."""

    def __init__(self) -> None:
        self._doc: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self) -> PendingRedemption:
        with self._lock:
            return _from_document(dict(self._doc))

    def save(self, code: str) -> PendingRedemption:
        normalized = normalize_code(code)
        if not normalized:
            raise ValueError("pending redemption needs a code")
        with self._lock:
            self._doc = {HAS_PRO_CODE_KEY: "true", CODE_KEY: normalized}
        return PendingRedemption(present=True, code=normalized)

    def clear(self) -> None:
        with self._lock:
            self._doc = {}


class JsonPendingStore:
    """File-backed store that survives restarts.

    Unrelated keys in the document are preserved. Writes go through a temp file
    and ``os.replace`` so a crash never leaves a half-written document.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path).expanduser() if path is not None else state_file()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            doc = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return doc if isinstance(doc, dict) else {}

    def _write(self, doc: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".propass-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(doc, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def load(self) -> PendingRedemption:
        return _from_document(self._read())

    def save(self, code: str) -> PendingRedemption:
        normalized = normalize_code(code)
        if not normalized:
            raise ValueError("pending redemption needs a code")
        doc = self._read()
        doc[HAS_PRO_CODE_KEY] = "true"
        doc[CODE_KEY] = normalized
        self._write(doc)
        return PendingRedemption(present=True, code=normalized)

    def clear(self) -> None:
        doc = self._read()
        if HAS_PRO_CODE_KEY not in doc and CODE_KEY not in doc:
            return
        doc.pop(HAS_PRO_CODE_KEY, None)
        doc.pop(CODE_KEY, None)
        self._write(doc)


__all__ = ["JsonPendingStore", "MemoryPendingStore", "NO_PENDING", "PendingRedemption"]
