# src/solc_gateway/utils.py
from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timezone
from typing import Any


def utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def sha256_bytes(b: bytes) -> str:
    h = hashlib.sha256()
    h.update(b)
    return h.hexdigest()


def sha256_text(s: str) -> str:
    return sha256_bytes(s.encode("utf-8"))


def utf8_len(s: str) -> int:
    return len(s.encode("utf-8"))


def stable_json_dumps(obj: Any) -> str:
    """
    Deterministic JSON serialization for JSON-like objects.
    - sort keys
    - stable separators
    - no ASCII-forcing (keep unicode stable)
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# -----------------------------
# Filename normalization
# -----------------------------

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


def sanitize_filename(name: str | None) -> str:
    """
    Keep only [A-Za-z0-9_.-]. Returns "" when nothing survives.
    The result is used verbatim as the entry file's source key.
    """
    return _UNSAFE_FILENAME_RE.sub("", name or "")


def default_filename(source: str) -> str:
    # Deterministic: same source => same entry key.
    return f"Contract_{sha256_text(source)[:8]}.sol"
