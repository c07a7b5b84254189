"""Redaction helpers for safe logging. All external data must pass through these.

Message bodies, phone numbers and channel-native ids are contact data: log a
``hash_identifier`` of them, or their length, never the value. Profile and
attachment URLs carry signed CDN tokens, so only their host is kept.
"""

import hashlib
import re
from datetime import datetime
from enum import Enum
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_URL_PATTERN = re.compile(r"(https?://[^/\s?#]+)[^\s]*")

_REDACTED = "[REDACTED]"

HASH_LENGTH = 12


def hash_identifier(value: str | None) -> str | None:
    """Non-reversible sha256 prefix for correlating ids across log lines."""
    if value is None:
        return None
    return hashlib.sha256(value.encode()).hexdigest()[:HASH_LENGTH]


def redact_string(value: str) -> str:
    """Strip URL paths, then mask phone numbers and e-mail addresses."""
    result = _URL_PATTERN.sub(r"\1/...", value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    return _EMAIL_PATTERN.sub(_REDACTED, result)


def redact_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # keys only
        return f"dict(keys={sorted(map(str, value.keys()))})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
