"""Request correlation ids.

The id travels in the X-Correlation-ID header. Callers (providers, the
automation layer) may send their own; anything that is not a short printable
token is replaced with a fresh uuid so log lines stay parseable.
"""

import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

CORRELATION_ID_HEADER = "X-Correlation-ID"

MAX_CORRELATION_ID_LENGTH = 128

_ACCEPTED = re.compile(r"^[A-Za-z0-9._:\-]+$")

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def correlation_id_from_header(value: str | None) -> str:
    """Accept a caller-supplied id, or generate one."""
    candidate = (value or "").strip()
    if candidate and len(candidate) <= MAX_CORRELATION_ID_LENGTH and _ACCEPTED.match(candidate):
        return candidate
    return generate_correlation_id()


def get_correlation_id() -> str:
    """Correlation id of the current request ("" outside a request)."""
    return correlation_id_var.get()


@contextmanager
def correlation_scope(cid: str) -> Iterator[str]:
    """Bind ``cid`` for the duration of the block."""
    token = correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        correlation_id_var.reset(token)
