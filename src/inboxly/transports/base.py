"""Shared HTTP plumbing for provider transports.

Every provider call is a single urllib request bounded by HTTP_TIMEOUT.
Transports never retry; the delivery router moves to the next transport.

Security: NEVER log recipient ids or message text. Only hashes and lengths.
"""

from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from inboxly.domain.errors import TransportFailure

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 5

# Cap on provider error text kept for logs
MAX_ERROR_DETAIL = 200

NOT_CONFIGURED = "not_configured"
UNADDRESSABLE = "unaddressable"


@dataclass(frozen=True)
class TransportReceipt:
    """Provider acknowledgement of a sent message."""

    transport: str
    provider_message_id: str | None = None
    provider_status: int | str | None = None


def sanitize_error(text: str) -> str:
    """Collapse whitespace and cap length."""
    return " ".join(str(text).split())[:MAX_ERROR_DETAIL]


def _is_timeout(reason: Any) -> bool:
    return isinstance(reason, (socket.timeout, TimeoutError)) or "timed out" in str(reason)


def _error_detail(body: str, fallback: str) -> str:
    try:
        parsed = json.loads(body)
    except ValueError:
        return sanitize_error(body) or fallback
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return sanitize_error(error["message"])
        for key in ("message", "error", "details"):
            value = parsed.get(key)
            if value:
                return sanitize_error(value if isinstance(value, str) else json.dumps(value))
    return fallback


def do_request(
    transport: str,
    url: str,
    *,
    method: str = "POST",
    payload: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[int, dict[str, Any]]:
    """Execute one HTTP request and decode the JSON response.

    Returns:
        Tuple of (http_status, decoded_body).

    Raises:
        TransportFailure: On HTTP error status, network error, timeout or
            an undecodable response.
    """
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = urllib.request.Request(url, data=data, headers=headers or {}, method=method)
    try:
        with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT) as resp:
            status = resp.status
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        raise TransportFailure(
            transport,
            _error_detail(body, f"HTTP {exc.code}"),
            provider_status=exc.code,
        ) from exc
    except urllib.error.URLError as exc:
        if _is_timeout(exc.reason):
            raise TransportFailure(transport, "timeout", timeout=True) from exc
        raise TransportFailure(transport, sanitize_error(str(exc.reason))) from exc
    except (socket.timeout, TimeoutError) as exc:
        raise TransportFailure(transport, "timeout", timeout=True) from exc

    if not raw:
        return status, {}
    try:
        body = json.loads(raw)
    except ValueError as exc:
        raise TransportFailure(transport, "invalid JSON response", provider_status=status) from exc
    return status, body if isinstance(body, dict) else {"data": body}
