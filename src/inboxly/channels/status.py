"""Provider delivery-status normalization.

Maps provider status strings onto the canonical outbound lifecycle:
``sent``, ``delivered``, ``read`` or ``failed``.
"""

from __future__ import annotations

from inboxly.domain.models import DeliveryStatus

_STATUS_MAP: dict[str, DeliveryStatus] = {
    "sent": DeliveryStatus.SENT,
    "sending": DeliveryStatus.SENT,
    "submitted": DeliveryStatus.SENT,
    "received": DeliveryStatus.DELIVERED,  # Z-API: reached the recipient's device
    "delivered": DeliveryStatus.DELIVERED,
    "delivery_ack": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.READ,
    "read_by_me": DeliveryStatus.READ,
    "played": DeliveryStatus.READ,
    "viewed": DeliveryStatus.READ,
    "failed": DeliveryStatus.FAILED,
    "error": DeliveryStatus.FAILED,
    "undelivered": DeliveryStatus.FAILED,
}


def normalize_delivery_status(status: str | None) -> DeliveryStatus | None:
    """Normalize a provider status string.

    Returns None for empty or unrecognized values so callers can skip the
    update instead of guessing.
    """
    if not status:
        return None

    status_lower = status.strip().lower()
    if status_lower in _STATUS_MAP:
        return _STATUS_MAP[status_lower]

    if "fail" in status_lower or "error" in status_lower:
        return DeliveryStatus.FAILED

    return None
