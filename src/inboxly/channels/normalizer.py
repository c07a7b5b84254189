"""Webhook normalizer - dispatch by channel tag.

Each provider payload is a tagged variant resolved here; callers only see
InboundEvent and StatusUpdate.
"""

from __future__ import annotations

from typing import Any, Callable

from inboxly.domain.errors import MalformedPayload

from . import manychat_adapter, meta_adapter, zapi_adapter
from .models import InboundEvent, StatusUpdate

_NORMALIZERS: dict[str, Callable[[Any], list[InboundEvent]]] = {
    "meta": meta_adapter.normalize,
    "zapi": zapi_adapter.normalize,
    "manychat": manychat_adapter.normalize,
}

_STATUS_EXTRACTORS: dict[str, Callable[[Any], list[StatusUpdate]]] = {
    "meta": meta_adapter.extract_status_updates,
    "zapi": zapi_adapter.extract_status_updates,
}

CHANNEL_TAGS = tuple(_NORMALIZERS)


def normalize(channel_tag: str, payload: Any) -> list[InboundEvent]:
    """Translate a provider payload into zero or more inbound events.

    Raises:
        MalformedPayload: Unknown tag or a payload the adapter rejects.
    """
    normalizer = _NORMALIZERS.get(channel_tag)
    if normalizer is None:
        raise MalformedPayload(f"unknown channel tag: {channel_tag}")
    return normalizer(payload)


def extract_status_updates(channel_tag: str, payload: Any) -> list[StatusUpdate]:
    """Delivery-status callbacks in a payload (empty for tags without them)."""
    if channel_tag not in _NORMALIZERS:
        raise MalformedPayload(f"unknown channel tag: {channel_tag}")
    extractor = _STATUS_EXTRACTORS.get(channel_tag)
    return extractor(payload) if extractor else []
