"""Channel analytics endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from inboxly.api.auth import CallerContext, get_caller
from inboxly.domain.analytics import compute_metrics
from inboxly.domain.errors import StorePersistenceFailure
from inboxly.domain.models import Channel
from inboxly.infra.store import MessageStore
from inboxly.observability.correlation import get_correlation_id
from inboxly.observability.logging import get_logger
from inboxly.observability.redaction import safe_log_context

from ..deps import get_store

router = APIRouter(prefix="/analytics", tags=["analytics"])

logger = get_logger(__name__)


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@router.get("/channels")
def channel_metrics(
    channel: Channel | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    caller: CallerContext = Depends(get_caller),
    store: MessageStore = Depends(get_store),
) -> dict[str, Any]:
    """Per-channel engagement and response-time metrics (default: last 30 days)."""
    try:
        metrics = compute_metrics(
            store,
            caller.account_id,
            channel=channel,
            start=_aware(start),
            end=_aware(end),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorePersistenceFailure:
        logger.exception(
            "metrics query failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=500, detail="Metrics could not be loaded")
    return metrics.to_dict()
