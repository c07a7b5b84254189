"""FastAPI application factory with role-based route mounting."""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from inboxly.observability.correlation import (
    CORRELATION_ID_HEADER,
    correlation_id_from_header,
    correlation_scope,
)

from .routes import analytics, conversations, webhooks_manychat, webhooks_meta, webhooks_zapi

AppRole = Literal["all", "webhooks", "api"]


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Roles:
    - "webhooks": provider webhooks only (public ingress)
    - "api": authenticated send/read/analytics endpoints only
    - "all" (default): both

    /health is mounted for every role.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "all")  # type: ignore[assignment]

    app = FastAPI(
        title="Inboxly",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = correlation_id_from_header(request.headers.get(CORRELATION_ID_HEADER))
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok"}

    if role in ("all", "webhooks"):
        app.include_router(webhooks_meta.router)
        app.include_router(webhooks_zapi.router)
        app.include_router(webhooks_manychat.router)

    if role in ("all", "api"):
        app.include_router(conversations.router)
        app.include_router(analytics.router)

    return app
