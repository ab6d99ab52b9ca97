"""Dependency injection for FastAPI routes."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from fastapi import Header, Request
from fastapi.responses import JSONResponse

from panel_harga.access.gateway import TierGateway
from panel_harga.core.config import PanelHargaConfig
from panel_harga.ingestion.store import SqliteStore
from panel_harga.pipeline import PricePipeline
from panel_harga.scheduler import PriceScheduler


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: PanelHargaConfig
    store: SqliteStore
    pipeline: PricePipeline
    scheduler: PriceScheduler
    scheduler_task: asyncio.Task | None = None


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_store(request: Request) -> SqliteStore:
    """Dependency: retrieve storage backend."""
    return request.app.state.app_state.store


def get_pipeline(request: Request) -> PricePipeline:
    return request.app.state.app_state.pipeline


def get_gateway(request: Request) -> TierGateway:
    return request.app.state.app_state.pipeline.gateway


def get_account_id(x_account_id: str | None = Header(default=None)) -> str | None:
    """Dependency: caller account from ``X-Account-Id``; absent means anonymous."""
    return x_account_id or None


EXEMPT_PATHS = {"/api/health"}


async def api_key_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware: validate X-API-Key header when authentication is enabled."""
    if request.url.path in EXEMPT_PATHS:
        return await call_next(request)

    config = request.app.state.app_state.config
    if config.api.api_key:
        api_key = request.headers.get("X-API-Key")
        if api_key != config.api.api_key:
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "detail": "Invalid or missing API key"},
            )
    return await call_next(request)
