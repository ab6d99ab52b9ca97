"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from panel_harga.api.deps import AppState, api_key_middleware
from panel_harga.api.routes import router
from panel_harga.core.config import PanelHargaConfig, load_config
from panel_harga.core.exceptions import (
    ConfigError,
    EntitlementRequired,
    PanelHargaError,
    PersistenceFailure,
)
from panel_harga.ingestion.sources import SourceAdapter
from panel_harga.ingestion.store import create_store
from panel_harga.pipeline import PricePipeline
from panel_harga.scheduler import PriceScheduler

UPGRADE_URL = "/api/subscription/create"
PREMIUM_FEATURES = [
    "Per-province live prices",
    "Price history up to 365 days",
    "Price statistics and volatility",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle."""
    config = app.state._pending_config or load_config()
    store = await create_store(config.storage)
    pipeline = PricePipeline(config, store, adapters=app.state._pending_adapters)
    scheduler = PriceScheduler(pipeline)

    state = AppState(config=config, store=store, pipeline=pipeline, scheduler=scheduler)
    if config.api.run_scheduler:
        scheduler.setup_schedules()
        state.scheduler_task = asyncio.create_task(scheduler.run_forever())
    app.state.app_state = state

    yield

    await scheduler.stop()
    if state.scheduler_task is not None:
        await state.scheduler_task
    await pipeline.close()
    await store.close()


def create_app(
    config: PanelHargaConfig | None = None,
    adapters: Sequence[SourceAdapter] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    import panel_harga

    app = FastAPI(
        title="Panel Harga API",
        description="Daily commodity prices by province with national averages",
        version=panel_harga.__version__,
        lifespan=lifespan,
    )

    # Resolved here so the API key middleware also applies under the uvicorn factory
    if config is None:
        config = load_config()

    # Stash config so lifespan can retrieve it
    app.state._pending_config = config
    app.state._pending_adapters = adapters

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Optional API key middleware
    if config and config.api.api_key:
        app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    # Exception handlers
    @app.exception_handler(EntitlementRequired)
    async def entitlement_exception_handler(request: Request, exc: EntitlementRequired):
        return JSONResponse(
            status_code=403,
            content={
                "error": "PREMIUM_REQUIRED",
                "detail": str(exc),
                "upgrade_url": UPGRADE_URL,
                "premium_features": PREMIUM_FEATURES,
            },
        )

    @app.exception_handler(PanelHargaError)
    async def panel_harga_exception_handler(request: Request, exc: PanelHargaError):
        status_map = {
            ConfigError: 400,
            PersistenceFailure: 500,
        }
        status = status_map.get(type(exc), 500)
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
