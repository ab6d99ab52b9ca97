"""FastAPI route definitions for the panel-harga API."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

import panel_harga
from panel_harga.access.gateway import TierGateway
from panel_harga.api.deps import (
    AppState,
    get_account_id,
    get_app_state,
    get_gateway,
    get_pipeline,
    get_store,
)
from panel_harga.api.schemas import (
    HealthResponse,
    IngestionRunResponse,
    PriceViewResponse,
    RunListResponse,
    ScrapeResponse,
)
from panel_harga.core.models import Commodity, PriceScope, Region
from panel_harga.ingestion.normalizer import NameNormalizer
from panel_harga.ingestion.store import SqliteStore
from panel_harga.pipeline import PricePipeline
from panel_harga.scheduler import INGESTION_JOB

router = APIRouter()


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(
    store: SqliteStore = Depends(get_store),
    state: AppState = Depends(get_app_state),
):
    """Database reachability and price freshness."""
    healthy = await store.health_check()
    stats = await store.get_statistics() if healthy else {}
    latest = stats.get("latest_price_date")
    return HealthResponse(
        status="ok" if healthy else "degraded",
        version=panel_harga.__version__,
        database=healthy,
        active_prices=stats.get("active_prices", 0),
        latest_price_date=date.fromisoformat(latest) if latest else None,
        scheduler_running=state.scheduler_task is not None and not state.scheduler_task.done(),
    )


# -- Reference lists --


@router.get("/prices/commodities", response_model=list[str])
async def list_commodities():
    return [c.value for c in Commodity]


@router.get("/prices/provinces", response_model=list[str])
async def list_provinces():
    return [r.value for r in Region if r != Region.NASIONAL]


# -- Prices --


@router.get("/prices/national", response_model=PriceViewResponse)
async def national_prices(
    commodity: str | None = Query(None, description="Commodity id or label"),
    price_date: date | None = Query(None, alias="date"),
    gateway: TierGateway = Depends(get_gateway),
    pipeline: PricePipeline = Depends(get_pipeline),
    account_id: str | None = Depends(get_account_id),
):
    """National averages. Available on every tier."""
    scope = PriceScope.national(
        commodities=_commodities(commodity, pipeline.normalizer), price_date=price_date
    )
    view = await gateway.read_prices_for_account(scope, account_id)
    return PriceViewResponse.from_view(view)


@router.get("/prices/live", response_model=PriceViewResponse)
async def live_prices(
    province: str = Query(..., description="Province id or label"),
    commodity: str | None = Query(None),
    price_date: date | None = Query(None, alias="date"),
    gateway: TierGateway = Depends(get_gateway),
    pipeline: PricePipeline = Depends(get_pipeline),
    account_id: str | None = Depends(get_account_id),
):
    """Per-province prices for one day (premium)."""
    scope = PriceScope.regional(
        _region(province, pipeline.normalizer),
        commodities=_commodities(commodity, pipeline.normalizer),
        price_date=price_date,
    )
    view = await gateway.read_prices_for_account(scope, account_id)
    return PriceViewResponse.from_view(view)


@router.get("/prices/history", response_model=PriceViewResponse)
async def price_history(
    commodity: str | None = Query(None),
    province: str = Query("NASIONAL"),
    days: int = Query(30, ge=1, le=365),
    gateway: TierGateway = Depends(get_gateway),
    pipeline: PricePipeline = Depends(get_pipeline),
    account_id: str | None = Depends(get_account_id),
):
    """Price ledger window with statistics (premium)."""
    scope = PriceScope.regional(
        _region(province, pipeline.normalizer),
        commodities=_commodities(commodity, pipeline.normalizer),
        history_days=days,
    )
    view = await gateway.read_prices_for_account(scope, account_id)
    return PriceViewResponse.from_view(view)


# -- Admin --


@router.post("/admin/scrape", response_model=ScrapeResponse, status_code=202)
async def trigger_scrape(
    background_tasks: BackgroundTasks,
    state: AppState = Depends(get_app_state),
):
    """Queue an immediate ingestion run; poll /admin/runs for the outcome."""
    if state.scheduler.is_running(INGESTION_JOB):
        raise HTTPException(status_code=409, detail="An ingestion run is already in progress")
    background_tasks.add_task(state.scheduler.trigger_ingestion_now)
    return ScrapeResponse(status="accepted", message="Ingestion run queued")


@router.get("/admin/runs", response_model=RunListResponse)
async def list_runs(
    limit: int = Query(20, ge=1, le=200),
    store: SqliteStore = Depends(get_store),
):
    runs = await store.list_ingestion_runs(limit=limit)
    return RunListResponse(items=[IngestionRunResponse.from_run(r) for r in runs])


@router.get("/admin/runs/{run_id}", response_model=IngestionRunResponse)
async def get_run(
    run_id: str,
    store: SqliteStore = Depends(get_store),
):
    run = await store.get_ingestion_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return IngestionRunResponse.from_run(run)


# -- Helpers --


def _region(label: str, normalizer: NameNormalizer) -> Region:
    region = normalizer.region(label)
    if region is None:
        raise HTTPException(status_code=422, detail=f"Unknown province: {label!r}")
    return region


def _commodities(
    label: str | None, normalizer: NameNormalizer
) -> tuple[Commodity, ...] | None:
    if label is None:
        return None
    commodity = normalizer.commodity(label)
    if commodity is None:
        raise HTTPException(status_code=422, detail=f"Unknown commodity: {label!r}")
    return (commodity,)
