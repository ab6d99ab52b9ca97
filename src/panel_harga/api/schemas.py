"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel

from panel_harga.core.models import IngestionRun, PriceView


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


class UpgradeRequiredResponse(ErrorResponse):
    """Returned with 403 when a premium scope is requested without premium."""

    error: str = "PREMIUM_REQUIRED"
    upgrade_url: str
    premium_features: list[str]


# -- Prices --


class PriceRecordResponse(BaseModel):
    commodity: str
    region: str
    price: int
    unit: str
    price_date: date
    source_ref: str
    scraped_at: datetime


class HistoryPointResponse(BaseModel):
    commodity: str
    price: int
    price_date: date


class StatisticsResponse(BaseModel):
    average: int
    min: int
    max: int
    volatility: int


class PriceViewResponse(BaseModel):
    """Prices served for one scope."""

    tier: str
    scope: str
    region: str
    price_date: date | None = None
    records: list[PriceRecordResponse] = []
    history: list[HistoryPointResponse] = []
    statistics: dict[str, StatisticsResponse] = {}

    @classmethod
    def from_view(cls, view: PriceView) -> PriceViewResponse:
        return cls(
            tier=view.tier,
            scope=str(view.scope),
            region=str(view.region),
            price_date=view.price_date,
            records=[
                PriceRecordResponse(
                    commodity=str(r.commodity),
                    region=str(r.region),
                    price=r.price,
                    unit=r.unit,
                    price_date=r.price_date,
                    source_ref=r.source_ref,
                    scraped_at=r.scraped_at,
                )
                for r in view.records
            ],
            history=[
                HistoryPointResponse(
                    commodity=str(h.commodity), price=h.price, price_date=h.price_date
                )
                for h in view.history
            ],
            statistics={
                str(c): StatisticsResponse(**s.model_dump())
                for c, s in view.statistics.items()
            },
        )


# -- Ingestion runs --


class IngestionRunResponse(BaseModel):
    run_id: str
    outcome: str
    method: str | None = None
    item_count: int
    skipped_count: int
    failed_count: int
    errors: list[str]
    notes: list[str]
    price_dates: list[date]
    duration_seconds: float
    started_at: datetime

    @classmethod
    def from_run(cls, run: IngestionRun) -> IngestionRunResponse:
        data = run.model_dump()
        data["outcome"] = str(run.outcome)
        data["method"] = str(run.method) if run.method else None
        return cls(**data)


class RunListResponse(BaseModel):
    items: list[IngestionRunResponse]


class ScrapeResponse(BaseModel):
    """Response for POST /api/admin/scrape."""

    status: str
    message: str


# -- Health --


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    status: str = "ok"
    version: str
    database: bool
    active_prices: int
    latest_price_date: date | None = None
    scheduler_running: bool
