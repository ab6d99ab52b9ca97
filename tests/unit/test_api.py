"""Tests for the API app factory, schemas and error handlers."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from panel_harga.api.app import UPGRADE_URL, create_app
from panel_harga.api.schemas import (
    HealthResponse,
    IngestionRunResponse,
    PriceViewResponse,
    UpgradeRequiredResponse,
)
from panel_harga.core.config import PanelHargaConfig, StorageConfig
from panel_harga.core.exceptions import EntitlementRequired, PersistenceFailure
from panel_harga.core.models import (
    Commodity,
    CommodityRecord,
    HistoryStatistics,
    IngestionMethod,
    IngestionRun,
    PriceHistoryEntry,
    PriceView,
    Region,
    RunOutcome,
    ScopeKind,
)

NOW = datetime(2026, 3, 10, 0, 0, tzinfo=UTC)


@pytest.fixture
def config(tmp_path) -> PanelHargaConfig:
    return PanelHargaConfig(storage=StorageConfig(sqlite_path=str(tmp_path / "api.db")))


@pytest.fixture
def app(config, fake_adapter) -> FastAPI:
    app = create_app(config=config, adapters=[fake_adapter(IngestionMethod.STRUCTURED, [[]])])

    @app.get("/api/_raise/{kind}")
    async def _raise(kind: str):
        if kind == "entitlement":
            raise EntitlementRequired("premium only", context={"status": "FREE"})
        raise PersistenceFailure("disk full", context={"operation": "upsert"})

    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


class TestAppFactory:
    def test_create_app_returns_fastapi(self, config):
        assert isinstance(create_app(config=config), FastAPI)

    def test_create_app_includes_routes(self, config):
        paths = {route.path for route in create_app(config=config).routes}
        for expected in (
            "/api/health",
            "/api/prices/national",
            "/api/prices/live",
            "/api/prices/history",
            "/api/admin/scrape",
            "/api/admin/runs/{run_id}",
        ):
            assert expected in paths

    def test_create_app_cors_enabled(self, client):
        response = client.options(
            "/api/health",
            headers={"Origin": "http://example.com", "Access-Control-Request-Method": "GET"},
        )
        assert "access-control-allow-origin" in response.headers

    def test_lifespan_attaches_state(self, app, client):
        state = app.state.app_state
        assert state.pipeline.store is state.store
        assert state.scheduler_task is None


class TestExceptionHandlers:
    def test_entitlement_maps_to_upgrade_prompt(self, client):
        response = client.get("/api/_raise/entitlement")
        assert response.status_code == 403
        body = UpgradeRequiredResponse(**response.json())
        assert body.error == "PREMIUM_REQUIRED"
        assert body.detail == "premium only"
        assert body.upgrade_url == UPGRADE_URL

    def test_persistence_failure_is_500(self, client):
        response = client.get("/api/_raise/persistence")
        assert response.status_code == 500
        assert response.json() == {"error": "PersistenceFailure", "detail": "disk full"}


class TestSchemaValidation:
    def test_price_view_response(self):
        view = PriceView(
            tier="PREMIUM",
            scope=ScopeKind.REGIONAL,
            region=Region.BALI,
            price_date=date(2026, 3, 10),
            records=[
                CommodityRecord(
                    commodity=Commodity.BERAS,
                    region=Region.BALI,
                    price=14000,
                    unit="kg",
                    price_date=date(2026, 3, 10),
                    source_ref="https://panel.test#structured",
                    scraped_at=NOW,
                )
            ],
            history=[
                PriceHistoryEntry(
                    commodity=Commodity.BERAS,
                    region=Region.BALI,
                    price=14000,
                    price_date=date(2026, 3, 10),
                )
            ],
            statistics={
                Commodity.BERAS: HistoryStatistics(average=14000, min=14000, max=14000, volatility=0)
            },
        )
        data = PriceViewResponse.from_view(view).model_dump(mode="json")
        assert data["scope"] == "regional"
        assert data["region"] == "BALI"
        assert data["records"][0]["commodity"] == "BERAS"
        assert data["history"] == [{"commodity": "BERAS", "price": 14000, "price_date": "2026-03-10"}]
        assert data["statistics"]["BERAS"]["volatility"] == 0

    def test_ingestion_run_response(self):
        run = IngestionRun(
            run_id="r1",
            outcome=RunOutcome.FAILURE,
            method=None,
            errors=["structured: gave up"],
            duration_seconds=2.5,
            started_at=NOW,
        )
        data = IngestionRunResponse.from_run(run)
        assert data.outcome == "failure"
        assert data.method is None
        assert data.errors == ["structured: gave up"]

    def test_health_response_defaults(self):
        health = HealthResponse(
            version="0.1.0", database=True, active_prices=0, scheduler_running=False
        )
        assert health.status == "ok"
        assert health.latest_price_date is None
