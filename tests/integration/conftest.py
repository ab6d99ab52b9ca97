"""Integration test fixtures: real SQLite files, no network."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from panel_harga.core.config import PanelHargaConfig, SchedulerConfig, StorageConfig
from panel_harga.core.models import (
    Account,
    IngestionMethod,
    PriceObservation,
    Subscription,
    SubscriptionStatus,
)
from panel_harga.ingestion.store import SqliteStore

JAKARTA = ZoneInfo("Asia/Jakarta")

PREMIUM_ACCOUNT = "acct-premium"
LAPSED_ACCOUNT = "acct-lapsed"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "integration.db"


@pytest.fixture
def integration_config(db_path: Path) -> PanelHargaConfig:
    return PanelHargaConfig(
        storage=StorageConfig(sqlite_path=str(db_path)),
        scheduler=SchedulerConfig(poll_interval=0.01),
    )


@pytest.fixture
async def integration_store(integration_config: PanelHargaConfig) -> SqliteStore:
    """An initialized file-backed SqliteStore."""
    store = SqliteStore(integration_config.storage)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def todays_observations() -> list[PriceObservation]:
    """Observations stamped with the current Jakarta time, as a live scrape would be."""
    now = datetime.now(JAKARTA)
    return [
        PriceObservation(commodity_label="Beras Premium", region_label="Jawa Barat", price=14000, observed_at=now),
        PriceObservation(commodity_label="Beras Premium", region_label="Jawa Timur", price=15000, observed_at=now),
        PriceObservation(commodity_label="Cabai Merah Keriting", region_label="DKI Jakarta", price=52000, observed_at=now),
    ]


@pytest.fixture
def structured_adapter(fake_adapter, todays_observations):
    return fake_adapter(IngestionMethod.STRUCTURED, [todays_observations])


@pytest.fixture
def seed_accounts(integration_config: PanelHargaConfig):
    """Write one current and one lapsed premium account; returns their ids."""

    async def _seed() -> None:
        store = SqliteStore(integration_config.storage)
        await store.initialize()
        try:
            now = datetime.now(JAKARTA)
            for account_id, end in (
                (PREMIUM_ACCOUNT, now + timedelta(days=30)),
                (LAPSED_ACCOUNT, now - timedelta(days=1)),
            ):
                await store.save_account(
                    Account(
                        account_id=account_id,
                        email=f"{account_id}@example.com",
                        status=SubscriptionStatus.PREMIUM,
                    )
                )
                await store.save_subscription(
                    Subscription(
                        subscription_id=f"sub-{account_id}",
                        account_id=account_id,
                        status=SubscriptionStatus.PREMIUM,
                        start_date=now - timedelta(days=60),
                        end_date=end,
                    )
                )
        finally:
            await store.close()

    asyncio.run(_seed())
    return {"premium": PREMIUM_ACCOUNT, "lapsed": LAPSED_ACCOUNT}
