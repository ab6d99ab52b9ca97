"""Tests for the SQLite storage backend."""

from datetime import UTC, date, datetime, timedelta

import pytest

from panel_harga.core.config import StorageConfig
from panel_harga.core.exceptions import PersistenceFailure
from panel_harga.core.models import (
    Account,
    Commodity,
    CommodityRecord,
    IngestionMethod,
    IngestionRun,
    PriceHistoryEntry,
    Region,
    RunOutcome,
    Subscription,
    SubscriptionStatus,
)
from panel_harga.ingestion.store import PriceStore, SqliteStore, create_store

DAY = date(2026, 3, 10)


# --- Fixtures ---


@pytest.fixture
def make_record():
    """Factory for CommodityRecord with overridable defaults."""

    def _make(**overrides):
        defaults = dict(
            commodity=Commodity.BERAS,
            region=Region.JAWA_BARAT,
            price=14500,
            unit="kg",
            price_date=DAY,
            source_ref="https://panel.test#structured",
            scraped_at=datetime(2026, 3, 10, 0, 0, tzinfo=UTC),
        )
        defaults.update(overrides)
        return CommodityRecord(**defaults)

    return _make


@pytest.fixture
def make_run():
    def _make(**overrides):
        defaults = dict(
            run_id="run-1",
            outcome=RunOutcome.SUCCESS,
            method=IngestionMethod.STRUCTURED,
            item_count=3,
            skipped_count=1,
            errors=[],
            notes=["Unmapped labels: Durian"],
            price_dates=[DAY],
            duration_seconds=1.5,
            started_at=datetime(2026, 3, 10, 0, 0, tzinfo=UTC),
        )
        defaults.update(overrides)
        return IngestionRun(**defaults)

    return _make


# --- Lifecycle ---


class TestLifecycle:
    async def test_satisfies_protocol(self, store):
        assert isinstance(store, PriceStore)

    async def test_health_check(self, store):
        assert await store.health_check() is True

    async def test_health_check_after_close(self):
        s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
        await s.initialize()
        await s.close()
        assert await s.health_check() is False

    async def test_create_store(self, tmp_path):
        s = await create_store(StorageConfig(sqlite_path=str(tmp_path / "p.db")))
        try:
            assert await s.health_check()
        finally:
            await s.close()

    async def test_migrations_are_idempotent(self, tmp_path):
        config = StorageConfig(sqlite_path=str(tmp_path / "p.db"))
        for _ in range(2):
            s = await create_store(config)
            assert await s._get_schema_version() == 1
            await s.close()

    async def test_initialize_failure(self, tmp_path):
        s = SqliteStore(StorageConfig(sqlite_path=str(tmp_path / "missing" / "p.db")))
        with pytest.raises(PersistenceFailure):
            await s.initialize()


# --- Prices ---


class TestPrices:
    async def test_insert_then_read(self, store, make_record):
        await store.upsert_price(make_record())
        records = await store.get_prices(DAY)
        assert records == [make_record()]

    async def test_upsert_overwrites_in_place(self, store, make_record):
        await store.upsert_price(make_record(price=14500))
        await store.upsert_price(make_record(price=15000, source_ref="other"))
        records = await store.get_prices(DAY, region=Region.JAWA_BARAT)
        assert len(records) == 1
        assert records[0].price == 15000
        # The first writer's source reference is kept
        assert records[0].source_ref == "https://panel.test#structured"

    async def test_upsert_reactivates(self, store, make_record):
        await store.upsert_price(make_record())
        assert await store.deactivate_prices_before(DAY + timedelta(days=1)) == 1
        assert await store.get_prices(DAY) == []
        await store.upsert_price(make_record())
        assert len(await store.get_prices(DAY)) == 1

    async def test_filters(self, store, make_record):
        await store.upsert_price(make_record())
        await store.upsert_price(make_record(commodity=Commodity.TOMAT, price=9000))
        await store.upsert_price(make_record(region=Region.BALI))
        only_tomat = await store.get_prices(DAY, commodities=(Commodity.TOMAT,))
        assert [r.commodity for r in only_tomat] == [Commodity.TOMAT]
        only_bali = await store.get_prices(DAY, region=Region.BALI)
        assert [r.region for r in only_bali] == [Region.BALI]

    async def test_regional_prices_exclude_national(self, store, make_record):
        await store.upsert_price(make_record())
        await store.upsert_price(make_record(region=Region.NASIONAL, source_ref="calculated"))
        regional = await store.get_regional_prices(Commodity.BERAS, DAY)
        assert [r.region for r in regional] == [Region.JAWA_BARAT]

    async def test_latest_price_date(self, store, make_record):
        assert await store.latest_price_date(Region.JAWA_BARAT) is None
        await store.upsert_price(make_record(price_date=DAY - timedelta(days=2)))
        await store.upsert_price(make_record(price_date=DAY))
        assert await store.latest_price_date(Region.JAWA_BARAT) == DAY
        assert await store.latest_price_date(
            Region.JAWA_BARAT, on_or_before=DAY - timedelta(days=1)
        ) == DAY - timedelta(days=2)

    async def test_deactivate_keeps_rows(self, store, make_record):
        await store.upsert_price(make_record(price_date=DAY - timedelta(days=40)))
        await store.upsert_price(make_record(price_date=DAY))
        assert await store.deactivate_prices_before(DAY - timedelta(days=30)) == 1
        old = await store.get_prices(DAY - timedelta(days=40), active_only=False)
        assert len(old) == 1
        assert old[0].is_active is False

    async def test_query_after_close_raises(self, make_record):
        s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
        await s.initialize()
        await s.close()
        with pytest.raises(PersistenceFailure) as exc_info:
            await s.upsert_price(make_record())
        assert exc_info.value.context["table"] == "commodity_prices"


# --- History ---


class TestHistory:
    async def test_append_only(self, store):
        entry = PriceHistoryEntry(
            commodity=Commodity.BERAS, region=Region.BALI, price=14000, price_date=DAY
        )
        await store.append_history(entry)
        await store.append_history(entry.model_copy(update={"price": 14200}))
        history = await store.get_history(Region.BALI, since=DAY)
        assert [h.price for h in history] == [14000, 14200]
        assert all(h.recorded_at is not None for h in history)

    async def test_window_and_prune(self, store):
        for offset in (0, 10, 400):
            await store.append_history(
                PriceHistoryEntry(
                    commodity=Commodity.BERAS,
                    region=Region.BALI,
                    price=14000 + offset,
                    price_date=DAY - timedelta(days=offset),
                )
            )
        recent = await store.get_history(Region.BALI, since=DAY - timedelta(days=30))
        assert len(recent) == 2
        assert await store.prune_history_before(DAY - timedelta(days=365)) == 1
        everything = await store.get_history(Region.BALI, since=date(2000, 1, 1))
        assert len(everything) == 2


# --- Ingestion runs ---


class TestIngestionRuns:
    async def test_round_trip(self, store, make_run):
        run = make_run()
        await store.save_ingestion_run(run)
        assert await store.get_ingestion_run("run-1") == run

    async def test_failure_run_without_method(self, store, make_run):
        run = make_run(outcome=RunOutcome.FAILURE, method=None, item_count=0, errors=["x", "y"])
        await store.save_ingestion_run(run)
        loaded = await store.get_ingestion_run("run-1")
        assert loaded.method is None
        assert loaded.errors == ["x", "y"]

    async def test_missing(self, store):
        assert await store.get_ingestion_run("nope") is None

    async def test_list_newest_first_and_prune(self, store, make_run):
        base = datetime(2026, 1, 1, tzinfo=UTC)
        for i in range(3):
            await store.save_ingestion_run(
                make_run(run_id=f"run-{i}", started_at=base + timedelta(days=30 * i))
            )
        runs = await store.list_ingestion_runs(limit=2)
        assert [r.run_id for r in runs] == ["run-2", "run-1"]
        assert await store.prune_ingestion_runs_before(base + timedelta(days=45)) == 2
        assert [r.run_id for r in await store.list_ingestion_runs()] == ["run-2"]

    async def test_duplicate_run_id_rejected(self, store, make_run):
        await store.save_ingestion_run(make_run())
        with pytest.raises(PersistenceFailure):
            await store.save_ingestion_run(make_run())


# --- Accounts & subscriptions ---


class TestEntitlements:
    async def test_unknown_account_is_free(self, store):
        entitlement = await store.get_entitlement("ghost")
        assert entitlement.status == SubscriptionStatus.FREE
        assert entitlement.expires_at is None

    async def test_premium_account_reports_latest_end(self, store):
        start = datetime(2026, 1, 1, tzinfo=UTC)
        await store.save_account(
            Account(account_id="a1", email="a1@example.com", status=SubscriptionStatus.PREMIUM)
        )
        for sub_id, days in (("s1", 30), ("s2", 90)):
            await store.save_subscription(
                Subscription(
                    subscription_id=sub_id,
                    account_id="a1",
                    status=SubscriptionStatus.PREMIUM,
                    start_date=start,
                    end_date=start + timedelta(days=days),
                )
            )
        entitlement = await store.get_entitlement("a1")
        assert entitlement.status == SubscriptionStatus.PREMIUM
        assert entitlement.expires_at == start + timedelta(days=90)

    async def test_find_lapsed(self, store):
        start = datetime(2026, 1, 1, tzinfo=UTC)
        await store.save_account(Account(account_id="a1", email="a1@example.com"))
        await store.save_subscription(
            Subscription(
                subscription_id="s1",
                account_id="a1",
                status=SubscriptionStatus.PREMIUM,
                start_date=start,
                end_date=start + timedelta(days=30),
            )
        )
        assert await store.find_lapsed_subscriptions(start + timedelta(days=10)) == []
        lapsed = await store.find_lapsed_subscriptions(start + timedelta(days=31))
        assert [s.subscription_id for s in lapsed] == ["s1"]

    async def test_subscription_requires_account(self, store):
        start = datetime(2026, 1, 1, tzinfo=UTC)
        with pytest.raises(PersistenceFailure):
            await store.save_subscription(
                Subscription(
                    subscription_id="s1",
                    account_id="nobody",
                    status=SubscriptionStatus.PREMIUM,
                    start_date=start,
                    end_date=start,
                )
            )


class TestStatistics:
    async def test_counts(self, store, make_record, make_run):
        await store.upsert_price(make_record())
        await store.save_ingestion_run(make_run())
        stats = await store.get_statistics()
        assert stats["active_prices"] == 1
        assert stats["history_entries"] == 0
        assert stats["ingestion_runs"] == 1
        assert stats["latest_price_date"] == DAY.isoformat()
