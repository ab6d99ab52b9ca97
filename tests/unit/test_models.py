"""Tests for panel_harga.core.models."""

from datetime import UTC, date, datetime, timedelta

import pytest
from pydantic import ValidationError

from panel_harga.core.models import (
    Commodity,
    CommodityRecord,
    Entitlement,
    IngestionRun,
    NormalizedObservation,
    PriceObservation,
    Region,
    RunOutcome,
    Subscription,
    SubscriptionStatus,
)

NOW = datetime(2026, 3, 10, 7, 0, tzinfo=UTC)


class TestEnums:
    def test_commodity_count(self):
        assert len(Commodity) == 15

    def test_region_includes_national(self):
        assert Region.NASIONAL in Region
        assert len([r for r in Region if r != Region.NASIONAL]) == 34

    def test_values_equal_names(self):
        assert all(c.value == c.name for c in Commodity)
        assert all(r.value == r.name for r in Region)


class TestPriceObservation:
    def test_price_must_be_positive(self):
        with pytest.raises(ValidationError, match="positive"):
            PriceObservation(
                commodity_label="Beras", region_label="Bali", price=0, observed_at=NOW
            )

    def test_frozen(self):
        obs = PriceObservation(
            commodity_label="Beras", region_label="Bali", price=1, observed_at=NOW
        )
        with pytest.raises(ValidationError):
            obs.price = 2


class TestNormalizedObservation:
    def test_price_date_discards_time(self):
        obs = NormalizedObservation(
            commodity=Commodity.BERAS,
            region=Region.BALI,
            price=14000,
            unit="kg",
            observed_at=NOW.replace(hour=23, minute=59),
            source_ref="x",
        )
        assert obs.price_date == date(2026, 3, 10)


class TestCommodityRecord:
    def test_zero_price_allowed(self):
        record = CommodityRecord(
            commodity=Commodity.BERAS,
            region=Region.NASIONAL,
            price=0,
            unit="kg",
            price_date=date(2026, 3, 10),
            source_ref="calculated",
            scraped_at=NOW,
        )
        assert record.is_active is True

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            CommodityRecord(
                commodity=Commodity.BERAS,
                region=Region.BALI,
                price=-1,
                unit="kg",
                price_date=date(2026, 3, 10),
                source_ref="x",
                scraped_at=NOW,
            )


class TestIngestionRun:
    def test_succeeded(self):
        run = IngestionRun(
            run_id="r", outcome=RunOutcome.SUCCESS, duration_seconds=1.0, started_at=NOW
        )
        assert run.succeeded
        assert run.errors == []


class TestSubscription:
    def test_end_before_start(self):
        with pytest.raises(ValidationError, match="end_date"):
            Subscription(
                subscription_id="s",
                account_id="a",
                status=SubscriptionStatus.PREMIUM,
                start_date=NOW,
                end_date=NOW - timedelta(days=1),
            )


class TestEntitlement:
    def test_anonymous_is_free(self):
        assert Entitlement.anonymous().status == SubscriptionStatus.FREE
        assert not Entitlement.anonymous().is_premium_at(NOW)

    def test_premium_until_expiry(self):
        e = Entitlement(status=SubscriptionStatus.PREMIUM, expires_at=NOW)
        assert e.is_premium_at(NOW)
        assert not e.is_premium_at(NOW + timedelta(seconds=1))

    def test_expired_never_premium(self):
        e = Entitlement(status=SubscriptionStatus.EXPIRED, expires_at=NOW + timedelta(days=1))
        assert not e.is_premium_at(NOW)
