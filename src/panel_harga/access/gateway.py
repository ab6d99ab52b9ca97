"""Tier gateway: decides what price data a caller's entitlement covers.

    scope              entitlement            result
    national           any                    NASIONAL records
    regional/history   PREMIUM, unexpired     region records or ledger window
    regional/history   FREE / EXPIRED         EntitlementRequired

Expiry is checked here against the clock as well as by the hourly
reconciliation, so a PREMIUM entitlement past its end date is treated as
FREE even before the sweep has downgraded it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import timedelta

from panel_harga.core.clock import Clock
from panel_harga.core.exceptions import EntitlementRequired
from panel_harga.core.models import (
    AccountId,
    Commodity,
    Entitlement,
    HistoryStatistics,
    PriceHistoryEntry,
    PriceScope,
    PriceView,
    Region,
    ScopeKind,
    SubscriptionStatus,
)
from panel_harga.ingestion.aggregator import rounded_mean
from panel_harga.ingestion.store import SqliteStore

logger = logging.getLogger(__name__)


def history_statistics(
    entries: list[PriceHistoryEntry],
) -> dict[Commodity, HistoryStatistics]:
    """Average, min, max and volatility (max - min) per commodity."""
    by_commodity: dict[Commodity, list[int]] = defaultdict(list)
    for entry in entries:
        by_commodity[entry.commodity].append(entry.price)
    return {
        commodity: HistoryStatistics(
            average=rounded_mean(prices),
            min=min(prices),
            max=max(prices),
            volatility=max(prices) - min(prices),
        )
        for commodity, prices in by_commodity.items()
    }


class TierGateway:
    """Serves price reads gated by subscription tier."""

    def __init__(self, store: SqliteStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    def effective_status(self, entitlement: Entitlement) -> SubscriptionStatus:
        """The status as of now: an overdue PREMIUM reads as EXPIRED."""
        if entitlement.status == SubscriptionStatus.PREMIUM and not entitlement.is_premium_at(
            self._clock()
        ):
            return SubscriptionStatus.EXPIRED
        return entitlement.status

    async def read_prices(self, scope: PriceScope, entitlement: Entitlement) -> PriceView:
        """Return the view for ``scope`` or raise EntitlementRequired."""
        status = self.effective_status(entitlement)
        if scope.kind == ScopeKind.NATIONAL:
            return await self._national(scope, status)

        if status != SubscriptionStatus.PREMIUM:
            logger.info(
                "Denied %s read for account %s (%s)",
                scope.region, entitlement.account_id, status,
            )
            raise EntitlementRequired(
                f"Regional and historical prices require a premium subscription "
                f"(current status: {status})",
                context={"account_id": entitlement.account_id, "status": str(status)},
            )

        if scope.is_history:
            return await self._history(scope, status)
        return await self._regional(scope, status)

    async def read_prices_for_account(
        self, scope: PriceScope, account_id: AccountId | None
    ) -> PriceView:
        """Look the entitlement up fresh for this request, then read."""
        if account_id is None:
            entitlement = Entitlement.anonymous()
        else:
            entitlement = await self._store.get_entitlement(account_id)
        return await self.read_prices(scope, entitlement)

    async def _national(self, scope: PriceScope, status: SubscriptionStatus) -> PriceView:
        price_date = scope.price_date or await self._store.latest_price_date(
            Region.NASIONAL, on_or_before=self._clock().date()
        )
        records = []
        if price_date is not None:
            records = await self._store.get_prices(
                price_date, region=Region.NASIONAL, commodities=scope.commodities
            )
        return PriceView(
            tier=str(status),
            scope=ScopeKind.NATIONAL,
            region=Region.NASIONAL,
            price_date=price_date,
            records=records,
        )

    async def _regional(self, scope: PriceScope, status: SubscriptionStatus) -> PriceView:
        price_date = scope.price_date or await self._store.latest_price_date(
            scope.region, on_or_before=self._clock().date()
        )
        records = []
        if price_date is not None:
            records = await self._store.get_prices(
                price_date, region=scope.region, commodities=scope.commodities
            )
        return PriceView(
            tier=str(status),
            scope=ScopeKind.REGIONAL,
            region=scope.region,
            price_date=price_date,
            records=records,
        )

    async def _history(self, scope: PriceScope, status: SubscriptionStatus) -> PriceView:
        end = scope.price_date or self._clock().date()
        since = end - timedelta(days=scope.history_days)
        history = [
            entry
            for entry in await self._store.get_history(
                scope.region, since, commodities=scope.commodities
            )
            if entry.price_date <= end
        ]
        return PriceView(
            tier=str(status),
            scope=ScopeKind.REGIONAL,
            region=scope.region,
            price_date=end,
            history=history,
            statistics=history_statistics(history),
        )
