"""Hourly subscription-expiry reconciliation."""

from __future__ import annotations

import logging

from panel_harga.core.clock import Clock
from panel_harga.core.models import ExpiryReport, SubscriptionStatus
from panel_harga.ingestion.store import SqliteStore

logger = logging.getLogger(__name__)


class SubscriptionReconciler:
    """Expires lapsed PREMIUM subscriptions and downgrades their accounts.

    Running it again on already-expired subscriptions is a no-op, since
    only PREMIUM rows past their end date are selected.
    """

    def __init__(self, store: SqliteStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    async def reconcile(self) -> ExpiryReport:
        now = self._clock()
        report = ExpiryReport()

        lapsed = await self._store.find_lapsed_subscriptions(now)
        for subscription in lapsed:
            await self._store.set_subscription_status(
                subscription.subscription_id, SubscriptionStatus.EXPIRED
            )
            report.expired_subscriptions.append(subscription.subscription_id)

        for account_id in sorted({s.account_id for s in lapsed}):
            remaining = await self._store.list_subscriptions(
                account_id=account_id, status=SubscriptionStatus.PREMIUM
            )
            if any(s.end_date >= now for s in remaining):
                continue
            account = await self._store.get_account(account_id)
            if account is None or account.status != SubscriptionStatus.PREMIUM:
                continue
            await self._store.set_account_status(account_id, SubscriptionStatus.FREE)
            report.downgraded_accounts.append(account_id)

        if lapsed:
            logger.info(
                "Expired %d subscription(s), downgraded %d account(s)",
                len(report.expired_subscriptions), len(report.downgraded_accounts),
            )
        else:
            logger.debug("No lapsed subscriptions")
        return report
