"""Wires the ingestion, aggregation and access components together.

The pipeline exposes the jobs the scheduler, API and CLI trigger:
daily ingestion followed by aggregation, subscription expiry, and
retention cleanup.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import date, timedelta

from panel_harga.access.gateway import TierGateway
from panel_harga.access.subscriptions import SubscriptionReconciler
from panel_harga.core.clock import Clock, make_clock
from panel_harga.core.config import PanelHargaConfig
from panel_harga.core.models import CleanupReport, ExpiryReport, IngestionRun
from panel_harga.ingestion.aggregator import NationalAggregator
from panel_harga.ingestion.browser import RenderedPageAdapter
from panel_harga.ingestion.coordinator import IngestionCoordinator
from panel_harga.ingestion.normalizer import NameNormalizer, load_synonym_tables
from panel_harga.ingestion.retry import Sleeper
from panel_harga.ingestion.sources import SourceAdapter, StructuredSourceAdapter
from panel_harga.ingestion.store import SqliteStore, create_store
from panel_harga.ingestion.writer import PriceWriter

logger = logging.getLogger(__name__)


class PricePipeline:
    """Owns one set of wired components over a single store.

    When ``adapters`` is omitted the structured adapter and the rendered
    page fallback are built from config, in that order, and the
    structured adapter's HTTP client is closed by ``close()``.
    """

    def __init__(
        self,
        config: PanelHargaConfig,
        store: SqliteStore,
        *,
        clock: Clock | None = None,
        adapters: Sequence[SourceAdapter] | None = None,
        normalizer: NameNormalizer | None = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.config = config
        self.store = store
        self.clock = clock or make_clock(config.scheduler.timezone)
        self._owned: list[StructuredSourceAdapter] = []

        if adapters is None:
            structured = StructuredSourceAdapter(config.source, self.clock)
            self._owned.append(structured)
            adapters = [structured, RenderedPageAdapter(config.source, self.clock)]

        if normalizer is None:
            normalizer = NameNormalizer(
                load_synonym_tables(config.normalization.synonyms_path)
            )

        self.normalizer = normalizer
        self.writer = PriceWriter(store, self.clock)
        self.aggregator = NationalAggregator(store, self.writer, self.clock)
        self.coordinator = IngestionCoordinator(
            adapters,
            normalizer,
            self.writer,
            store,
            config.retry,
            self.clock,
            source_ref=config.source.base_url,
            sleep=sleep,
        )
        self.reconciler = SubscriptionReconciler(store, self.clock)
        self.gateway = TierGateway(store, self.clock)

    async def close(self) -> None:
        for adapter in self._owned:
            await adapter.close()
        self._owned.clear()

    async def run_daily_ingestion(self) -> IngestionRun:
        """Ingest, then aggregate today plus every day the run wrote.

        A failed run is returned as-is and aggregation is skipped.
        """
        run = await self.coordinator.run()
        if not run.succeeded:
            logger.warning("Skipping aggregation after failed run %s", run.run_id)
            return run

        for price_date in sorted({self.clock().date(), *run.price_dates}):
            await self.aggregator.compute_national_averages(price_date)
        return run

    async def aggregate(self, price_date: date | None = None) -> dict:
        return await self.aggregator.compute_national_averages(
            price_date or self.clock().date()
        )

    async def expire_subscriptions(self) -> ExpiryReport:
        return await self.reconciler.reconcile()

    async def cleanup(self) -> CleanupReport:
        """Apply the configured retention windows."""
        sched = self.config.scheduler
        now = self.clock()
        today = now.date()
        report = CleanupReport(
            deactivated_prices=await self.store.deactivate_prices_before(
                today - timedelta(days=sched.price_retention_days)
            ),
            pruned_history=await self.store.prune_history_before(
                today - timedelta(days=sched.history_retention_days)
            ),
            deleted_runs=await self.store.prune_ingestion_runs_before(
                now - timedelta(days=sched.run_log_retention_days)
            ),
        )
        logger.info(
            "Cleanup: %d price(s) deactivated, %d history row(s) pruned, %d run log(s) deleted",
            report.deactivated_prices, report.pruned_history, report.deleted_runs,
        )
        return report


@asynccontextmanager
async def open_pipeline(config: PanelHargaConfig, **kwargs) -> AsyncIterator[PricePipeline]:
    """Create the store and pipeline; close both on exit."""
    store = await create_store(config.storage)
    pipeline = None
    try:
        pipeline = PricePipeline(config, store, **kwargs)
        yield pipeline
    finally:
        if pipeline is not None:
            await pipeline.close()
        await store.close()
