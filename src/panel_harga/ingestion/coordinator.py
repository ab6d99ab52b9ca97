"""Ingestion coordinator: ordered adapter fallback → normalize → persist.

Adapters are tried strictly one after another. Each gets the full retry
policy; only when it is exhausted does the next one run. A run that
exhausts every adapter is recorded as a failure and leaves the price
tables untouched.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Sequence

from panel_harga.core.clock import Clock
from panel_harga.core.config import RetryConfig
from panel_harga.core.exceptions import ExhaustedRetries, PersistenceFailure
from panel_harga.core.models import (
    IngestionMethod,
    IngestionRun,
    NormalizedObservation,
    PriceObservation,
    Region,
    RunOutcome,
)
from panel_harga.ingestion.normalizer import NameNormalizer
from panel_harga.ingestion.retry import Sleeper, retry_with_policy
from panel_harga.ingestion.sources import SourceAdapter
from panel_harga.ingestion.store import SqliteStore
from panel_harga.ingestion.writer import PriceWriter

logger = logging.getLogger(__name__)


class IngestionCoordinator:
    """Runs one ingestion pass and records it as an IngestionRun."""

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        normalizer: NameNormalizer,
        writer: PriceWriter,
        store: SqliteStore,
        retry_policy: RetryConfig,
        clock: Clock,
        source_ref: str,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        if not adapters:
            raise ValueError("at least one source adapter is required")
        self._adapters = list(adapters)
        self._normalizer = normalizer
        self._writer = writer
        self._store = store
        self._retry_policy = retry_policy
        self._clock = clock
        self._source_ref = source_ref
        self._sleep = sleep

    async def run(self) -> IngestionRun:
        """Fetch, normalize and persist one batch.

        Never raises for adapter failures, classified or not; those end
        up in the returned run's ``errors``.
        """
        run_id = uuid.uuid4().hex
        started_at = self._clock()
        t0 = time.monotonic()
        errors: list[str] = []

        observations: list[PriceObservation] | None = None
        method: IngestionMethod | None = None
        for adapter in self._adapters:
            try:
                observations = await retry_with_policy(
                    adapter.fetch,
                    self._retry_policy,
                    sleep=self._sleep,
                    label=f"{adapter.method} fetch",
                )
            except ExhaustedRetries as e:
                errors.append(f"{adapter.method}: {e}")
                logger.warning("Adapter %s exhausted, falling back", adapter.method)
                continue
            except Exception as e:
                # Unclassified adapter error: not retried, still falls back
                errors.append(f"{adapter.method}: unexpected {type(e).__name__}: {e}")
                logger.exception("Adapter %s failed unexpectedly, falling back", adapter.method)
                continue
            method = adapter.method
            break

        if observations is None:
            run = IngestionRun(
                run_id=run_id,
                outcome=RunOutcome.FAILURE,
                errors=errors,
                duration_seconds=time.monotonic() - t0,
                started_at=started_at,
            )
            logger.error("Ingestion run %s failed: %s", run_id, "; ".join(errors))
            await self._record(run)
            return run

        normalized, skipped, notes = self._normalize(observations, method)
        result = await self._writer.upsert(normalized)
        if result.history_failed:
            notes.append(f"{result.history_failed} history append(s) failed")

        run = IngestionRun(
            run_id=run_id,
            outcome=RunOutcome.SUCCESS,
            method=method,
            item_count=result.succeeded,
            skipped_count=skipped,
            failed_count=result.failed,
            errors=errors + result.errors,
            notes=notes,
            price_dates=result.price_dates,
            duration_seconds=time.monotonic() - t0,
            started_at=started_at,
        )
        logger.info(
            "Ingestion run %s via %s: %d stored, %d skipped, %d failed",
            run_id, method, run.item_count, skipped, run.failed_count,
        )
        await self._record(run)
        return run

    def _normalize(
        self,
        observations: list[PriceObservation],
        method: IngestionMethod,
    ) -> tuple[list[NormalizedObservation], int, list[str]]:
        normalized: list[NormalizedObservation] = []
        unmapped: set[str] = set()
        national = 0

        for obs in observations:
            commodity = self._normalizer.commodity(obs.commodity_label)
            region = self._normalizer.region(obs.region_label)
            if commodity is None or region is None:
                unmapped.add(
                    obs.commodity_label if commodity is None else obs.region_label
                )
                continue
            if region == Region.NASIONAL:
                national += 1
                continue
            normalized.append(
                NormalizedObservation(
                    commodity=commodity,
                    region=region,
                    price=obs.price,
                    unit=obs.unit,
                    observed_at=obs.observed_at,
                    source_ref=f"{self._source_ref}#{method}",
                )
            )

        notes: list[str] = []
        skipped = len(observations) - len(normalized)
        if unmapped:
            notes.append(f"Unmapped labels: {', '.join(sorted(unmapped))}")
        if national:
            notes.append(f"Ignored {national} source-reported national row(s)")
        if skipped:
            logger.info("Skipped %d observation(s) during normalization", skipped)
        return normalized, skipped, notes

    async def _record(self, run: IngestionRun) -> None:
        try:
            await self._store.save_ingestion_run(run)
        except PersistenceFailure as e:
            logger.error("Could not record ingestion run %s: %s", run.run_id, e)
