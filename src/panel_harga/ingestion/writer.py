"""Idempotent price upsert followed by an append to the history ledger."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from panel_harga.core.clock import Clock
from panel_harga.core.exceptions import PersistenceFailure
from panel_harga.core.models import (
    CommodityRecord,
    NormalizedObservation,
    PriceHistoryEntry,
    UpsertResult,
)
from panel_harga.ingestion.store import SqliteStore

logger = logging.getLogger(__name__)


class PriceWriter:
    """Writes canonical records and their ledger entries.

    Each record is upserted on (commodity, region, price_date) and then one
    history entry is appended. The two writes are separate: a failed
    append is counted but does not undo the upsert. A failed upsert skips
    that record's append so the ledger never holds a price the record
    table did not accept.
    """

    def __init__(self, store: SqliteStore, clock: Clock) -> None:
        self._store = store
        self._clock = clock

    async def write_record(self, record: CommodityRecord) -> bool:
        """Upsert ``record`` and append its history entry.

        Returns:
            True when the history entry was appended as well.

        Raises:
            PersistenceFailure: when the upsert itself fails.
        """
        await self._store.upsert_price(record)
        try:
            await self._store.append_history(
                PriceHistoryEntry(
                    commodity=record.commodity,
                    region=record.region,
                    price=record.price,
                    price_date=record.price_date,
                    recorded_at=record.scraped_at,
                )
            )
        except PersistenceFailure as e:
            logger.warning(
                "History append failed for %s/%s on %s: %s",
                record.commodity, record.region, record.price_date, e,
            )
            return False
        return True

    async def upsert(self, observations: Iterable[NormalizedObservation]) -> UpsertResult:
        """Persist a batch, continuing past per-record failures."""
        result = UpsertResult()
        dates: set = set()
        scraped_at = self._clock()

        for obs in observations:
            record = CommodityRecord(
                commodity=obs.commodity,
                region=obs.region,
                price=obs.price,
                unit=obs.unit,
                price_date=obs.price_date,
                source_ref=obs.source_ref,
                scraped_at=scraped_at,
            )
            try:
                history_ok = await self.write_record(record)
            except PersistenceFailure as e:
                logger.error(
                    "Upsert failed for %s/%s on %s: %s",
                    obs.commodity, obs.region, obs.price_date, e,
                )
                result.failed += 1
                result.errors.append(str(e))
                continue

            result.succeeded += 1
            dates.add(record.price_date)
            if not history_ok:
                result.history_failed += 1

        result.price_dates = sorted(dates)
        logger.info(
            "Persisted %d record(s), %d failed, %d history append(s) failed",
            result.succeeded, result.failed, result.history_failed,
        )
        return result
