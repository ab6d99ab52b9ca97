"""National average derivation from regional records."""

from __future__ import annotations

import logging
from datetime import date

from panel_harga.core.clock import Clock
from panel_harga.core.models import Commodity, CommodityRecord, Region
from panel_harga.ingestion.store import SqliteStore
from panel_harga.ingestion.writer import PriceWriter

logger = logging.getLogger(__name__)

NATIONAL_SOURCE_REF = "calculated"


def rounded_mean(prices: list[int]) -> int:
    """Arithmetic mean rounded half-up, in exact integer arithmetic."""
    if not prices:
        raise ValueError("cannot average an empty price list")
    n = len(prices)
    return (2 * sum(prices) + n) // (2 * n)


class NationalAggregator:
    """Writes one NASIONAL record per commodity for a given day.

    Must run after ingestion for that day has finished; the scheduler
    orders the two. Commodities with no active regional record that day
    get no national record.
    """

    def __init__(self, store: SqliteStore, writer: PriceWriter, clock: Clock) -> None:
        self._store = store
        self._writer = writer
        self._clock = clock

    async def compute_national_averages(self, price_date: date) -> dict[Commodity, int]:
        """Upsert national averages for ``price_date``.

        Returns:
            The written average per commodity. Commodities that were
            skipped are absent.
        """
        written: dict[Commodity, int] = {}
        scraped_at = self._clock()

        for commodity in Commodity:
            regional = await self._store.get_regional_prices(commodity, price_date)
            if not regional:
                continue

            average = rounded_mean([r.price for r in regional])
            await self._writer.write_record(
                CommodityRecord(
                    commodity=commodity,
                    region=Region.NASIONAL,
                    price=average,
                    unit=regional[0].unit,
                    price_date=price_date,
                    source_ref=NATIONAL_SOURCE_REF,
                    scraped_at=scraped_at,
                )
            )
            written[commodity] = average
            logger.debug(
                "National %s on %s: %d from %d region(s)",
                commodity, price_date, average, len(regional),
            )

        logger.info(
            "Computed national averages for %d commodit(ies) on %s",
            len(written), price_date,
        )
        return written
