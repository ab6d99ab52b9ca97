"""Rendered-page fallback adapter driven by a headless Chromium.

The browser is a scoped resource: ``chromium_page`` launches it for one
``fetch`` and closes it on every exit path, including navigation
timeouts, crashes, and cancellation by the overall deadline.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright
from pydantic import ValidationError

from panel_harga.core.clock import Clock
from panel_harga.core.config import SourceConfig
from panel_harga.core.exceptions import FetchCause, FetchFailure
from panel_harga.core.models import IngestionMethod, PriceObservation
from panel_harga.ingestion.sources import parse_price

logger = logging.getLogger(__name__)

_BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

PageFactory = Callable[[SourceConfig], AbstractAsyncContextManager[Any]]


@asynccontextmanager
async def chromium_page(config: SourceConfig) -> AsyncIterator[Any]:
    """Launch a private headless Chromium and yield a fresh page.

    The browser is never shared across calls and is closed in ``finally``.
    """
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=config.headless, args=_BROWSER_ARGS)
        try:
            context = await browser.new_context(user_agent=config.user_agent)
            yield await context.new_page()
        finally:
            await browser.close()
            logger.debug("Browser closed")


def parse_price_table(html: str) -> list[dict[str, str]]:
    """Extract ``commodity | region | price | unit`` rows from rendered tables.

    Rows with fewer than three cells (headers, spacers) are ignored. The
    unit column is optional.
    """
    soup = BeautifulSoup(html, "html.parser")
    rows: list[dict[str, str]] = []
    for table in soup.find_all("table"):
        body = table.find("tbody") or table
        for tr in body.find_all("tr"):
            cells = [td.get_text(" ", strip=True) for td in tr.find_all("td")]
            if len(cells) < 3:
                continue
            rows.append(
                {
                    "commodity": cells[0],
                    "region": cells[1],
                    "price": cells[2],
                    "unit": cells[3] if len(cells) > 3 and cells[3] else "kg",
                }
            )
    return rows


class RenderedPageAdapter:
    """Loads the source page in a headless browser and scrapes its tables.

    Used only after the structured adapter is exhausted. Rendered rows
    carry no date of their own, so they are stamped with the clock.
    """

    method = IngestionMethod.RENDERED

    def __init__(
        self,
        config: SourceConfig,
        clock: Clock,
        page_factory: PageFactory = chromium_page,
    ) -> None:
        self._config = config
        self._clock = clock
        self._page_factory = page_factory

    async def fetch(self) -> list[PriceObservation]:
        """Render the page and return its table rows as observations.

        Raises:
            FetchFailure: ``navigation_timeout`` when the page or the
                overall deadline times out, ``no_content`` when the content
                marker never appears or no rows parse, ``browser_crash``
                for any other browser error.
        """
        url = self._config.page_url
        try:
            html = await asyncio.wait_for(
                self._render(url), timeout=self._config.total_timeout
            )
        except FetchFailure:
            raise
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as e:
            raise FetchFailure(
                f"Timed out rendering {url}",
                cause=FetchCause.NAVIGATION_TIMEOUT,
                context={"url": url},
            ) from e
        except PlaywrightError as e:
            raise FetchFailure(
                f"Browser failed on {url}: {e}",
                cause=FetchCause.BROWSER_CRASH,
                context={"url": url},
            ) from e

        observations = self._to_observations(parse_price_table(html))
        if not observations:
            raise FetchFailure(
                f"No price rows found on {url}",
                cause=FetchCause.NO_CONTENT,
                context={"url": url},
            )
        logger.info("Rendered page %s yielded %d rows", url, len(observations))
        return observations

    async def _render(self, url: str) -> str:
        nav_ms = self._config.navigation_timeout * 1000
        content_ms = self._config.content_timeout * 1000
        async with self._page_factory(self._config) as page:
            logger.info("Navigating to %s", url)
            await page.goto(url, wait_until="networkidle", timeout=nav_ms)
            try:
                await page.wait_for_selector(self._config.content_selector, timeout=content_ms)
            except PlaywrightTimeoutError as e:
                raise FetchFailure(
                    f"Content marker {self._config.content_selector!r} never appeared",
                    cause=FetchCause.NO_CONTENT,
                    context={"url": url},
                ) from e
            return await page.content()

    def _to_observations(self, rows: list[dict[str, str]]) -> list[PriceObservation]:
        now = self._clock()
        results: list[PriceObservation] = []
        for row in rows:
            price = parse_price(row["price"])
            if price is None or not row["commodity"] or not row["region"]:
                continue
            try:
                results.append(
                    PriceObservation(
                        commodity_label=row["commodity"],
                        region_label=row["region"],
                        price=price,
                        unit=row["unit"],
                        observed_at=now,
                    )
                )
            except ValidationError:
                continue
        skipped = len(rows) - len(results)
        if skipped:
            logger.warning("Skipped %d unusable rendered row(s)", skipped)
        return results
