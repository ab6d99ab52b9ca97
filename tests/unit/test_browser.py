"""Tests for panel_harga.ingestion.browser (RenderedPageAdapter).

A fake page factory stands in for Chromium so the release guarantees can
be checked on every exit path.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from panel_harga.core.config import SourceConfig
from panel_harga.core.exceptions import FetchCause, FetchFailure
from panel_harga.core.models import IngestionMethod
import panel_harga.ingestion.browser as browser_module
from panel_harga.ingestion.browser import RenderedPageAdapter, chromium_page, parse_price_table
from panel_harga.ingestion.sources import SourceAdapter

PRICE_TABLE = """
<html><body>
<table class="price-table">
  <thead><tr><th>Komoditas</th><th>Provinsi</th><th>Harga</th><th>Satuan</th></tr></thead>
  <tbody>
    <tr><td>Beras Premium</td><td>Jawa Barat</td><td>Rp 14.500</td><td>kg</td></tr>
    <tr><td>Telur Ayam Ras</td><td>Bali</td><td>Rp 28.000</td><td></td></tr>
    <tr><td>Gula Pasir</td><td>Aceh</td><td>-</td><td>kg</td></tr>
    <tr><td colspan="3">Sumber: Badan Pangan Nasional</td></tr>
  </tbody>
</table>
</body></html>
"""


class FakePage:
    def __init__(self, html=PRICE_TABLE, goto_error=None, selector_error=None, hang=False):
        self.html = html
        self.goto_error = goto_error
        self.selector_error = selector_error
        self.hang = hang
        self.visited: list[str] = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.hang:
            await asyncio.sleep(3600)
        if self.goto_error is not None:
            raise self.goto_error

    async def wait_for_selector(self, selector, timeout=None):
        if self.selector_error is not None:
            raise self.selector_error

    async def content(self):
        return self.html


class FakeBrowser:
    """Page factory recording how many pages were opened and released."""

    def __init__(self, page: FakePage):
        self.page = page
        self.opened = 0
        self.released = 0

    @asynccontextmanager
    async def __call__(self, config):
        self.opened += 1
        try:
            yield self.page
        finally:
            self.released += 1



class FakeChromium:
    """Stands in for a launched Chromium; records launch options and close."""

    def __init__(self, page: FakePage):
        self.page = page
        self.launch_kwargs: dict = {}
        self.context_kwargs: dict = {}
        self.closed = 0

    async def launch(self, **kwargs):
        self.launch_kwargs = kwargs
        return self

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        return self

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed += 1


class FakePlaywright:
    """Replacement for ``async_playwright()``: an async context manager driver."""

    def __init__(self, chromium: FakeChromium):
        self.chromium = chromium
        self.stopped = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.stopped = True
        return False


@pytest.fixture
def fake_playwright(monkeypatch):
    """Patch the Playwright entry point used by chromium_page."""

    def _install(page: FakePage) -> FakePlaywright:
        driver = FakePlaywright(FakeChromium(page))
        monkeypatch.setattr(browser_module, "async_playwright", lambda: driver)
        return driver

    return _install

@pytest.fixture
def source_config() -> SourceConfig:
    return SourceConfig(base_url="https://panel.test", page_path="/harga", total_timeout=90.0)


def make_adapter(source_config, clock, page: FakePage) -> tuple[RenderedPageAdapter, FakeBrowser]:
    browser = FakeBrowser(page)
    return RenderedPageAdapter(source_config, clock, page_factory=browser), browser


class TestParsePriceTable:
    def test_rows(self):
        rows = parse_price_table(PRICE_TABLE)
        assert len(rows) == 3
        assert rows[0] == {
            "commodity": "Beras Premium",
            "region": "Jawa Barat",
            "price": "Rp 14.500",
            "unit": "kg",
        }
        assert rows[1]["unit"] == "kg"

    def test_no_table(self):
        assert parse_price_table("<html><p>Sedang dalam perbaikan</p></html>") == []


class TestRenderedPageAdapter:
    def test_satisfies_protocol(self, source_config, clock):
        adapter, _ = make_adapter(source_config, clock, FakePage())
        assert isinstance(adapter, SourceAdapter)
        assert adapter.method == IngestionMethod.RENDERED

    async def test_success(self, source_config, clock, now):
        page = FakePage()
        adapter, browser = make_adapter(source_config, clock, page)
        observations = await adapter.fetch()
        assert [o.price for o in observations] == [14500, 28000]
        assert all(o.observed_at == now for o in observations)
        assert page.visited == ["https://panel.test/harga"]
        assert browser.released == browser.opened == 1

    async def test_navigation_timeout_releases_page(self, source_config, clock):
        page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        adapter, browser = make_adapter(source_config, clock, page)
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.NAVIGATION_TIMEOUT
        assert browser.released == 1

    async def test_overall_deadline_releases_page(self, clock):
        config = SourceConfig(
            base_url="https://panel.test", navigation_timeout=0.01, total_timeout=0.05
        )
        adapter, browser = make_adapter(config, clock, FakePage(hang=True))
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.NAVIGATION_TIMEOUT
        assert browser.released == 1

    async def test_missing_content_marker(self, source_config, clock):
        page = FakePage(selector_error=PlaywrightTimeoutError("waiting for selector"))
        adapter, browser = make_adapter(source_config, clock, page)
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.NO_CONTENT
        assert browser.released == 1

    async def test_browser_crash(self, source_config, clock):
        page = FakePage(goto_error=PlaywrightError("Target page, context or browser has been closed"))
        adapter, browser = make_adapter(source_config, clock, page)
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.BROWSER_CRASH
        assert browser.released == 1

    async def test_no_rows_is_no_content(self, source_config, clock):
        page = FakePage(html="<table><tr><td>kosong</td></tr></table>")
        adapter, browser = make_adapter(source_config, clock, page)
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.NO_CONTENT
        assert browser.released == 1


class TestChromiumPage:
    async def test_yields_page_and_closes_browser(self, source_config, fake_playwright):
        page = FakePage()
        driver = fake_playwright(page)
        async with chromium_page(source_config) as yielded:
            assert yielded is page
            assert driver.chromium.closed == 0
        assert driver.chromium.closed == 1
        assert driver.stopped
        assert driver.chromium.launch_kwargs["headless"] == source_config.headless
        assert "--no-sandbox" in driver.chromium.launch_kwargs["args"]
        assert driver.chromium.context_kwargs == {"user_agent": source_config.user_agent}

    async def test_goto_timeout_closes_browser(self, source_config, clock, fake_playwright):
        driver = fake_playwright(
            FakePage(goto_error=PlaywrightTimeoutError("Timeout 30000ms exceeded"))
        )
        adapter = RenderedPageAdapter(source_config, clock)
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.NAVIGATION_TIMEOUT
        assert driver.chromium.closed == 1
        assert driver.stopped

    async def test_overall_deadline_closes_browser(self, clock, fake_playwright):
        config = SourceConfig(
            base_url="https://panel.test", navigation_timeout=0.01, total_timeout=0.05
        )
        driver = fake_playwright(FakePage(hang=True))
        adapter = RenderedPageAdapter(config, clock)
        with pytest.raises(FetchFailure) as exc_info:
            await adapter.fetch()
        assert exc_info.value.cause == FetchCause.NAVIGATION_TIMEOUT
        assert driver.chromium.closed == 1
