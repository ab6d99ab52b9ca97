"""Source adapter protocol and the structured (JSON endpoint) adapter.

Architecture
------------
Each adapter is a pure producer:

    external source → SourceAdapter.fetch() → list[PriceObservation]

Adapters neither normalize labels nor touch the store. The coordinator
holds an ordered list of adapters and falls back down the list, so adding
a strategy means writing one class with a ``method`` and a ``fetch``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol, runtime_checkable

import httpx
from aiolimiter import AsyncLimiter
from pydantic import ValidationError

from panel_harga.core.clock import Clock
from panel_harga.core.config import SourceConfig
from panel_harga.core.exceptions import FetchCause, FetchFailure
from panel_harga.core.models import IngestionMethod, PriceObservation

logger = logging.getLogger(__name__)

# Field aliases seen in the source's JSON, in lookup order
_COMMODITY_KEYS = ("komoditas", "commodity", "nama_komoditas")
_REGION_KEYS = ("provinsi", "province", "nama_provinsi", "wilayah")
_PRICE_KEYS = ("harga", "price", "harga_rata_rata")
_UNIT_KEYS = ("satuan", "unit")
_DATE_KEYS = ("tanggal", "date")

_THOUSANDS_DOT = re.compile(r"^\d{1,3}(\.\d{3})+$")
_THOUSANDS_COMMA = re.compile(r"^\d{1,3}(,\d{3})+$")


@runtime_checkable
class SourceAdapter(Protocol):
    """One strategy for obtaining raw price observations.

    Implementations raise ``FetchFailure`` for any transport, status,
    parsing or rendering problem and never write to the store.
    """

    method: IngestionMethod

    async def fetch(self) -> list[PriceObservation]: ...


def parse_price(value: Any) -> int | None:
    """Parse a rupiah amount into a positive integer, or None.

    Accepts numbers and Indonesian-formatted strings: ``"Rp 15.000"`` is
    15000, ``"15.000,50"`` rounds half-up to 15001. A lone separator
    followed by exactly three digits is read as a thousands separator.
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        # "Rp." leaves a stray leading separator
        cleaned = re.sub(r"[^\d.,]", "", str(value)).strip(".,")
        if not cleaned or not any(ch.isdigit() for ch in cleaned):
            return None
        if "." in cleaned and "," in cleaned:
            # Whichever separator comes last is the decimal mark
            if cleaned.rfind(",") > cleaned.rfind("."):
                cleaned = cleaned.replace(".", "").replace(",", ".")
            else:
                cleaned = cleaned.replace(",", "")
        elif "." in cleaned:
            if _THOUSANDS_DOT.match(cleaned):
                cleaned = cleaned.replace(".", "")
        elif "," in cleaned:
            if _THOUSANDS_COMMA.match(cleaned):
                cleaned = cleaned.replace(",", "")
            else:
                cleaned = cleaned.replace(",", ".")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            return None

    if not amount.is_finite():
        return None
    rounded = int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return rounded if rounded > 0 else None


def parse_observed_at(value: Any, default: datetime) -> datetime:
    """Parse an ISO date or datetime; fall back to ``default``.

    Date-only values become midnight in ``default``'s timezone.
    """
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=default.tzinfo)
    text = str(value).strip()
    try:
        if len(text) == 10:
            return datetime.combine(
                date.fromisoformat(text), time.min, tzinfo=default.tzinfo
            )
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=default.tzinfo)
    return parsed


def _first(item: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        if key in item and item[key] not in (None, ""):
            return item[key]
    return None


def observations_from_payload(payload: Any, now: datetime) -> list[PriceObservation]:
    """Convert a decoded JSON payload into observations.

    The payload is either ``{"data": [...]}`` or a bare list of row
    objects. Rows missing a label or a usable price are skipped; a payload
    with no row list at all is a parse failure.
    """
    if isinstance(payload, dict):
        rows = payload.get("data")
    else:
        rows = payload
    if not isinstance(rows, list):
        raise FetchFailure(
            "Payload has no list of price rows",
            cause=FetchCause.PARSE,
            context={"payload_type": type(payload).__name__},
        )

    results: list[PriceObservation] = []
    skipped = 0
    for row in rows:
        if not isinstance(row, dict):
            skipped += 1
            continue
        commodity = _first(row, _COMMODITY_KEYS)
        region = _first(row, _REGION_KEYS)
        price = parse_price(_first(row, _PRICE_KEYS))
        if not commodity or not region or price is None:
            skipped += 1
            continue
        try:
            results.append(
                PriceObservation(
                    commodity_label=str(commodity),
                    region_label=str(region),
                    price=price,
                    unit=str(_first(row, _UNIT_KEYS) or "kg"),
                    observed_at=parse_observed_at(_first(row, _DATE_KEYS), now),
                )
            )
        except ValidationError:
            skipped += 1

    if skipped:
        logger.warning("Skipped %d malformed row(s) in structured payload", skipped)
    return results


class StructuredSourceAdapter:
    """Fetches prices from the source's machine-readable JSON endpoints.

    Endpoints are tried in configured order within a single ``fetch``; the
    first that yields at least one observation wins. All requests share an
    ``AsyncLimiter`` so retries cannot hammer the source.

    Use via ``async with StructuredSourceAdapter(...) as adapter:``.
    """

    method = IngestionMethod.STRUCTURED

    def __init__(self, config: SourceConfig, clock: Clock) -> None:
        self._config = config
        self._clock = clock
        self._limiter = AsyncLimiter(max_rate=config.requests_per_minute, time_period=60.0)
        self._client = httpx.AsyncClient(
            headers={
                "User-Agent": config.user_agent,
                "Accept": "application/json",
                "Referer": config.base_url,
            },
            timeout=httpx.Timeout(config.request_timeout),
            follow_redirects=True,
        )

    async def __aenter__(self) -> StructuredSourceAdapter:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    async def fetch(self) -> list[PriceObservation]:
        """Return observations from the first endpoint that produces any.

        Raises:
            FetchFailure: when every endpoint fails; carries the cause of
                the last endpoint tried.
        """
        last_failure: FetchFailure | None = None
        for endpoint in self._config.api_endpoints:
            url = f"{self._config.base_url}{endpoint}"
            try:
                observations = await self._fetch_endpoint(url)
            except FetchFailure as e:
                logger.info("Structured endpoint %s failed: %s", url, e)
                last_failure = e
                continue
            logger.info("Structured endpoint %s returned %d rows", url, len(observations))
            return observations

        assert last_failure is not None
        raise last_failure

    async def _fetch_endpoint(self, url: str) -> list[PriceObservation]:
        try:
            await self._limiter.acquire()
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise FetchFailure(
                f"Request to {url} failed: {e}",
                cause=FetchCause.NETWORK,
                context={"url": url, "error": type(e).__name__},
            ) from e

        if response.status_code != 200:
            raise FetchFailure(
                f"HTTP {response.status_code} from {url}",
                cause=FetchCause.HTTP_STATUS,
                context={"url": url, "status_code": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FetchFailure(
                f"Unparseable JSON from {url}",
                cause=FetchCause.PARSE,
                context={"url": url},
            ) from e

        observations = observations_from_payload(payload, self._clock())
        if not observations:
            raise FetchFailure(
                f"No usable price rows from {url}",
                cause=FetchCause.PARSE,
                context={"url": url},
            )
        return observations
