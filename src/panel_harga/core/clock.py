"""Timezone-aware clock helpers.

Price dates are calendar days in the panel's local timezone, so every
component takes a ``Clock`` instead of calling ``datetime.now()``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from panel_harga.core.exceptions import ConfigError

Clock = Callable[[], datetime]


def make_clock(timezone: str) -> Clock:
    """Return a zero-argument callable yielding aware ``now`` in ``timezone``."""
    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(
            f"Unknown timezone: {timezone!r}",
            context={"field": "scheduler.timezone", "value": timezone},
        ) from e

    def _now() -> datetime:
        return datetime.now(tz)

    return _now
