"""Storage backend: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import json
import logging
from datetime import UTC, date, datetime
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite

from panel_harga.core.config import StorageConfig
from panel_harga.core.exceptions import PersistenceFailure
from panel_harga.core.models import (
    Account,
    Commodity,
    CommodityRecord,
    Entitlement,
    IngestionMethod,
    IngestionRun,
    PriceHistoryEntry,
    Region,
    RunOutcome,
    Subscription,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)


def _dt_to_text(value: datetime) -> str:
    """Serialize as fixed-width UTC so stored timestamps sort lexically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _text_to_dt(value: str) -> datetime:
    return datetime.fromisoformat(value)


@runtime_checkable
class PriceStore(Protocol):
    """Abstract storage interface for panel-harga data."""

    async def upsert_price(self, record: CommodityRecord) -> None: ...
    async def append_history(self, entry: PriceHistoryEntry) -> None: ...
    async def get_prices(
        self,
        price_date: date,
        region: Region | None = None,
        commodities: tuple[Commodity, ...] | None = None,
        active_only: bool = True,
    ) -> list[CommodityRecord]: ...
    async def get_regional_prices(
        self, commodity: Commodity, price_date: date
    ) -> list[CommodityRecord]: ...
    async def latest_price_date(
        self, region: Region, on_or_before: date | None = None
    ) -> date | None: ...
    async def get_history(
        self,
        region: Region,
        since: date,
        commodities: tuple[Commodity, ...] | None = None,
    ) -> list[PriceHistoryEntry]: ...
    async def save_ingestion_run(self, run: IngestionRun) -> None: ...
    async def list_ingestion_runs(self, limit: int = 20) -> list[IngestionRun]: ...
    async def get_ingestion_run(self, run_id: str) -> IngestionRun | None: ...
    async def get_entitlement(self, account_id: str) -> Entitlement: ...
    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...


class SqliteStore:
    """SQLite implementation of the storage protocol.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. Prices are upserted with
    ``INSERT … ON CONFLICT`` so one statement decides insert-or-update.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS commodity_prices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    commodity TEXT NOT NULL,
                    region TEXT NOT NULL,
                    price INTEGER NOT NULL CHECK (price >= 0),
                    unit TEXT NOT NULL,
                    price_date TEXT NOT NULL,
                    source_ref TEXT NOT NULL,
                    scraped_at TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    UNIQUE(commodity, region, price_date)
                )""",
                """CREATE TABLE IF NOT EXISTS price_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    commodity TEXT NOT NULL,
                    region TEXT NOT NULL,
                    price INTEGER NOT NULL,
                    price_date TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS ingestion_runs (
                    run_id TEXT PRIMARY KEY,
                    outcome TEXT NOT NULL,
                    method TEXT,
                    item_count INTEGER NOT NULL,
                    skipped_count INTEGER NOT NULL,
                    failed_count INTEGER NOT NULL,
                    errors_json TEXT NOT NULL,
                    notes_json TEXT NOT NULL,
                    price_dates_json TEXT NOT NULL,
                    duration_seconds REAL NOT NULL,
                    started_at TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    email TEXT NOT NULL,
                    status TEXT NOT NULL
                )""",
                """CREATE TABLE IF NOT EXISTS subscriptions (
                    subscription_id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL REFERENCES accounts(account_id),
                    status TEXT NOT NULL,
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL
                )""",
                # Indexes
                "CREATE INDEX IF NOT EXISTS idx_prices_date_region ON commodity_prices(price_date, region)",
                "CREATE INDEX IF NOT EXISTS idx_history_lookup ON price_history(commodity, region, price_date)",
                "CREATE INDEX IF NOT EXISTS idx_runs_started ON ingestion_runs(started_at)",
                "CREATE INDEX IF NOT EXISTS idx_subs_account ON subscriptions(account_id)",
                "CREATE INDEX IF NOT EXISTS idx_subs_status ON subscriptions(status, end_date)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL + FK, run migrations."""
        try:
            self._db = await aiosqlite.connect(self._path)
            self._db.row_factory = aiosqlite.Row
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA foreign_keys=ON")
            current = await self._get_schema_version()
            await self._apply_migrations(current)
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to initialize SQLite store: {e}",
                context={"operation": "initialize", "path": self._path},
            ) from e

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except aiosqlite.Error:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    # --- Price Operations ---

    async def upsert_price(self, record: CommodityRecord) -> None:
        """Insert or overwrite the record keyed on (commodity, region, price_date).

        An existing row keeps its source_ref and is re-activated.
        """
        try:
            await self._db.execute(
                """INSERT INTO commodity_prices
                   (commodity, region, price, unit, price_date, source_ref,
                    scraped_at, is_active)
                   VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                   ON CONFLICT(commodity, region, price_date) DO UPDATE SET
                       price = excluded.price,
                       unit = excluded.unit,
                       scraped_at = excluded.scraped_at,
                       is_active = 1""",
                (
                    str(record.commodity),
                    str(record.region),
                    record.price,
                    record.unit,
                    record.price_date.isoformat(),
                    record.source_ref,
                    _dt_to_text(record.scraped_at),
                ),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to upsert price: {e}",
                context={
                    "operation": "upsert",
                    "table": "commodity_prices",
                    "key": f"{record.commodity}/{record.region}/{record.price_date}",
                },
            ) from e

    async def get_prices(
        self,
        price_date: date,
        region: Region | None = None,
        commodities: tuple[Commodity, ...] | None = None,
        active_only: bool = True,
    ) -> list[CommodityRecord]:
        try:
            query = "SELECT * FROM commodity_prices WHERE price_date = ?"
            params: list = [price_date.isoformat()]
            if region is not None:
                query += " AND region = ?"
                params.append(str(region))
            if commodities:
                query += f" AND commodity IN ({','.join('?' * len(commodities))})"
                params.extend(str(c) for c in commodities)
            if active_only:
                query += " AND is_active = 1"
            query += " ORDER BY commodity ASC, region ASC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_record(r) for r in rows]
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to get prices: {e}",
                context={"operation": "query", "table": "commodity_prices"},
            ) from e

    async def get_regional_prices(
        self, commodity: Commodity, price_date: date
    ) -> list[CommodityRecord]:
        """Active records for one commodity and day, excluding NASIONAL."""
        try:
            async with self._db.execute(
                """SELECT * FROM commodity_prices
                   WHERE commodity = ? AND price_date = ?
                     AND region != ? AND is_active = 1
                   ORDER BY region ASC""",
                (str(commodity), price_date.isoformat(), str(Region.NASIONAL)),
            ) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_record(r) for r in rows]
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to get regional prices: {e}",
                context={"operation": "query", "table": "commodity_prices"},
            ) from e

    async def latest_price_date(
        self, region: Region, on_or_before: date | None = None
    ) -> date | None:
        try:
            query = "SELECT MAX(price_date) FROM commodity_prices WHERE region = ? AND is_active = 1"
            params: list = [str(region)]
            if on_or_before is not None:
                query += " AND price_date <= ?"
                params.append(on_or_before.isoformat())
            async with self._db.execute(query, params) as cursor:
                row = await cursor.fetchone()
            return date.fromisoformat(row[0]) if row[0] else None
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to get latest price date: {e}",
                context={"operation": "query", "table": "commodity_prices"},
            ) from e

    async def deactivate_prices_before(self, cutoff: date) -> int:
        """Clear the active flag on records older than ``cutoff``. Rows are kept."""
        try:
            cursor = await self._db.execute(
                """UPDATE commodity_prices SET is_active = 0
                   WHERE price_date < ? AND is_active = 1""",
                (cutoff.isoformat(),),
            )
            await self._db.commit()
            return cursor.rowcount
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to deactivate prices: {e}",
                context={"operation": "update", "table": "commodity_prices"},
            ) from e

    # --- History Operations ---

    async def append_history(self, entry: PriceHistoryEntry) -> None:
        try:
            await self._db.execute(
                """INSERT INTO price_history
                   (commodity, region, price, price_date, recorded_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    str(entry.commodity),
                    str(entry.region),
                    entry.price,
                    entry.price_date.isoformat(),
                    _dt_to_text(entry.recorded_at or datetime.now(UTC)),
                ),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to append history: {e}",
                context={"operation": "insert", "table": "price_history"},
            ) from e

    async def get_history(
        self,
        region: Region,
        since: date,
        commodities: tuple[Commodity, ...] | None = None,
    ) -> list[PriceHistoryEntry]:
        try:
            query = "SELECT * FROM price_history WHERE region = ? AND price_date >= ?"
            params: list = [str(region), since.isoformat()]
            if commodities:
                query += f" AND commodity IN ({','.join('?' * len(commodities))})"
                params.extend(str(c) for c in commodities)
            query += " ORDER BY price_date ASC, id ASC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_history(r) for r in rows]
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to get history: {e}",
                context={"operation": "query", "table": "price_history"},
            ) from e

    async def prune_history_before(self, cutoff: date) -> int:
        """Retention pruning. The only path that deletes ledger rows."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM price_history WHERE price_date < ?",
                (cutoff.isoformat(),),
            )
            await self._db.commit()
            return cursor.rowcount
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to prune history: {e}",
                context={"operation": "delete", "table": "price_history"},
            ) from e

    # --- Ingestion Run Operations ---

    async def save_ingestion_run(self, run: IngestionRun) -> None:
        try:
            await self._db.execute(
                """INSERT INTO ingestion_runs
                   (run_id, outcome, method, item_count, skipped_count,
                    failed_count, errors_json, notes_json, price_dates_json,
                    duration_seconds, started_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    run.run_id,
                    str(run.outcome),
                    str(run.method) if run.method else None,
                    run.item_count,
                    run.skipped_count,
                    run.failed_count,
                    json.dumps(run.errors),
                    json.dumps(run.notes),
                    json.dumps([d.isoformat() for d in run.price_dates]),
                    run.duration_seconds,
                    _dt_to_text(run.started_at),
                ),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to save ingestion run: {e}",
                context={"operation": "insert", "table": "ingestion_runs"},
            ) from e

    async def list_ingestion_runs(self, limit: int = 20) -> list[IngestionRun]:
        try:
            async with self._db.execute(
                "SELECT * FROM ingestion_runs ORDER BY started_at DESC LIMIT ?",
                (limit,),
            ) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_run(r) for r in rows]
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to list ingestion runs: {e}",
                context={"operation": "query", "table": "ingestion_runs"},
            ) from e

    async def get_ingestion_run(self, run_id: str) -> IngestionRun | None:
        try:
            async with self._db.execute(
                "SELECT * FROM ingestion_runs WHERE run_id = ?", (run_id,)
            ) as cursor:
                row = await cursor.fetchone()
            return self._row_to_run(row) if row is not None else None
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to get ingestion run: {e}",
                context={"operation": "query", "table": "ingestion_runs"},
            ) from e

    async def prune_ingestion_runs_before(self, cutoff: datetime) -> int:
        try:
            cursor = await self._db.execute(
                "DELETE FROM ingestion_runs WHERE started_at < ?",
                (_dt_to_text(cutoff),),
            )
            await self._db.commit()
            return cursor.rowcount
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to prune ingestion runs: {e}",
                context={"operation": "delete", "table": "ingestion_runs"},
            ) from e

    # --- Account & Subscription Operations ---

    async def save_account(self, account: Account) -> None:
        try:
            await self._db.execute(
                """INSERT OR REPLACE INTO accounts (account_id, email, status)
                   VALUES (?, ?, ?)""",
                (account.account_id, account.email, str(account.status)),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to save account: {e}",
                context={"operation": "insert", "table": "accounts"},
            ) from e

    async def get_account(self, account_id: str) -> Account | None:
        try:
            async with self._db.execute(
                "SELECT * FROM accounts WHERE account_id = ?", (account_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            return Account(
                account_id=row["account_id"],
                email=row["email"],
                status=SubscriptionStatus(row["status"]),
            )
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to get account: {e}",
                context={"operation": "query", "table": "accounts"},
            ) from e

    async def set_account_status(self, account_id: str, status: SubscriptionStatus) -> None:
        try:
            await self._db.execute(
                "UPDATE accounts SET status = ? WHERE account_id = ?",
                (str(status), account_id),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to update account status: {e}",
                context={"operation": "update", "table": "accounts"},
            ) from e

    async def save_subscription(self, subscription: Subscription) -> None:
        try:
            await self._db.execute(
                """INSERT OR REPLACE INTO subscriptions
                   (subscription_id, account_id, status, start_date, end_date)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    subscription.subscription_id,
                    subscription.account_id,
                    str(subscription.status),
                    _dt_to_text(subscription.start_date),
                    _dt_to_text(subscription.end_date),
                ),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to save subscription: {e}",
                context={"operation": "insert", "table": "subscriptions"},
            ) from e

    async def list_subscriptions(
        self,
        account_id: str | None = None,
        status: SubscriptionStatus | None = None,
    ) -> list[Subscription]:
        try:
            query = "SELECT * FROM subscriptions WHERE 1=1"
            params: list = []
            if account_id is not None:
                query += " AND account_id = ?"
                params.append(account_id)
            if status is not None:
                query += " AND status = ?"
                params.append(str(status))
            query += " ORDER BY end_date DESC"
            async with self._db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_subscription(r) for r in rows]
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to list subscriptions: {e}",
                context={"operation": "query", "table": "subscriptions"},
            ) from e

    async def find_lapsed_subscriptions(self, now: datetime) -> list[Subscription]:
        """PREMIUM subscriptions whose end_date is already in the past."""
        try:
            async with self._db.execute(
                """SELECT * FROM subscriptions
                   WHERE status = ? AND end_date < ?
                   ORDER BY end_date ASC""",
                (str(SubscriptionStatus.PREMIUM), _dt_to_text(now)),
            ) as cursor:
                rows = await cursor.fetchall()
            return [self._row_to_subscription(r) for r in rows]
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to find lapsed subscriptions: {e}",
                context={"operation": "query", "table": "subscriptions"},
            ) from e

    async def set_subscription_status(
        self, subscription_id: str, status: SubscriptionStatus
    ) -> None:
        try:
            await self._db.execute(
                "UPDATE subscriptions SET status = ? WHERE subscription_id = ?",
                (str(status), subscription_id),
            )
            await self._db.commit()
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to update subscription status: {e}",
                context={"operation": "update", "table": "subscriptions"},
            ) from e

    async def get_entitlement(self, account_id: str) -> Entitlement:
        """Current tier and expiry for an account, read straight from storage.

        Unknown accounts are FREE. A PREMIUM account reports the latest
        end_date among its PREMIUM subscriptions.
        """
        account = await self.get_account(account_id)
        if account is None:
            return Entitlement(account_id=account_id, status=SubscriptionStatus.FREE)
        premium = await self.list_subscriptions(
            account_id=account_id, status=SubscriptionStatus.PREMIUM
        )
        expires_at = premium[0].end_date if premium else None
        return Entitlement(
            account_id=account_id, status=account.status, expires_at=expires_at
        )

    # --- Statistics ---

    async def get_statistics(self) -> dict:
        try:
            stats: dict = {}
            for key, sql in (
                ("active_prices", "SELECT COUNT(*) FROM commodity_prices WHERE is_active = 1"),
                ("history_entries", "SELECT COUNT(*) FROM price_history"),
                ("ingestion_runs", "SELECT COUNT(*) FROM ingestion_runs"),
                ("latest_price_date", "SELECT MAX(price_date) FROM commodity_prices"),
            ):
                async with self._db.execute(sql) as cursor:
                    row = await cursor.fetchone()
                stats[key] = row[0]
            return stats
        except Exception as e:
            raise PersistenceFailure(
                f"Failed to gather statistics: {e}",
                context={"operation": "query", "table": "*"},
            ) from e

    # --- Row Mapping Helpers ---

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> CommodityRecord:
        return CommodityRecord(
            commodity=Commodity(row["commodity"]),
            region=Region(row["region"]),
            price=row["price"],
            unit=row["unit"],
            price_date=date.fromisoformat(row["price_date"]),
            source_ref=row["source_ref"],
            scraped_at=_text_to_dt(row["scraped_at"]),
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _row_to_history(row: aiosqlite.Row) -> PriceHistoryEntry:
        return PriceHistoryEntry(
            commodity=Commodity(row["commodity"]),
            region=Region(row["region"]),
            price=row["price"],
            price_date=date.fromisoformat(row["price_date"]),
            recorded_at=_text_to_dt(row["recorded_at"]),
        )

    @staticmethod
    def _row_to_run(row: aiosqlite.Row) -> IngestionRun:
        return IngestionRun(
            run_id=row["run_id"],
            outcome=RunOutcome(row["outcome"]),
            method=IngestionMethod(row["method"]) if row["method"] else None,
            item_count=row["item_count"],
            skipped_count=row["skipped_count"],
            failed_count=row["failed_count"],
            errors=json.loads(row["errors_json"]),
            notes=json.loads(row["notes_json"]),
            price_dates=[date.fromisoformat(d) for d in json.loads(row["price_dates_json"])],
            duration_seconds=row["duration_seconds"],
            started_at=_text_to_dt(row["started_at"]),
        )

    @staticmethod
    def _row_to_subscription(row: aiosqlite.Row) -> Subscription:
        return Subscription(
            subscription_id=row["subscription_id"],
            account_id=row["account_id"],
            status=SubscriptionStatus(row["status"]),
            start_date=_text_to_dt(row["start_date"]),
            end_date=_text_to_dt(row["end_date"]),
        )


async def create_store(config: StorageConfig) -> SqliteStore:
    """Create and initialize the SQLite storage backend."""
    store = SqliteStore(config)
    await store.initialize()
    return store
