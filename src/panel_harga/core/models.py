"""Price, subscription and read models shared by every layer."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --- Type Aliases ---

AccountId = str
RunId = str

# --- Enumerations ---


class Commodity(StrEnum):
    """Canonical commodities tracked by the price panel."""

    BERAS = "BERAS"
    CABAI_MERAH = "CABAI_MERAH"
    CABAI_RAWIT = "CABAI_RAWIT"
    BAWANG_MERAH = "BAWANG_MERAH"
    BAWANG_PUTIH = "BAWANG_PUTIH"
    DAGING_AYAM = "DAGING_AYAM"
    DAGING_SAPI = "DAGING_SAPI"
    TELUR_AYAM = "TELUR_AYAM"
    MINYAK_GORENG = "MINYAK_GORENG"
    GULA_PASIR = "GULA_PASIR"
    TEPUNG_TERIGU = "TEPUNG_TERIGU"
    SUSU = "SUSU"
    TOMAT = "TOMAT"
    KENTANG = "KENTANG"
    WORTEL = "WORTEL"


class Region(StrEnum):
    """Canonical provinces, plus the synthetic NASIONAL aggregate region."""

    ACEH = "ACEH"
    SUMATERA_UTARA = "SUMATERA_UTARA"
    SUMATERA_BARAT = "SUMATERA_BARAT"
    RIAU = "RIAU"
    JAMBI = "JAMBI"
    SUMATERA_SELATAN = "SUMATERA_SELATAN"
    BENGKULU = "BENGKULU"
    LAMPUNG = "LAMPUNG"
    KEPULAUAN_BANGKA_BELITUNG = "KEPULAUAN_BANGKA_BELITUNG"
    KEPULAUAN_RIAU = "KEPULAUAN_RIAU"
    DKI_JAKARTA = "DKI_JAKARTA"
    JAWA_BARAT = "JAWA_BARAT"
    JAWA_TENGAH = "JAWA_TENGAH"
    DI_YOGYAKARTA = "DI_YOGYAKARTA"
    JAWA_TIMUR = "JAWA_TIMUR"
    BANTEN = "BANTEN"
    BALI = "BALI"
    NUSA_TENGGARA_BARAT = "NUSA_TENGGARA_BARAT"
    NUSA_TENGGARA_TIMUR = "NUSA_TENGGARA_TIMUR"
    KALIMANTAN_BARAT = "KALIMANTAN_BARAT"
    KALIMANTAN_TENGAH = "KALIMANTAN_TENGAH"
    KALIMANTAN_SELATAN = "KALIMANTAN_SELATAN"
    KALIMANTAN_TIMUR = "KALIMANTAN_TIMUR"
    KALIMANTAN_UTARA = "KALIMANTAN_UTARA"
    SULAWESI_UTARA = "SULAWESI_UTARA"
    SULAWESI_TENGAH = "SULAWESI_TENGAH"
    SULAWESI_SELATAN = "SULAWESI_SELATAN"
    SULAWESI_TENGGARA = "SULAWESI_TENGGARA"
    GORONTALO = "GORONTALO"
    SULAWESI_BARAT = "SULAWESI_BARAT"
    MALUKU = "MALUKU"
    MALUKU_UTARA = "MALUKU_UTARA"
    PAPUA_BARAT = "PAPUA_BARAT"
    PAPUA = "PAPUA"
    NASIONAL = "NASIONAL"


class LabelKind(StrEnum):
    """Which canonical vocabulary a raw label is normalized against."""

    COMMODITY = "commodity"
    REGION = "region"


class IngestionMethod(StrEnum):
    """Source adapter strategies, in preference order."""

    STRUCTURED = "structured"
    RENDERED = "rendered"


class RunOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class SubscriptionStatus(StrEnum):
    """Account and subscription tiers."""

    FREE = "FREE"
    PREMIUM = "PREMIUM"
    EXPIRED = "EXPIRED"


class ScopeKind(StrEnum):
    NATIONAL = "national"
    REGIONAL = "regional"


# --- Ingestion Models ---


class PriceObservation(BaseModel):
    """One raw price row as produced by a source adapter.

    Labels are free text exactly as the source printed them; they are
    normalized by the coordinator, never by the adapter.
    """

    model_config = ConfigDict(frozen=True)

    commodity_label: str
    region_label: str
    price: int
    unit: str = "kg"
    observed_at: datetime

    @field_validator("price")
    @classmethod
    def price_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"price must be positive, got {v}")
        return v


class NormalizedObservation(BaseModel):
    """A price observation whose labels resolved to canonical identifiers."""

    model_config = ConfigDict(frozen=True)

    commodity: Commodity
    region: Region
    price: int
    unit: str
    observed_at: datetime
    source_ref: str

    @property
    def price_date(self) -> date:
        """Calendar day of the observation (time of day discarded)."""
        return self.observed_at.date()


class CommodityRecord(BaseModel):
    """Canonical per-day, per-region price. Unique per (commodity, region, price_date)."""

    model_config = ConfigDict(frozen=True)

    commodity: Commodity
    region: Region
    price: int
    unit: str
    price_date: date
    source_ref: str
    scraped_at: datetime
    is_active: bool = True

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("price cannot be negative")
        return v


class PriceHistoryEntry(BaseModel):
    """Append-only ledger row written after each successful upsert."""

    model_config = ConfigDict(frozen=True)

    commodity: Commodity
    region: Region
    price: int
    price_date: date
    recorded_at: datetime | None = None


class UpsertResult(BaseModel):
    """Outcome counts for one persistence batch."""

    succeeded: int = 0
    failed: int = 0
    history_failed: int = 0
    price_dates: list[date] = []
    errors: list[str] = []


class IngestionRun(BaseModel):
    """Diagnostic record of one ingestion attempt. Never mutated once saved."""

    model_config = ConfigDict(frozen=True)

    run_id: RunId
    outcome: RunOutcome
    method: IngestionMethod | None = None
    item_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    errors: list[str] = []
    notes: list[str] = []
    price_dates: list[date] = []
    duration_seconds: float
    started_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.outcome == RunOutcome.SUCCESS


# --- Subscription Models ---


class Account(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: AccountId
    email: str
    status: SubscriptionStatus = SubscriptionStatus.FREE


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    account_id: AccountId
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def end_after_start(self) -> Subscription:
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class Entitlement(BaseModel):
    """An account's tier and expiry as seen at one moment."""

    model_config = ConfigDict(frozen=True)

    account_id: AccountId | None = None
    status: SubscriptionStatus = SubscriptionStatus.FREE
    expires_at: datetime | None = None

    def is_premium_at(self, now: datetime) -> bool:
        """PREMIUM and not yet past its expiry, regardless of reconciliation."""
        if self.status != SubscriptionStatus.PREMIUM:
            return False
        return self.expires_at is None or self.expires_at >= now

    @classmethod
    def anonymous(cls) -> Entitlement:
        return cls()


class ExpiryReport(BaseModel):
    """Outcome of one subscription-expiry reconciliation pass."""

    expired_subscriptions: list[str] = []
    downgraded_accounts: list[AccountId] = []


class CleanupReport(BaseModel):
    """Rows touched by one retention cleanup pass."""

    model_config = ConfigDict(frozen=True)

    deactivated_prices: int = 0
    pruned_history: int = 0
    deleted_runs: int = 0


# --- Read Models ---


class PriceScope(BaseModel):
    """What a caller asks the tier gateway for.

    ``national`` takes no region. ``regional`` requires a region and may
    carry a history window in days; a regional request with a window
    returns the ledger rather than the day's records.
    """

    model_config = ConfigDict(frozen=True)

    kind: ScopeKind
    region: Region | None = None
    commodities: tuple[Commodity, ...] | None = None
    price_date: date | None = None
    history_days: int | None = Field(default=None, ge=1, le=365)

    @model_validator(mode="after")
    def region_matches_kind(self) -> PriceScope:
        if self.kind == ScopeKind.NATIONAL:
            if self.region is not None and self.region != Region.NASIONAL:
                raise ValueError("national scope does not take a region")
            if self.history_days is not None:
                raise ValueError("history windows require a regional scope")
        elif self.region is None:
            raise ValueError("regional scope requires a region")
        return self

    @classmethod
    def national(
        cls,
        commodities: tuple[Commodity, ...] | None = None,
        price_date: date | None = None,
    ) -> PriceScope:
        return cls(kind=ScopeKind.NATIONAL, commodities=commodities, price_date=price_date)

    @classmethod
    def regional(
        cls,
        region: Region,
        commodities: tuple[Commodity, ...] | None = None,
        price_date: date | None = None,
        history_days: int | None = None,
    ) -> PriceScope:
        return cls(
            kind=ScopeKind.REGIONAL,
            region=region,
            commodities=commodities,
            price_date=price_date,
            history_days=history_days,
        )

    @property
    def is_history(self) -> bool:
        return self.history_days is not None


class HistoryStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    average: int
    min: int
    max: int
    volatility: int


class PriceView(BaseModel):
    """What the tier gateway serves back."""

    tier: str
    scope: ScopeKind
    region: Region
    price_date: date | None = None
    records: list[CommodityRecord] = []
    history: list[PriceHistoryEntry] = []
    statistics: dict[Commodity, HistoryStatistics] = {}
