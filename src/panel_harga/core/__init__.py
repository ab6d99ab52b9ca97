"""Config, exceptions and models for panel_harga."""

from panel_harga.core.config import (
    APIConfig,
    NormalizationConfig,
    PanelHargaConfig,
    RetryConfig,
    SchedulerConfig,
    SourceConfig,
    StorageConfig,
    load_config,
)
from panel_harga.core.exceptions import (
    ConfigError,
    EntitlementRequired,
    ExhaustedRetries,
    FetchCause,
    FetchFailure,
    PanelHargaError,
    PersistenceFailure,
)
from panel_harga.core.models import (
    Account,
    AccountId,
    CleanupReport,
    Commodity,
    CommodityRecord,
    Entitlement,
    ExpiryReport,
    HistoryStatistics,
    IngestionMethod,
    IngestionRun,
    LabelKind,
    NormalizedObservation,
    PriceHistoryEntry,
    PriceObservation,
    PriceScope,
    PriceView,
    Region,
    RunId,
    RunOutcome,
    ScopeKind,
    Subscription,
    SubscriptionStatus,
    UpsertResult,
)

__all__ = [
    # Type aliases
    "AccountId",
    "RunId",
    # Enums
    "Commodity",
    "Region",
    "LabelKind",
    "IngestionMethod",
    "RunOutcome",
    "SubscriptionStatus",
    "ScopeKind",
    # Ingestion models
    "PriceObservation",
    "NormalizedObservation",
    "CommodityRecord",
    "PriceHistoryEntry",
    "UpsertResult",
    "IngestionRun",
    # Subscription models
    "Account",
    "Subscription",
    "Entitlement",
    "ExpiryReport",
    "CleanupReport",
    # Read models
    "PriceScope",
    "HistoryStatistics",
    "PriceView",
    # Config
    "PanelHargaConfig",
    "SourceConfig",
    "RetryConfig",
    "StorageConfig",
    "NormalizationConfig",
    "SchedulerConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "PanelHargaError",
    "ConfigError",
    "FetchCause",
    "FetchFailure",
    "ExhaustedRetries",
    "PersistenceFailure",
    "EntitlementRequired",
]
