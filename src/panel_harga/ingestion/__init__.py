"""Price ingestion: adapters, retry, normalization, storage, aggregation."""

from panel_harga.ingestion.aggregator import NationalAggregator
from panel_harga.ingestion.browser import RenderedPageAdapter
from panel_harga.ingestion.coordinator import IngestionCoordinator
from panel_harga.ingestion.normalizer import NameNormalizer, load_synonym_tables
from panel_harga.ingestion.retry import with_retry
from panel_harga.ingestion.sources import SourceAdapter, StructuredSourceAdapter
from panel_harga.ingestion.store import PriceStore, SqliteStore, create_store
from panel_harga.ingestion.writer import PriceWriter

__all__ = [
    "IngestionCoordinator",
    "NameNormalizer",
    "NationalAggregator",
    "PriceStore",
    "PriceWriter",
    "RenderedPageAdapter",
    "SourceAdapter",
    "SqliteStore",
    "StructuredSourceAdapter",
    "create_store",
    "load_synonym_tables",
    "with_retry",
]
