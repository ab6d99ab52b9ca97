"""panel-harga: commodity retail-price ingestion and tiered read access."""

__version__ = "0.1.0"
