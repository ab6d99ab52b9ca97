"""Free-text commodity/region label → canonical identifier mapping."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from panel_harga.core.exceptions import ConfigError
from panel_harga.core.models import Commodity, LabelKind, Region

logger = logging.getLogger(__name__)


def fold_label(label: str) -> str:
    """Case-fold and collapse separators so ``Cabai_Merah`` == ``cabai  merah``."""
    return " ".join(label.casefold().replace("_", " ").split())


class SynonymEntry(BaseModel):
    """One canonical id and the keywords that identify it."""

    model_config = ConfigDict(frozen=True)

    canonical: str
    keywords: tuple[str, ...]

    @field_validator("keywords")
    @classmethod
    def fold_keywords(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        folded = tuple(fold_label(k) for k in v if k.strip())
        if not folded:
            raise ValueError("a synonym entry needs at least one keyword")
        return folded


class SynonymTables(BaseModel):
    """Immutable commodity and region synonym tables.

    Entry order is significant: keyword matching returns the first entry
    that matches, so more specific names (``kepulauan riau``) are declared
    before names they contain (``riau``).
    """

    model_config = ConfigDict(frozen=True)

    commodities: tuple[SynonymEntry, ...]
    regions: tuple[SynonymEntry, ...]

    @field_validator("commodities")
    @classmethod
    def known_commodities(cls, v: tuple[SynonymEntry, ...]) -> tuple[SynonymEntry, ...]:
        for entry in v:
            if entry.canonical not in Commodity.__members__:
                raise ValueError(f"unknown commodity id: {entry.canonical!r}")
        return v

    @field_validator("regions")
    @classmethod
    def known_regions(cls, v: tuple[SynonymEntry, ...]) -> tuple[SynonymEntry, ...]:
        for entry in v:
            if entry.canonical not in Region.__members__:
                raise ValueError(f"unknown region id: {entry.canonical!r}")
        return v

    def for_kind(self, kind: LabelKind) -> tuple[SynonymEntry, ...]:
        return self.commodities if kind == LabelKind.COMMODITY else self.regions

    @classmethod
    def from_mapping(cls, data: dict) -> SynonymTables:
        """Build tables from ``{"commodities": {ID: [kw, ...]}, "regions": {...}}``."""
        return cls(
            commodities=tuple(
                SynonymEntry(canonical=k, keywords=tuple(v))
                for k, v in (data.get("commodities") or {}).items()
            ),
            regions=tuple(
                SynonymEntry(canonical=k, keywords=tuple(v))
                for k, v in (data.get("regions") or {}).items()
            ),
        )


_DEFAULT_COMMODITIES: dict[str, list[str]] = {
    "BERAS": ["beras", "beras premium", "beras medium"],
    "CABAI_MERAH": ["cabai merah", "cabai merah keriting", "cabe merah"],
    "CABAI_RAWIT": ["cabai rawit", "cabai rawit hijau", "cabai rawit merah", "cabe rawit"],
    "BAWANG_MERAH": ["bawang merah"],
    "BAWANG_PUTIH": ["bawang putih", "bawang putih bonggol"],
    "DAGING_AYAM": ["daging ayam", "daging ayam ras"],
    "DAGING_SAPI": ["daging sapi", "daging sapi murni"],
    "TELUR_AYAM": ["telur ayam", "telur ayam ras"],
    "MINYAK_GORENG": ["minyak goreng", "minyak goreng curah", "minyakita"],
    "GULA_PASIR": ["gula pasir", "gula pasir lokal", "gula konsumsi"],
    "TEPUNG_TERIGU": ["tepung terigu", "terigu"],
    "SUSU": ["susu"],
    "TOMAT": ["tomat"],
    "KENTANG": ["kentang"],
    "WORTEL": ["wortel"],
}

_DEFAULT_REGIONS: dict[str, list[str]] = {
    "ACEH": ["aceh", "nanggroe aceh darussalam"],
    "SUMATERA_UTARA": ["sumatera utara", "sumatra utara", "sumut"],
    "SUMATERA_BARAT": ["sumatera barat", "sumatra barat", "sumbar"],
    "SUMATERA_SELATAN": ["sumatera selatan", "sumatra selatan", "sumsel"],
    "KEPULAUAN_RIAU": ["kepulauan riau", "kepri"],
    "RIAU": ["riau"],
    "JAMBI": ["jambi"],
    "BENGKULU": ["bengkulu"],
    "LAMPUNG": ["lampung"],
    "KEPULAUAN_BANGKA_BELITUNG": ["kepulauan bangka belitung", "bangka belitung", "babel"],
    "DKI_JAKARTA": ["dki jakarta", "jakarta"],
    "JAWA_BARAT": ["jawa barat", "jabar"],
    "JAWA_TENGAH": ["jawa tengah", "jateng"],
    "DI_YOGYAKARTA": ["di yogyakarta", "yogyakarta", "jogja", "diy"],
    "JAWA_TIMUR": ["jawa timur", "jatim"],
    "BANTEN": ["banten"],
    "BALI": ["bali"],
    "NUSA_TENGGARA_BARAT": ["nusa tenggara barat", "ntb"],
    "NUSA_TENGGARA_TIMUR": ["nusa tenggara timur", "ntt"],
    "KALIMANTAN_BARAT": ["kalimantan barat", "kalbar"],
    "KALIMANTAN_TENGAH": ["kalimantan tengah", "kalteng"],
    "KALIMANTAN_SELATAN": ["kalimantan selatan", "kalsel"],
    "KALIMANTAN_TIMUR": ["kalimantan timur", "kaltim"],
    "KALIMANTAN_UTARA": ["kalimantan utara", "kaltara"],
    "SULAWESI_UTARA": ["sulawesi utara", "sulut"],
    "SULAWESI_TENGAH": ["sulawesi tengah", "sulteng"],
    "SULAWESI_SELATAN": ["sulawesi selatan", "sulsel"],
    "SULAWESI_TENGGARA": ["sulawesi tenggara", "sultra"],
    "SULAWESI_BARAT": ["sulawesi barat", "sulbar"],
    "GORONTALO": ["gorontalo"],
    "MALUKU_UTARA": ["maluku utara", "malut"],
    "MALUKU": ["maluku"],
    "PAPUA_BARAT": ["papua barat"],
    "PAPUA": ["papua"],
    # Last, so a province named alongside it wins containment matching
    "NASIONAL": ["nasional", "rata-rata nasional"],
}

DEFAULT_SYNONYM_TABLES = SynonymTables.from_mapping(
    {"commodities": _DEFAULT_COMMODITIES, "regions": _DEFAULT_REGIONS}
)


def load_synonym_tables(path: str | None = None) -> SynonymTables:
    """Load synonym tables once at startup.

    With no path the built-in tables are returned. A YAML file replaces
    the built-in table for each kind it defines and keeps the other.
    """
    if path is None:
        return DEFAULT_SYNONYM_TABLES

    try:
        with open(Path(path), encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(
            f"Failed to read synonym tables: {e}",
            context={"field": "normalization.synonyms_path", "value": path},
        ) from e

    if not isinstance(data, dict):
        raise ConfigError(
            f"Synonym file must be a mapping, got {type(data).__name__}",
            context={"field": "normalization.synonyms_path", "value": path},
        )

    try:
        loaded = SynonymTables.from_mapping(
            {
                "commodities": data.get("commodities") or _DEFAULT_COMMODITIES,
                "regions": data.get("regions") or _DEFAULT_REGIONS,
            }
        )
    except ValueError as e:
        raise ConfigError(
            f"Invalid synonym tables: {e}",
            context={"field": "normalization.synonyms_path", "value": path},
        ) from e

    logger.info(
        "Loaded synonym tables from %s (%d commodities, %d regions)",
        path, len(loaded.commodities), len(loaded.regions),
    )
    return loaded


class NameNormalizer:
    """Maps raw labels onto the canonical commodity and region vocabularies.

    Matching order:
    1. The folded label equals a folded canonical id (``jawa barat`` →
       ``JAWA_BARAT``).
    2. The folded label equals a keyword; first entry in table order wins.
    3. A keyword occurs inside the folded label (``Cabai Merah Keriting
       (Rp/kg)`` → ``CABAI_MERAH``); first entry in table order wins.

    A miss returns None. Callers skip that observation; it is not an error.
    """

    def __init__(self, tables: SynonymTables = DEFAULT_SYNONYM_TABLES) -> None:
        self._tables = tables
        self._canonical: dict[LabelKind, dict[str, str]] = {
            LabelKind.COMMODITY: {fold_label(c.value): c.value for c in Commodity},
            LabelKind.REGION: {fold_label(r.value): r.value for r in Region},
        }

    @property
    def tables(self) -> SynonymTables:
        return self._tables

    def normalize(self, raw_label: str, kind: LabelKind) -> str | None:
        """Return the canonical id for ``raw_label``, or None when nothing matches."""
        label = fold_label(raw_label or "")
        if not label:
            return None

        exact = self._canonical[kind].get(label)
        if exact is not None:
            return exact

        entries = self._tables.for_kind(kind)
        for entry in entries:
            if label in entry.keywords:
                return entry.canonical

        for entry in entries:
            if any(keyword in label for keyword in entry.keywords):
                return entry.canonical

        return None

    def commodity(self, raw_label: str) -> Commodity | None:
        found = self.normalize(raw_label, LabelKind.COMMODITY)
        return Commodity(found) if found is not None else None

    def region(self, raw_label: str) -> Region | None:
        found = self.normalize(raw_label, LabelKind.REGION)
        return Region(found) if found is not None else None
