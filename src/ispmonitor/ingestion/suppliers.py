"""Province -> supplier lookup used to auto-assign ``fornitore``."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from .coercion import clean_text


logger = logging.getLogger("ispmonitor.ingestion.suppliers")

PROVINCE_COLUMNS = ("Provincia/Stato", "provincia stato", "Provincia", "provincia")
SUPPLIER_COLUMNS = ("Fornitore", "fornitore")


def normalize_province(value: Any) -> Optional[str]:
    text = clean_text(value)
    return text.upper() if text else None


@dataclass
class SupplierResolver:
    """Exact-match lookup from normalized province code to supplier name.

    A miss yields None; the resolver never guesses a default supplier.
    """

    mapping: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized: Dict[str, str] = {}
        for province, supplier in self.mapping.items():
            key = normalize_province(province)
            name = clean_text(supplier)
            if key and name:
                normalized[key] = name
        self.mapping = normalized

    def __len__(self) -> int:
        return len(self.mapping)

    def resolve(self, province: Any) -> Optional[str]:
        key = normalize_province(province)
        if key is None:
            return None
        return self.mapping.get(key)

    def refresh(self, rows: Iterable[Mapping[str, str]]) -> int:
        """Replace entries keyed by province; other provinces are untouched."""
        count = 0
        for row in rows:
            key = normalize_province(row.get("provincia"))
            name = clean_text(row.get("fornitore"))
            if key and name:
                self.mapping[key] = name
                count += 1
        return count

    @classmethod
    def from_store(cls, store) -> "SupplierResolver":
        resolver = cls(dict(store.load_suppliers()))
        logger.info("Loaded %d supplier mappings", len(resolver))
        return resolver


def _first_present(row: Mapping[str, Any], candidates: Tuple[str, ...]) -> Any:
    for name in candidates:
        value = row.get(name)
        if clean_text(value):
            return value
    return None


def parse_territory_rows(frame: pd.DataFrame) -> List[Dict[str, str]]:
    """Extract ``{provincia, fornitore}`` rows from a territory distribution sheet.

    Rows missing either value are dropped.
    """
    rows: List[Dict[str, str]] = []
    for raw in frame.to_dict(orient="records"):
        province = normalize_province(_first_present(raw, PROVINCE_COLUMNS))
        supplier = clean_text(_first_present(raw, SUPPLIER_COLUMNS))
        if not province or not supplier:
            continue
        rows.append({"provincia": province, "fornitore": supplier})
    dropped = len(frame) - len(rows)
    if dropped:
        logger.info("Ignored %d territory rows without province or supplier", dropped)
    return rows
