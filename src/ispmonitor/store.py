"""Store contract consumed by the import pipeline, plus an in-memory reference store.

The persistent store is an external collaborator. The core only needs record
reads by filter, keyed upserts, keyed patches and the supplier lookup table.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from .ingestion.suppliers import normalize_province


logger = logging.getLogger("ispmonitor.store")


@dataclass
class UpsertResult:
    success: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class UpdateResult:
    ok: bool
    error: Optional[str] = None


class RecordStore(Protocol):
    def query(self, filters: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    def upsert(self, records: List[Dict[str, Any]], key: str = "numero") -> UpsertResult:
        ...

    def update_by_key(self, key: str, patch: Mapping[str, Any]) -> UpdateResult:
        ...

    def load_suppliers(self) -> Dict[str, str]:
        ...

    def replace_suppliers(self, rows: Iterable[Mapping[str, str]]) -> int:
        ...


def _matches(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for name, expected in filters.items():
        value = record.get(name)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryStore:
    """Dictionary-backed store honouring the insert-or-update contract.

    Upserts merge the given attributes into an existing record; records are
    never deleted. ``validator`` may reject rows by returning an error message,
    which simulates per-row write failures.
    """

    def __init__(
        self,
        records: Optional[Iterable[Mapping[str, Any]]] = None,
        suppliers: Optional[Mapping[str, str]] = None,
        validator: Optional[Callable[[Mapping[str, Any]], Optional[str]]] = None,
    ) -> None:
        self._records: Dict[str, Dict[str, Any]] = {}
        self._suppliers: Dict[str, str] = {}
        self.validator = validator
        for record in records or []:
            self._records[str(record["numero"])] = dict(record)
        for province, supplier in (suppliers or {}).items():
            self._suppliers[normalize_province(province)] = supplier

    def __len__(self) -> int:
        return len(self._records)

    def get(self, numero: str) -> Optional[Dict[str, Any]]:
        record = self._records.get(numero)
        return copy.deepcopy(record) if record is not None else None

    def query(self, filters: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        return [copy.deepcopy(r) for r in self._records.values() if _matches(r, filters)]

    def upsert(self, records: List[Dict[str, Any]], key: str = "numero") -> UpsertResult:
        result = UpsertResult()
        for record in records:
            ident = record.get(key)
            if not ident:
                result.failures.append(("", f"missing {key}"))
                continue
            error = self.validator(record) if self.validator else None
            if error:
                result.failures.append((str(ident), error))
                continue
            target = self._records.setdefault(str(ident), {})
            target.update(copy.deepcopy(record))
            result.success += 1
        return result

    def update_by_key(self, key: str, patch: Mapping[str, Any]) -> UpdateResult:
        record = self._records.get(key)
        if record is None:
            return UpdateResult(ok=False, error=f"no record with numero {key}")
        candidate = {**record, **patch}
        error = self.validator(candidate) if self.validator else None
        if error:
            return UpdateResult(ok=False, error=error)
        record.update(copy.deepcopy(dict(patch)))
        return UpdateResult(ok=True)

    def load_suppliers(self) -> Dict[str, str]:
        return dict(self._suppliers)

    def replace_suppliers(self, rows: Iterable[Mapping[str, str]]) -> int:
        count = 0
        for row in rows:
            province = normalize_province(row.get("provincia"))
            if not province or not row.get("fornitore"):
                continue
            self._suppliers[province] = row["fornitore"]
            count += 1
        logger.debug("Replaced %d supplier mappings", count)
        return count
