"""Keyed insert-or-update of normalized incident batches."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence, Tuple

from ..errors import StoreError
from ..models import Incident


logger = logging.getLogger("ispmonitor.reconciliation.upsert")

UPSERT_KEY = "numero"


@dataclass
class UpsertSummary:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def _chunks(rows: Sequence[dict], size: int) -> Iterable[Sequence[dict]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def upsert_batch(store, records: Iterable[Incident], chunk_size: int = 500) -> UpsertSummary:
    """Write ``records`` keyed by ``numero``.

    Each record is sent as its provided-attribute patch so partial feeds never
    overwrite attributes they do not carry. The batch is not transactional:
    rejected rows are counted and reported, rows that succeeded stay written,
    and re-sending the same batch is safe.
    """
    rows = [r.to_record(only_provided=True) for r in records if r.numero]
    summary = UpsertSummary(attempted=len(rows))
    for chunk in _chunks(rows, max(1, int(chunk_size))):
        try:
            result = store.upsert(list(chunk), key=UPSERT_KEY)
        except StoreError as exc:
            logger.error("Upsert of %d rows failed: %s", len(chunk), exc)
            summary.failed += len(chunk)
            summary.failures.extend((str(r.get(UPSERT_KEY)), str(exc)) for r in chunk)
            continue
        summary.succeeded += result.success
        summary.failed += len(result.failures)
        summary.failures.extend(result.failures)

    if summary.failed:
        logger.warning("Upsert completed with %d failures out of %d rows", summary.failed, summary.attempted)
    else:
        logger.info("Upserted %d rows", summary.succeeded)
    return summary
