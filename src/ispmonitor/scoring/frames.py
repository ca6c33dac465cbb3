"""Record set -> analysis frame.

Store records carry dates as ISO strings (or whatever coercion could not
parse); the frame built here holds parsed UTC timestamps and the derived
flags every rollup needs, so aggregation never re-parses text.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional, Union

import pandas as pd

from ..ingestion.coercion import clean_text, to_timestamp
from ..models import Incident
from ..standards.schemas import INCIDENT_FRAME, validate_frame


MISSING_REGION = "N/D"
MISSING_SUPPLIER = "N/A"
VALID_SLA_VALUES = ("SI", "NO")

RecordLike = Union[Incident, Mapping[str, Any]]


def as_incidents(records: Iterable[RecordLike]) -> List[Incident]:
    """Accept incidents or raw store records and return incidents."""
    out: List[Incident] = []
    for record in records:
        out.append(record if isinstance(record, Incident) else Incident.from_record(record))
    return out


def _upper(value: Any) -> str:
    return (clean_text(value) or "").upper()


def _timestamps(values: List[Any]) -> pd.Series:
    parsed = [to_timestamp(v) for v in values]
    return pd.to_datetime(pd.Series(parsed, dtype=object), utc=True)


def incidents_to_frame(records: Iterable[RecordLike]) -> pd.DataFrame:
    """Build the canonical analysis frame, one row per incident.

    Unparseable dates become NaT and non-numeric durations NaN so they drop
    out of every rollup instead of raising.
    """
    incidents = as_incidents(records)
    frame = pd.DataFrame(
        {
            "numero": [i.numero for i in incidents],
            "stato": [(i.stato or "").strip() for i in incidents],
            "region": [clean_text(i.regione) or MISSING_REGION for i in incidents],
            "city": [clean_text(i.citta) for i in incidents],
            "service": [_upper(i.servizio_hd) for i in incidents],
            "sla_value": [_upper(i.in_sla) for i in incidents],
            "supplier": [clean_text(i.fornitore) or MISSING_SUPPLIER for i in incidents],
            "asset": [_upper(i.asset) or None for i in incidents],
            "durata": pd.Series([i.durata for i in incidents], dtype="float64"),
            "is_closed": pd.Series([i.is_closed for i in incidents], dtype=bool),
            "is_suspended": pd.Series([i.is_suspended for i in incidents], dtype=bool),
            "is_breach": pd.Series([i.violazione_avvenuta is True for i in incidents], dtype=bool),
            "is_locker": pd.Series([i.is_locker for i in incidents], dtype=bool),
            "has_parts": pd.Series([bool(i.parti_richieste) for i in incidents], dtype=bool),
            "has_device": pd.Series([bool(i.richiesta_apparato) for i in incidents], dtype=bool),
            "stato_richiesta": [clean_text(i.stato_richiesta) for i in incidents],
        }
    )
    frame["opened"] = _timestamps([i.data_apertura for i in incidents])
    frame["closed_at"] = _timestamps([i.data_chiusura for i in incidents])
    frame["chiuso_at"] = _timestamps([i.chiuso for i in incidents])
    frame["execution"] = _timestamps([i.data_esecuzione for i in incidents])
    frame["planned"] = _timestamps([i.pianificazione for i in incidents])
    frame["violation_at"] = _timestamps([i.ora_violazione for i in incidents])
    frame["reassigned_at"] = _timestamps([i.data_ultima_riassegnazione for i in incidents])

    validate_frame(frame, "incident_frame")
    return frame[INCIDENT_FRAME.required]


def in_month(series: pd.Series, year: int, month: int) -> pd.Series:
    """Boolean mask of timestamps falling in ``year``/``month`` (NaT -> False)."""
    return (series.dt.year == year) & (series.dt.month == month)


def on_day(series: pd.Series, day) -> pd.Series:
    return series.dt.date == day


def apply_region_visibility(frame: pd.DataFrame, region_visibility: Optional[Mapping[str, bool]]) -> pd.DataFrame:
    """Keep only whitelisted regions; an empty or missing map keeps everything."""
    if not region_visibility:
        return frame
    visible = {name for name, shown in region_visibility.items() if shown}
    return frame[frame["region"].isin(visible)]


def previous_month(year: int, month: int):
    if month == 1:
        return year - 1, 12
    return year, month - 1
