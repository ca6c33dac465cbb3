"""Column contracts for the frames produced by the scoring layer."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List

import pandas as pd


@dataclass(frozen=True)
class Schema:
    required: List[str]
    numeric: List[str]
    datetime: List[str]


INCIDENT_FRAME = Schema(
    required=[
        "numero", "stato", "region", "city", "service", "sla_value", "supplier", "asset",
        "durata", "opened", "closed_at", "chiuso_at", "execution", "planned", "violation_at",
        "reassigned_at", "is_closed", "is_suspended", "is_breach", "is_locker", "has_parts",
        "has_device", "stato_richiesta",
    ],
    numeric=["durata"],
    datetime=["opened", "closed_at", "chiuso_at", "execution", "planned", "violation_at", "reassigned_at"],
)

SUPPLIER_SCORECARD = Schema(
    required=[
        "supplier", "volume", "parts", "devices", "closed", "breaches", "penalties", "avg_days",
        "sla_compliance", "penalty_rate", "penalty_score", "volume_score", "score", "rank",
    ],
    numeric=["sla_compliance", "penalty_rate", "penalty_score", "volume_score", "score"],
    datetime=[],
)

SCHEMAS = {
    "incident_frame": INCIDENT_FRAME,
    "supplier_scorecard": SUPPLIER_SCORECARD,
}


def _ensure_columns(df: pd.DataFrame, cols: List[str], name: str) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"{name} missing required columns: {missing}")


def _ensure_numeric(df: pd.DataFrame, cols: List[str], name: str) -> None:
    for c in cols:
        if c in df.columns and not pd.api.types.is_numeric_dtype(df[c]):
            raise ValueError(f"{name} column '{c}' must be numeric, got {df[c].dtype}")


def _ensure_datetime(df: pd.DataFrame, cols: List[str], name: str) -> None:
    for c in cols:
        if c in df.columns and not pd.api.types.is_datetime64_any_dtype(df[c]):
            raise ValueError(f"{name} column '{c}' must be datetime, got {df[c].dtype}")


def validate_frame(df: pd.DataFrame, name: str) -> None:
    if df is None:
        raise ValueError(f"{name}: frame is None")
    schema = SCHEMAS.get(name)
    if schema is None:
        # Unknown frames only get the None check
        return
    _ensure_columns(df, schema.required, name)
    _ensure_numeric(df, schema.numeric, name)
    _ensure_datetime(df, schema.datetime, name)
