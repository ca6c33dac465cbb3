"""Monthly supplier scorecard.

Volume and resource requests are counted on tickets opened in the month;
closures, breaches, penalties and durations on tickets closed in the month.
The composite score weights SLA compliance, normalized volume and the
inverse penalty rate (0.6 / 0.3 / 0.1 by default).

All functions are pure and operate on DataFrames.
"""
from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from ..common.config_validator import AppConfig
from ..standards.schemas import SUPPLIER_SCORECARD, validate_frame
from .frames import RecordLike, in_month, incidents_to_frame


MINUTES_PER_DAY = 1440


def _supplier_order(opened: pd.DataFrame, closed: pd.DataFrame) -> List[str]:
    """Suppliers in order of first appearance, opened tickets first."""
    seen: List[str] = []
    for name in list(opened["supplier"]) + list(closed["supplier"]):
        if name not in seen:
            seen.append(name)
    return seen


def supplier_scorecard(
    records: Iterable[RecordLike],
    year: int,
    month: int,
    config: Optional[AppConfig] = None,
) -> pd.DataFrame:
    """Rank suppliers for ``year``/``month``.

    Args:
        records: Incident snapshot (incidents or store records).
        year: Calendar year.
        month: Calendar month (1-12).
        config: Supplies the penalty threshold and score weights.

    Returns:
        DataFrame with columns ['supplier','volume','parts','devices','closed',
        'breaches','penalties','avg_days','sla_compliance','penalty_rate',
        'penalty_score','volume_score','score','rank'] sorted by score
        descending. Ties keep first-appearance order.
    """
    config = config or AppConfig()
    weights = config.scorecard
    frame = incidents_to_frame(records)

    opened = frame[in_month(frame["opened"], year, month)]
    closed = frame[in_month(frame["closed_at"], year, month)].copy()
    order = _supplier_order(opened, closed)
    if not order:
        return pd.DataFrame(columns=SUPPLIER_SCORECARD.required)

    closed["breach"] = closed["sla_value"] == "NO"
    closed["penalty"] = closed["breach"] & (closed["durata"] > config.sla.penalty_minutes)

    volume = opened.groupby("supplier").agg(
        volume=("numero", "size"),
        parts=("has_parts", "sum"),
        devices=("has_device", "sum"),
    )
    outcome = closed.groupby("supplier").agg(
        closed=("numero", "size"),
        breaches=("breach", "sum"),
        penalties=("penalty", "sum"),
        avg_minutes=("durata", "mean"),
    )

    df = pd.DataFrame(index=pd.Index(order, name="supplier"))
    df = df.join(volume).join(outcome)
    counts = ["volume", "parts", "devices", "closed", "breaches", "penalties"]
    df[counts] = df[counts].fillna(0).astype(int)
    df["avg_days"] = df["avg_minutes"].fillna(0.0) / MINUTES_PER_DAY
    df = df.drop(columns=["avg_minutes"])

    has_closed = df["closed"] > 0
    with np.errstate(divide="ignore", invalid="ignore"):
        compliance = (df["closed"] - df["breaches"]) / df["closed"] * 100
        penalty_rate = df["penalties"] / df["closed"] * 100
    df["sla_compliance"] = compliance.where(has_closed, 100.0).astype(float)
    df["penalty_rate"] = penalty_rate.where(has_closed, 0.0).astype(float)
    df["penalty_score"] = 100.0 - df["penalty_rate"]

    max_volume = max(int(df["volume"].max()), 1)
    df["volume_score"] = df["volume"] / max_volume * 100

    df["score"] = (
        df["sla_compliance"] * weights.sla_weight
        + df["volume_score"] * weights.volume_weight
        + df["penalty_score"] * weights.penalty_weight
    )

    df = df.reset_index().sort_values("score", ascending=False, kind="mergesort").reset_index(drop=True)
    df["rank"] = np.arange(1, len(df) + 1)
    validate_frame(df, "supplier_scorecard")
    return df[SUPPLIER_SCORECARD.required]
