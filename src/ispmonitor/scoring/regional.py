"""Regional backlog and monthly SLA rollups.

All functions are pure: they take a record snapshot plus parameters and
return frames or result objects, with no caching and no store access.

SLA tiers, per service class, over tickets closed in the selected month:

* Complessivo: ``SI / (SI + NO)`` on ``in_sla``; other values are ignored.
* Controllo: ``(total - penalties) / total`` where a penalty is a valid
  SI/NO ticket whose duration exceeds the penalty threshold.
* Regionale: share of regions whose Complessivo reaches the regional target;
  a region without valid tickets passes.

A tier with an empty denominator reports ``NO_DATA``, never 0% or 100%.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from ..common.config_validator import AppConfig, SlaConfig
from ..models import REQUEST_LIFECYCLE, REQUEST_SIDE_EXITS
from .frames import (
    VALID_SLA_VALUES,
    RecordLike,
    apply_region_visibility,
    in_month,
    incidents_to_frame,
    on_day,
    previous_month,
)


class TierStatus(str, Enum):
    NO_DATA = "no_data"
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class TierResult:
    numerator: int
    denominator: int
    target: float

    @property
    def percentage(self) -> Optional[float]:
        if self.denominator == 0:
            return None
        return self.numerator / self.denominator * 100

    @property
    def status(self) -> TierStatus:
        pct = self.percentage
        if pct is None:
            return TierStatus.NO_DATA
        return TierStatus.PASS if pct >= self.target else TierStatus.FAIL


@dataclass(frozen=True)
class RegionVerdict:
    region: str
    service: str
    complessivo: TierResult

    @property
    def passed(self) -> bool:
        # No valid tickets counts as a pass
        return self.complessivo.status is not TierStatus.FAIL

    @property
    def score(self) -> float:
        return 100.0 if self.passed else 0.0


@dataclass
class ServiceSla:
    service: str
    label: str
    complessivo: TierResult
    controllo: TierResult
    regionale: TierResult
    penalties: int = 0
    regions: List[RegionVerdict] = field(default_factory=list)

    def region(self, name: str) -> Optional[RegionVerdict]:
        for verdict in self.regions:
            if verdict.region == name:
                return verdict
        return None


@dataclass
class SlaReport:
    year: int
    month: int
    closed: int
    breaches: int
    services: Dict[str, ServiceSla] = field(default_factory=dict)

    @property
    def has_data(self) -> bool:
        return self.closed > 0

    @property
    def penalties(self) -> int:
        return sum(s.penalties for s in self.services.values())


# --------------------------------------------------------------------- backlog

def _today(today: Optional[date]) -> date:
    return today or pd.Timestamp.now(tz="UTC").date()


def regional_backlog(
    records: Iterable[RecordLike],
    today: Optional[date] = None,
    region_visibility: Optional[Mapping[str, bool]] = None,
) -> pd.DataFrame:
    """Per-region backlog statistics, sorted by backlog descending.

    Columns: region, total, backlog, suspended, sla_breach, expiring_today,
    lockers, opened_today, closed_today, planned_today.
    """
    today = _today(today)
    frame = apply_region_visibility(incidents_to_frame(records), region_visibility)
    open_mask = ~frame["is_closed"]
    work = pd.DataFrame(
        {
            "region": frame["region"],
            "total": 1,
            "backlog": open_mask,
            "suspended": open_mask & frame["is_suspended"],
            "sla_breach": open_mask & frame["is_breach"],
            "expiring_today": open_mask & on_day(frame["execution"], today),
            "lockers": open_mask & frame["is_locker"],
            "opened_today": on_day(frame["opened"], today),
            "closed_today": on_day(frame["chiuso_at"], today),
            "planned_today": on_day(frame["planned"], today),
        }
    )
    columns = [c for c in work.columns if c != "region"]
    if work.empty:
        return pd.DataFrame(columns=["region"] + columns)
    grouped = work.groupby("region", sort=True)[columns].sum().astype(int).reset_index()
    return grouped.sort_values("backlog", ascending=False, kind="mergesort").reset_index(drop=True)


def backlog_kpis(records: Iterable[RecordLike], today: Optional[date] = None) -> Dict[str, int]:
    """Headline counters over the whole record set."""
    today = _today(today)
    frame = incidents_to_frame(records)
    open_mask = ~frame["is_closed"]
    return {
        "total": int(len(frame)),
        "backlog": int(open_mask.sum()),
        "in_progress": int((open_mask & ~frame["is_suspended"]).sum()),
        "suspended": int((open_mask & frame["is_suspended"]).sum()),
        "closed": int(frame["is_closed"].sum()),
        "sla_breach": int((open_mask & frame["is_breach"]).sum()),
        "opened_today": int(on_day(frame["opened"], today).sum()),
        "closed_today": int(on_day(frame["chiuso_at"], today).sum()),
        "reassigned_today": int(on_day(frame["reassigned_at"], today).sum()),
        "planned_today": int(on_day(frame["planned"], today).sum()),
    }


# ------------------------------------------------------------------------- SLA

def _complessivo(subset: pd.DataFrame, target: float) -> TierResult:
    valid = subset[subset["sla_value"].isin(VALID_SLA_VALUES)]
    met = int((valid["sla_value"] == "SI").sum())
    return TierResult(numerator=met, denominator=int(len(valid)), target=target)


def _penalty_mask(subset: pd.DataFrame, sla: SlaConfig) -> pd.Series:
    return subset["sla_value"].isin(VALID_SLA_VALUES) & (subset["durata"] > sla.penalty_minutes)


def _controllo(subset: pd.DataFrame, sla: SlaConfig) -> TierResult:
    valid = subset[subset["sla_value"].isin(VALID_SLA_VALUES)]
    penalties = int(_penalty_mask(valid, sla).sum())
    total = int(len(valid))
    return TierResult(numerator=total - penalties, denominator=total, target=sla.controllo_target)


def _service_sla(closed: pd.DataFrame, service: str, label: str, regions: List[str], sla: SlaConfig) -> ServiceSla:
    subset = closed[closed["service"] == service]
    verdicts = [
        RegionVerdict(
            region=region,
            service=service,
            complessivo=_complessivo(subset[subset["region"] == region], sla.regional_target),
        )
        for region in regions
    ]
    passing = sum(1 for v in verdicts if v.passed)
    return ServiceSla(
        service=service,
        label=label,
        complessivo=_complessivo(subset, sla.complessivo_target),
        controllo=_controllo(subset, sla),
        regionale=TierResult(numerator=passing, denominator=len(verdicts), target=sla.regionale_target),
        penalties=int(_penalty_mask(subset, sla).sum()),
        regions=verdicts,
    )


def sla_attainment(
    records: Iterable[RecordLike],
    year: int,
    month: int,
    config: Optional[AppConfig] = None,
    region_visibility: Optional[Mapping[str, bool]] = None,
) -> SlaReport:
    """Monthly SLA tiers by service class for tickets closed in ``year``/``month``.

    The closing month is taken from ``data_chiusura``. ``region_visibility``
    defaults to the configured map.
    """
    config = config or AppConfig()
    if region_visibility is None:
        region_visibility = config.region_visibility
    frame = apply_region_visibility(incidents_to_frame(records), region_visibility)
    closed = frame[in_month(frame["closed_at"], year, month)]
    regions = sorted(closed["region"].unique().tolist())

    report = SlaReport(
        year=year,
        month=month,
        closed=int(len(closed)),
        breaches=int((closed["sla_value"] == "NO").sum()),
    )
    for service, label in config.sla.services.items():
        report.services[service] = _service_sla(closed, service, label, regions, config.sla)
    return report


def daily_flow(records: Iterable[RecordLike], year: int, month: int) -> pd.DataFrame:
    """Opened / closed / SLA-violated tickets per day of the month."""
    frame = incidents_to_frame(records)
    days = pd.Period(year=year, month=month, freq="M").days_in_month
    index = pd.RangeIndex(1, days + 1, name="day")

    def _per_day(mask: pd.Series, column: str) -> pd.Series:
        hits = frame.loc[mask, column].dt.day
        return hits.value_counts().reindex(index, fill_value=0)

    opened_mask = in_month(frame["opened"], year, month)
    closed_mask = in_month(frame["closed_at"], year, month)
    out = pd.DataFrame(
        {
            "opened": _per_day(opened_mask, "opened"),
            "closed": _per_day(closed_mask, "closed_at"),
            "sla_violations": _per_day(closed_mask & (frame["sla_value"] == "NO"), "closed_at"),
        },
        index=index,
    ).astype(int)
    out.insert(0, "date", [date(year, month, d) for d in index])
    return out.reset_index()


def parts_request_summary(records: Iterable[RecordLike]) -> Dict[str, int]:
    """Count of parts/device requests per lifecycle state.

    Requests without a recorded state count as ``Pending``. States outside
    the known lifecycle are appended after it.
    """
    frame = incidents_to_frame(records)
    requested = frame[frame["has_parts"] | frame["has_device"]]
    states = requested["stato_richiesta"].fillna(REQUEST_LIFECYCLE[0])
    counts = states.value_counts()
    summary = {state: int(counts.get(state, 0)) for state in REQUEST_LIFECYCLE + REQUEST_SIDE_EXITS}
    for state, count in counts.items():
        if state not in summary:
            summary[state] = int(count)
    return summary


# ----------------------------------------------------------------- monthly view

@dataclass
class MonthlyStats:
    year: int
    month: int
    opened: int
    closed: int
    sla_breaches: int
    penalties: int
    complessivo: Dict[str, Optional[float]]
    controllo: Dict[str, Optional[float]]
    regionale: Dict[str, Optional[float]]

    @property
    def has_data(self) -> bool:
        return self.closed > 0


@dataclass
class MonthlyOverview:
    current: MonthlyStats
    previous: MonthlyStats

    def delta(self, metric: str, service: Optional[str] = None) -> Optional[float]:
        """Current minus previous; None when the previous value is 0 or missing."""
        cur = getattr(self.current, metric)
        prev = getattr(self.previous, metric)
        if service is not None:
            cur, prev = cur.get(service), prev.get(service)
        if cur is None or not prev:
            return None
        return cur - prev


def _monthly_stats(records: List[RecordLike], year: int, month: int, config: AppConfig) -> MonthlyStats:
    frame = apply_region_visibility(incidents_to_frame(records), config.region_visibility)
    report = sla_attainment(records, year, month, config=config)
    return MonthlyStats(
        year=year,
        month=month,
        opened=int(in_month(frame["opened"], year, month).sum()),
        closed=report.closed,
        sla_breaches=report.breaches,
        penalties=report.penalties,
        complessivo={k: s.complessivo.percentage for k, s in report.services.items()},
        controllo={k: s.controllo.percentage for k, s in report.services.items()},
        regionale={k: s.regionale.percentage for k, s in report.services.items()},
    )


def monthly_overview(
    records: Iterable[RecordLike], year: int, month: int, config: Optional[AppConfig] = None
) -> MonthlyOverview:
    """Executive month summary with the previous month for comparison."""
    config = config or AppConfig()
    snapshot = list(records)
    prev_year, prev_month = previous_month(year, month)
    return MonthlyOverview(
        current=_monthly_stats(snapshot, year, month, config),
        previous=_monthly_stats(snapshot, prev_year, prev_month, config),
    )
