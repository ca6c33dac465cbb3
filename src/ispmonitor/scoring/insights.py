"""Rule-based anomaly flags over incident records.

A ruleset is rebuilt from an :class:`InsightContext` every time it is needed;
conditional rules (recidivist assets, out-of-region) are included only when
the context gives them something to check.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd

from ..common.config_validator import AppConfig, KeywordRule
from ..ingestion.coercion import clean_text, to_timestamp
from ..models import INACTIVE_INSIGHT_STATES, Incident
from .frames import MISSING_REGION, RecordLike, as_incidents


UPPERCASE_RUN_RX = re.compile(r"[A-Z]{5,}")
ADDRESS_NOISE_RX = re.compile(r"[^0-9A-Z]+")


@dataclass(frozen=True)
class InsightRule:
    id: str
    name: str
    severity: str
    check: Callable[[Incident], bool]


@dataclass(frozen=True)
class InsightResult:
    id: str
    name: str
    severity: str
    count: int
    numeri: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class InsightContext:
    today: date
    keyword_rules: List[KeywordRule]
    urgency_tokens: List[str]
    flag_uppercase_runs: bool = False
    near_breach_working_days: int = 2
    repeated_assets: FrozenSet[str] = frozenset()
    region_visibility: Mapping[str, bool] = field(default_factory=dict)

    @classmethod
    def from_records(
        cls,
        records: Iterable[RecordLike],
        config: Optional[AppConfig] = None,
        today: Optional[date] = None,
    ) -> "InsightContext":
        """Derive the context from the whole history, not a filtered view."""
        config = config or AppConfig()
        insights = config.insights
        return cls(
            today=today or pd.Timestamp.now(tz="UTC").date(),
            keyword_rules=list(insights.keyword_rules),
            urgency_tokens=list(insights.urgency_tokens),
            flag_uppercase_runs=insights.flag_uppercase_runs,
            near_breach_working_days=insights.near_breach_working_days,
            repeated_assets=find_repeated_assets(records, insights.recidivist_window_days),
            region_visibility=dict(config.region_visibility),
        )


def _is_inactive(incident: Incident) -> bool:
    return (incident.stato or "").strip() in INACTIVE_INSIGHT_STATES


def _text(incident: Incident) -> str:
    return " ".join(t for t in (incident.breve_descrizione, incident.descrizione) if t)


def _asset_key(value) -> Optional[str]:
    text = clean_text(value)
    return text.upper() if text else None


def find_repeated_assets(records: Iterable[RecordLike], window_days: int = 30) -> FrozenSet[str]:
    """Assets opened at least twice within ``window_days`` of each other.

    Closed and open tickets both count; only consecutive opening dates are
    compared.
    """
    openings: Dict[str, List[pd.Timestamp]] = {}
    for incident in as_incidents(records):
        asset = _asset_key(incident.asset)
        opened = to_timestamp(incident.data_apertura)
        if asset is None or opened is None:
            continue
        openings.setdefault(asset, []).append(opened)

    window = pd.Timedelta(days=window_days)
    repeated = set()
    for asset, stamps in openings.items():
        if len(stamps) < 2:
            continue
        stamps.sort()
        if any(later - earlier <= window for earlier, later in zip(stamps, stamps[1:])):
            repeated.add(asset)
    return frozenset(repeated)


def working_days_since(start: pd.Timestamp, today: date) -> int:
    """Mon-Fri days from ``start`` (inclusive) to ``today`` (exclusive)."""
    begin = np.datetime64(start.date(), "D")
    end = np.datetime64(today, "D")
    if end <= begin:
        return 0
    return int(np.busday_count(begin, end))


def normalize_address(value) -> Optional[str]:
    text = clean_text(value)
    if not text:
        return None
    return ADDRESS_NOISE_RX.sub(" ", text.upper()).strip() or None


# ----------------------------------------------------------------- rule makers

def _keyword_rule(rule: KeywordRule) -> InsightRule:
    pattern = re.compile(rule.pattern, re.IGNORECASE)

    def check(incident: Incident) -> bool:
        if _is_inactive(incident):
            return False
        return bool(pattern.search(_text(incident)))

    return InsightRule(id=rule.id, name=rule.name, severity=rule.severity, check=check)


def _urgency_rule(tokens: List[str], uppercase_runs: bool) -> InsightRule:
    def check(incident: Incident) -> bool:
        if _is_inactive(incident):
            return False
        text = _text(incident)
        if "!!!" in text or any(token in text for token in tokens):
            return True
        return uppercase_runs and bool(UPPERCASE_RUN_RX.search(text))

    return InsightRule(id="lamentele", name="Lamentele", severity="warning", check=check)


def _near_breach_rule(today: date, threshold: int) -> InsightRule:
    def check(incident: Incident) -> bool:
        if _is_inactive(incident):
            return False
        breached_at = to_timestamp(incident.ora_violazione)
        if breached_at is None:
            return False
        return working_days_since(breached_at, today) >= threshold

    return InsightRule(id="sla_risk_44", name="Rischio SLA44", severity="danger", check=check)


def _address_mismatch_rule() -> InsightRule:
    def check(incident: Incident) -> bool:
        if _is_inactive(incident):
            return False
        intervention = normalize_address(incident.indirizzo_intervento)
        beneficiary = normalize_address(incident.indirizzo_beneficiario)
        if intervention is None or beneficiary is None:
            return False
        return intervention != beneficiary

    return InsightRule(id="address_mismatch", name="Indirizzo diverso", severity="info", check=check)


def _recidivist_rule(repeated: FrozenSet[str]) -> InsightRule:
    def check(incident: Incident) -> bool:
        if _is_inactive(incident):
            return False
        asset = _asset_key(incident.asset)
        return asset is not None and asset in repeated

    return InsightRule(id="repeated_asset", name="Recidivi", severity="warning", check=check)


def _out_of_region_rule(visibility: Mapping[str, bool]) -> InsightRule:
    visible = {name for name, shown in visibility.items() if shown}

    def check(incident: Incident) -> bool:
        region = clean_text(incident.regione) or MISSING_REGION
        return region not in visible

    return InsightRule(id="out_of_region", name="N.d.C.", severity="info", check=check)


def build_ruleset(context: InsightContext) -> List[InsightRule]:
    """Return a fresh list of the rules applicable under ``context``."""
    rules = [_keyword_rule(r) for r in context.keyword_rules]
    rules.append(_urgency_rule(context.urgency_tokens, context.flag_uppercase_runs))
    rules.append(_near_breach_rule(context.today, context.near_breach_working_days))
    rules.append(_address_mismatch_rule())
    if context.repeated_assets:
        rules.append(_recidivist_rule(context.repeated_assets))
    if context.region_visibility:
        rules.append(_out_of_region_rule(context.region_visibility))
    return rules


# ------------------------------------------------------------------ evaluation

def evaluate_insights(
    records: Iterable[RecordLike],
    rules: Iterable[InsightRule],
    include_empty: bool = False,
) -> List[InsightResult]:
    """Count the records each rule flags; rules are independent of each other."""
    incidents = as_incidents(records)
    results: List[InsightResult] = []
    for rule in rules:
        numeri = [i.numero for i in incidents if rule.check(i)]
        if numeri or include_empty:
            results.append(
                InsightResult(id=rule.id, name=rule.name, severity=rule.severity, count=len(numeri), numeri=numeri)
            )
    return results


def flag_records(records: Iterable[RecordLike], rules: Iterable[InsightRule]) -> Dict[str, List[str]]:
    """Map each flagged ``numero`` to the ids of the rules it triggers."""
    rules = list(rules)
    flags: Dict[str, List[str]] = {}
    for incident in as_incidents(records):
        hits = [rule.id for rule in rules if rule.check(incident)]
        if hits:
            flags[incident.numero] = hits
    return flags
