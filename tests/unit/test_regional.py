"""Unit tests for the regional backlog and SLA tier rollups."""
from datetime import date

import pytest

from ispmonitor.common.config_validator import AppConfig
from ispmonitor.scoring.regional import (
    TierResult,
    TierStatus,
    backlog_kpis,
    daily_flow,
    monthly_overview,
    parts_request_summary,
    regional_backlog,
    sla_attainment,
)


LAZIO_MAY = [
    {"numero": "A1", "regione": "Lazio", "data_chiusura": "2024-05-02", "in_sla": "SI", "durata": 100, "servizio_hd": "TECNOFIL"},
    {"numero": "A2", "regione": "Lazio", "data_chiusura": "2024-05-10", "in_sla": "NO", "durata": 3000, "servizio_hd": "TECNOFIL"},
]


def test_lazio_example_tiers():
    report = sla_attainment(LAZIO_MAY, 2024, 5)
    filiali = report.services["TECNOFIL"]
    assert filiali.label == "Filiali"
    assert filiali.complessivo.percentage == pytest.approx(50.0)
    assert filiali.complessivo.status is TierStatus.FAIL
    assert filiali.controllo.percentage == pytest.approx(50.0)
    assert filiali.penalties == 1
    lazio = filiali.region("Lazio")
    assert lazio.complessivo.percentage == pytest.approx(50.0)
    assert not lazio.passed
    assert lazio.score == 0.0
    assert filiali.regionale.percentage == 0.0
    assert filiali.regionale.status is TierStatus.FAIL
    assert report.closed == 2
    assert report.breaches == 1


def test_service_without_tickets_reports_no_data():
    report = sla_attainment(LAZIO_MAY, 2024, 5)
    presidi = report.services["TECNODIR"]
    assert presidi.complessivo.percentage is None
    assert presidi.complessivo.status is TierStatus.NO_DATA
    assert presidi.controllo.status is TierStatus.NO_DATA
    # The region has no TECNODIR tickets, which counts as a pass
    assert presidi.region("Lazio").passed
    assert presidi.regionale.percentage == 100.0


def test_month_without_closures_is_no_data_everywhere():
    report = sla_attainment(LAZIO_MAY, 2024, 6)
    assert not report.has_data
    for service in report.services.values():
        assert service.complessivo.status is TierStatus.NO_DATA
        assert service.regionale.status is TierStatus.NO_DATA


def test_invalid_sla_values_are_excluded_from_denominators():
    records = LAZIO_MAY + [
        {"numero": "A3", "regione": "Lazio", "data_chiusura": "2024-05-11", "in_sla": "N/D", "durata": 5000, "servizio_hd": "TECNOFIL"},
    ]
    filiali = sla_attainment(records, 2024, 5).services["TECNOFIL"]
    assert filiali.complessivo.denominator == 2
    assert filiali.controllo.denominator == 2
    assert filiali.penalties == 1


def test_penalty_threshold_is_strict():
    records = [
        {"numero": "B1", "regione": "Lazio", "data_chiusura": "2024-05-02", "in_sla": "NO", "durata": 2640, "servizio_hd": "TECNOFIL"},
    ]
    filiali = sla_attainment(records, 2024, 5).services["TECNOFIL"]
    assert filiali.controllo.percentage == 100.0


def test_regional_target_uses_eighty_percent():
    records = [
        {"numero": f"R{i}", "regione": "Puglia", "data_chiusura": "2024-05-03", "in_sla": "SI" if i < 4 else "NO", "servizio_hd": "TECNOFIL"}
        for i in range(5)
    ]
    filiali = sla_attainment(records, 2024, 5).services["TECNOFIL"]
    assert filiali.region("Puglia").complessivo.percentage == 80.0
    assert filiali.region("Puglia").passed
    assert filiali.complessivo.status is TierStatus.FAIL


def test_region_visibility_whitelist():
    records = LAZIO_MAY + [
        {"numero": "T1", "regione": "Toscana", "data_chiusura": "2024-05-02", "in_sla": "SI", "servizio_hd": "TECNOFIL"},
    ]
    report = sla_attainment(records, 2024, 5, region_visibility={"Toscana": True, "Lazio": False})
    filiali = report.services["TECNOFIL"]
    assert [v.region for v in filiali.regions] == ["Toscana"]
    assert filiali.complessivo.percentage == 100.0


def test_tier_result_sentinel():
    assert TierResult(0, 0, 90).percentage is None
    assert TierResult(9, 10, 90).status is TierStatus.PASS


def _backlog_records():
    return [
        {"numero": "1", "regione": "Lazio", "stato": "Aperto", "violazione_avvenuta": True, "data_esecuzione": "2024-05-20T16:00:00.000Z"},
        {"numero": "2", "regione": "Lazio", "stato": "Sospeso", "data_apertura": "2024-05-20T08:00:00.000Z"},
        {"numero": "3", "regione": "Lazio", "stato": "Chiuso", "violazione_avvenuta": True, "data_esecuzione": "2024-05-20"},
        {"numero": "4", "regione": None, "stato": "In Corso", "gruppo_assegnazione": "EUS_LOCKER_LASER_MICROINF_INC"},
        {"numero": "5", "regione": "Toscana", "stato": "Closed", "chiuso": "2024-05-20T10:00:00.000Z"},
    ]


def test_regional_backlog_counts():
    table = regional_backlog(_backlog_records(), today=date(2024, 5, 20)).set_index("region")
    lazio = table.loc["Lazio"]
    assert lazio["total"] == 3
    assert lazio["backlog"] == 2
    assert lazio["suspended"] == 1
    # Closed ticket 3 is excluded from breach and expiring counts
    assert lazio["sla_breach"] == 1
    assert lazio["expiring_today"] == 1
    assert lazio["opened_today"] == 1
    assert table.loc["N/D", "lockers"] == 1
    assert table.loc["Toscana", "backlog"] == 0
    assert table.loc["Toscana", "closed_today"] == 1
    assert list(table.index)[0] == "Lazio"


def test_regional_backlog_empty():
    table = regional_backlog([], today=date(2024, 5, 20))
    assert table.empty
    assert "backlog" in table.columns


def test_backlog_kpis():
    kpis = backlog_kpis(_backlog_records(), today=date(2024, 5, 20))
    assert kpis["total"] == 5
    assert kpis["backlog"] == 3
    assert kpis["suspended"] == 1
    assert kpis["in_progress"] == 2
    assert kpis["closed"] == 2
    assert kpis["sla_breach"] == 1
    assert kpis["closed_today"] == 1


def test_daily_flow():
    records = LAZIO_MAY + [{"numero": "O1", "data_apertura": "2024-05-02T09:00:00.000Z"}]
    flow = daily_flow(records, 2024, 5)
    assert len(flow) == 31
    day2 = flow[flow["day"] == 2].iloc[0]
    assert (day2["opened"], day2["closed"], day2["sla_violations"]) == (1, 1, 0)
    day10 = flow[flow["day"] == 10].iloc[0]
    assert (day10["closed"], day10["sla_violations"]) == (1, 1)
    assert flow["date"].iloc[0] == date(2024, 5, 1)


def test_parts_request_summary():
    records = [
        {"numero": "1", "parti_richieste": "Fusore", "stato_richiesta": "In gestione"},
        {"numero": "2", "richiesta_apparato": True},
        {"numero": "3", "parti_richieste": "Rullo|Toner", "stato_richiesta": "CONSEGNATO"},
        {"numero": "4"},
    ]
    summary = parts_request_summary(records)
    assert summary["Pending"] == 1
    assert summary["In gestione"] == 1
    assert summary["CONSEGNATO"] == 1
    assert summary["Bocciato"] == 0
    assert list(summary)[:5] == ["Pending", "In gestione", "Disponibile", "Evasione", "CONSEGNATO"]


def test_monthly_overview_compares_with_previous_month():
    records = LAZIO_MAY + [
        {"numero": "P1", "regione": "Lazio", "data_chiusura": "2024-04-30", "in_sla": "SI", "servizio_hd": "TECNOFIL", "data_apertura": "2024-04-01"},
    ]
    overview = monthly_overview(records, 2024, 5, AppConfig())
    assert overview.current.closed == 2
    assert overview.previous.closed == 1
    assert overview.previous.month == 4
    assert overview.delta("closed") == 1
    assert overview.delta("complessivo", "TECNOFIL") == pytest.approx(-50.0)
    assert overview.delta("opened") == -1
    # No breaches last month, so there is nothing to compare against
    assert overview.delta("sla_breaches") is None


def test_monthly_overview_wraps_year():
    overview = monthly_overview([], 2024, 1)
    assert (overview.previous.year, overview.previous.month) == (2023, 12)
