"""Unit tests for per-profile normalization of source rows."""
import pandas as pd
import pytest

from ispmonitor.ingestion.classifier import FileProfile
from ispmonitor.ingestion.normalizer import (
    SITE_INVENTORY_DEFAULTS,
    normalize_frame,
    normalize_planning_rows,
    slugify_header,
)
from ispmonitor.ingestion.suppliers import SupplierResolver


def _main_feed():
    return pd.DataFrame(
        {
            "Numero": ["INC001", None, "INC002"],
            "Stato": ["Aperto", "Aperto", "Sospeso"],
            "Data apertura": [45414.5, 45414, "03/05/2024 08:00"],
            "Regione": ["Lazio", "Lazio", "Toscana"],
            "Provincia/Stato": ["rm", "rm", "FI"],
            "Violazione avvenuta": ["VERO", "FALSO", None],
            "Colonna Extra": ["x", "y", "z"],
        }
    )


def test_rows_without_numero_are_dropped_and_counted():
    result = normalize_frame(FileProfile.MAIN_FEED, _main_feed())
    assert result.rows_read == 3
    assert result.dropped == 1
    assert result.ids == {"INC001", "INC002"}


def test_main_feed_mapping_and_coercion():
    result = normalize_frame(FileProfile.MAIN_FEED, _main_feed())
    first = next(r for r in result.records if r.numero == "INC001")
    assert first.stato == "Aperto"
    assert first.data_apertura == "2024-05-02T12:00:00.000Z"
    assert first.violazione_avvenuta is True
    assert first.extra["colonna_extra"] == "x"
    second = next(r for r in result.records if r.numero == "INC002")
    assert second.data_apertura == "2024-05-03T08:00:00.000Z"
    # A blank flag cell is left unset so it cannot clear an earlier breach
    assert second.violazione_avvenuta is None
    assert "violazione_avvenuta" not in second.provided


def test_main_feed_resolves_supplier_from_province():
    resolver = SupplierResolver({"RM": "Alfa Service"})
    result = normalize_frame(FileProfile.MAIN_FEED, _main_feed(), resolver=resolver)
    by_id = {r.numero: r for r in result.records}
    assert by_id["INC001"].fornitore == "Alfa Service"
    assert by_id["INC002"].fornitore is None
    assert result.unresolved_suppliers == 1


def test_source_supplier_column_wins_over_resolver():
    frame = _main_feed().assign(Fornitore=["Beta Srl", None, None])
    resolver = SupplierResolver({"RM": "Alfa Service"})
    result = normalize_frame(FileProfile.MAIN_FEED, frame, resolver=resolver)
    assert {r.numero: r.fornitore for r in result.records}["INC001"] == "Beta Srl"


def test_post_sale_swaps_task_and_ticket_columns():
    frame = pd.DataFrame(
        {
            "Numero": ["TASK9"],
            "Incidente": ["INC001"],
            "Motivo Stato": ["Attesa ricambi"],
            "Chiuso": ["10/05/2024 14:00"],
        }
    )
    result = normalize_frame(FileProfile.POST_SALE, frame)
    (record,) = result.records
    assert record.numero == "INC001"
    assert record.extra["task"] == "TASK9"
    assert record.extra["motivo_stato"] == "Attesa ricambi"
    assert record.chiuso == "2024-05-10T14:00:00.000Z"


def test_sla_violation_profile_only_carries_its_fields():
    frame = pd.DataFrame({"Numero": ["INC001"], "Ora violazione": [45414.25], "Violazione avvenuta": ["SI"]})
    (record,) = normalize_frame(FileProfile.SLA_VIOLATION, frame).records
    assert record.to_record(only_provided=True) == {
        "numero": "INC001",
        "ora_violazione": "2024-05-02T06:00:00.000Z",
        "violazione_avvenuta": True,
    }


def _lds():
    return pd.DataFrame(
        {
            "IdTicket": ["INC001", "INC777"],
            "DataChiusura": [45414.75, "10/05/2024"],
            "ServizioHD": ["TECNOFIL", "TECNODIR"],
            "inSla": ["SI", "NO"],
            "Durata": ["100", "3000,5"],
            "Regione": ["Lazio", "Lazio"],
        }
    )


def test_site_inventory_dates_are_date_only_and_open_falls_back_to_close():
    result = normalize_frame(FileProfile.SITE_INVENTORY, _lds(), existing_ids={"INC001"})
    by_id = {r.numero: r for r in result.records}
    assert by_id["INC001"].data_chiusura == "2024-05-02"
    # Known tickets keep their own opening date
    assert "data_apertura" not in by_id["INC001"].provided
    assert by_id["INC777"].data_apertura == "2024-05-10"
    assert by_id["INC777"].durata == 3000.5


def test_site_inventory_defaults_only_for_new_tickets():
    result = normalize_frame(FileProfile.SITE_INVENTORY, _lds(), existing_ids={"INC001"})
    by_id = {r.numero: r for r in result.records}
    existing = by_id["INC001"]
    assert existing.stato is None
    assert "stato" not in existing.provided
    new = by_id["INC777"]
    assert new.stato == SITE_INVENTORY_DEFAULTS["stato"]
    assert new.gruppo_assegnazione == SITE_INVENTORY_DEFAULTS["gruppo_assegnazione"]
    assert new.breve_descrizione == SITE_INVENTORY_DEFAULTS["breve_descrizione"]


def test_duplicate_numero_keeps_last_row():
    frame = pd.DataFrame({"Numero": ["INC001", "INC001"], "Stato": ["Aperto", "Chiuso"]})
    result = normalize_frame(FileProfile.MAIN_FEED, frame)
    assert result.duplicates == 1
    (record,) = result.records
    assert record.stato == "Chiuso"


def test_passthrough_collision_gets_prefix():
    frame = pd.DataFrame({"Numero": ["INC001"], "stato": ["raw"], "Stato": ["Aperto"]})
    (record,) = normalize_frame(FileProfile.MAIN_FEED, frame).records
    assert record.stato == "Aperto"
    assert record.extra["src_stato"] == "raw"


def test_planning_rows():
    frame = pd.DataFrame({"Numero": ["INC001", "INC002", None], "Pianificazione": ["20/05/2024 09:00", None, 45430]})
    planning = normalize_planning_rows(frame)
    assert planning.updates == [("INC001", "2024-05-20T09:00:00.000Z")]
    assert planning.skipped == 2


def test_non_record_profile_is_rejected():
    with pytest.raises(ValueError):
        normalize_frame(FileProfile.TERRITORY_SUPPLIER, pd.DataFrame())


def test_slugify_header():
    assert slugify_header("Data Prevista (UTC)") == "data_prevista_utc"
