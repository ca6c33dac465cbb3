from ispmonitor.models import ACTIVE_STATES
from ispmonitor.store import InMemoryStore


def _store():
    return InMemoryStore(
        records=[
            {"numero": "A", "stato": "Aperto", "regione": "Lazio"},
            {"numero": "B", "stato": "Chiuso", "regione": "Lazio"},
            {"numero": "C", "stato": "Sospeso", "regione": "Toscana"},
        ]
    )


def test_query_filters_by_value_and_collection():
    store = _store()
    assert [r["numero"] for r in store.query({"regione": "Lazio"})] == ["A", "B"]
    assert sorted(r["numero"] for r in store.query({"stato": ACTIVE_STATES})) == ["A", "C"]
    assert len(store.query()) == 3


def test_upsert_merges_into_existing_record():
    store = _store()
    result = store.upsert([{"numero": "A", "in_sla": "SI"}, {"numero": "D", "stato": "Aperto"}])
    assert result.success == 2
    assert result.failures == []
    assert store.get("A") == {"numero": "A", "stato": "Aperto", "regione": "Lazio", "in_sla": "SI"}
    assert len(store) == 4


def test_validator_rejects_rows_individually():
    store = InMemoryStore(validator=lambda row: "bad region" if row.get("regione") == "X" else None)
    result = store.upsert([{"numero": "A", "regione": "X"}, {"numero": "B", "regione": "Lazio"}])
    assert result.success == 1
    assert result.failures == [("A", "bad region")]
    assert store.get("A") is None


def test_update_by_key_reports_missing_record():
    store = _store()
    assert store.update_by_key("A", {"stato": "Reassigned"}).ok
    assert store.get("A")["stato"] == "Reassigned"
    missing = store.update_by_key("Z", {"stato": "Reassigned"})
    assert not missing.ok
    assert "Z" in missing.error


def test_query_returns_copies():
    store = _store()
    store.query({"numero": "A"})[0]["stato"] = "mutated"
    assert store.get("A")["stato"] == "Aperto"


def test_replace_suppliers_normalizes_keys():
    store = InMemoryStore(suppliers={"RM": "Alfa"})
    count = store.replace_suppliers([{"provincia": " rm", "fornitore": "Beta"}, {"provincia": "MI", "fornitore": ""}])
    assert count == 1
    assert store.load_suppliers() == {"RM": "Beta"}
