import pandas as pd

from ispmonitor.ingestion.suppliers import SupplierResolver, normalize_province, parse_territory_rows
from ispmonitor.store import InMemoryStore


def test_resolve_is_exact_match_on_normalized_key():
    resolver = SupplierResolver({" rm ": "Alfa Service", "MI": "Beta Srl"})
    assert resolver.resolve("RM") == "Alfa Service"
    assert resolver.resolve("  mi") == "Beta Srl"
    assert resolver.resolve("ROMA") is None
    assert resolver.resolve(None) is None


def test_refresh_replaces_per_province_without_touching_others():
    resolver = SupplierResolver({"RM": "Alfa Service", "MI": "Beta Srl"})
    count = resolver.refresh([{"provincia": "rm", "fornitore": "Gamma Spa"}, {"provincia": "", "fornitore": "X"}])
    assert count == 1
    assert resolver.resolve("RM") == "Gamma Spa"
    assert resolver.resolve("MI") == "Beta Srl"


def test_from_store_loads_the_supplier_table():
    store = InMemoryStore(suppliers={"to": "Delta"})
    resolver = SupplierResolver.from_store(store)
    assert len(resolver) == 1
    assert resolver.resolve("TO") == "Delta"


def test_parse_territory_rows_accepts_header_variants():
    frame = pd.DataFrame(
        {
            "Provincia/Stato": ["rm", None, "NA"],
            "Fornitore": ["Alfa Service", "Beta Srl", None],
        }
    )
    assert parse_territory_rows(frame) == [{"provincia": "RM", "fornitore": "Alfa Service"}]

    alt = pd.DataFrame({"provincia": ["fi"], "fornitore": ["Gamma Spa"]})
    assert parse_territory_rows(alt) == [{"provincia": "FI", "fornitore": "Gamma Spa"}]


def test_normalize_province():
    assert normalize_province(" bo ") == "BO"
    assert normalize_province(float("nan")) is None
