import pytest

from ispmonitor.common.config_validator import ClassifierRule
from ispmonitor.ingestion.classifier import (
    FileProfile,
    classify_file_name,
    header_row_for,
    normalize_file_name,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Export MTZ OUT 2024-05.xlsx", FileProfile.SLA_VIOLATION),
        ("export_mtz_out.xlsx", FileProfile.SLA_VIOLATION),
        ("Export MTZ 2024-05.xlsx", FileProfile.MAIN_FEED),
        ("Task POST VENDITA maggio.xlsx", FileProfile.POST_SALE),
        ("LDS Filiali.xlsx", FileProfile.SITE_INVENTORY),
        ("LDS Sedi.xlsx", FileProfile.SITE_INVENTORY),
        ("DISTRIBUZIONE TERRITORIALE 2024.xlsx", FileProfile.TERRITORY_SUPPLIER),
        ("PIANIFICAZIONI MTZ settimana 19.xlsx", FileProfile.PLANNING_UPDATE),
        ("report vendite.xlsx", FileProfile.UNKNOWN),
    ],
)
def test_classify_file_name_priority(name, expected):
    assert classify_file_name(name) is expected


def test_out_qualifier_wins_over_main_feed():
    """A feed carrying both MTZ and OUT is never treated as the main feed."""
    assert classify_file_name("MTZ OUT.xlsx") is FileProfile.SLA_VIOLATION
    assert classify_file_name("mtz-out.csv") is FileProfile.SLA_VIOLATION


def test_normalize_file_name_collapses_separators():
    assert normalize_file_name("a_b-c.d  e") == "A B C D E"


def test_custom_rules_are_checked_in_order():
    rules = [
        ClassifierRule(profile="post_sale", include=["TASK"]),
        ClassifierRule(profile="main_feed", include=["TASK"]),
    ]
    assert classify_file_name("task list.xlsx", rules) is FileProfile.POST_SALE


def test_site_inventory_uses_second_row_as_header():
    assert header_row_for(FileProfile.SITE_INVENTORY) == 1
    assert header_row_for(FileProfile.MAIN_FEED) == 0
