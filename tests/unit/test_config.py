from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from ispmonitor.common.config_validator import AppConfig, load_and_validate_config, load_config


def test_defaults_are_complete():
    cfg = load_config(None)
    assert cfg.sla.penalty_minutes == 2640
    assert cfg.sla.services == {"TECNOFIL": "Filiali", "TECNODIR": "Presidi"}
    assert (cfg.scorecard.sla_weight, cfg.scorecard.volume_weight, cfg.scorecard.penalty_weight) == (0.6, 0.3, 0.1)
    assert cfg.insights.near_breach_working_days == 2
    assert cfg.ingestion.upsert_chunk_size == 500
    assert [r.profile for r in cfg.ingestion.classifier_rules][:3] == ["planning_update", "sla_violation", "main_feed"]


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        dedent(
            """
            ingestion:
              allowed_extensions: [XLSX, csv]
              upsert_chunk_size: 50
            sla:
              services:
                tecnofil: Filiali
            region_visibility:
              Lazio: true
              Non di Competenza: false
            logging:
              level: DEBUG
            """
        )
    )
    cfg = load_config(path)
    assert cfg.ingestion.allowed_extensions == [".xlsx", ".csv"]
    assert cfg.ingestion.upsert_chunk_size == 50
    assert cfg.sla.services == {"TECNOFIL": "Filiali"}
    assert cfg.region_visibility == {"Lazio": True, "Non di Competenza": False}
    assert cfg.logging.level == "DEBUG"


def test_scorecard_weights_must_sum_to_one():
    with pytest.raises(ValidationError):
        load_and_validate_config({"scorecard": {"sla_weight": 0.5, "volume_weight": 0.3, "penalty_weight": 0.1}})


def test_invalid_classifier_profile_is_rejected():
    with pytest.raises(ValidationError):
        AppConfig(ingestion={"classifier_rules": [{"profile": "bogus", "include": ["X"]}]})


def test_empty_mapping_yields_defaults():
    assert load_and_validate_config({}) == AppConfig()


def test_shipped_config_matches_defaults():
    shipped = Path(__file__).resolve().parents[2] / "config.yaml"
    assert load_config(shipped) == AppConfig()
