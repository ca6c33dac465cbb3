"""Configuration validation models using Pydantic."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class ClassifierRule(BaseModel):
    """File-name tokens selecting one ingestion profile."""

    profile: Literal[
        "sla_violation",
        "main_feed",
        "post_sale",
        "site_inventory",
        "territory_supplier",
        "planning_update",
    ]
    include: List[str] = Field(..., min_length=1, description="Tokens that must all appear in the name")
    exclude: List[str] = Field(default_factory=list, description="Tokens that must not appear in the name")


DEFAULT_CLASSIFIER_RULES: List[Dict[str, object]] = [
    {"profile": "planning_update", "include": ["PIANIFICAZIONI"]},
    {"profile": "sla_violation", "include": ["MTZ OUT"]},
    {"profile": "main_feed", "include": ["MTZ"], "exclude": ["OUT"]},
    {"profile": "post_sale", "include": ["POST VENDITA"]},
    {"profile": "site_inventory", "include": ["LDS"]},
    {"profile": "territory_supplier", "include": ["DISTRIBUZIONE TERRITORIALE"]},
]


class IngestionConfig(BaseModel):
    """Settings for reading and committing source exports."""

    allowed_extensions: List[str] = Field(
        default_factory=lambda: [".xlsx", ".xlsm", ".xls", ".csv"],
        description="File suffixes accepted by the reader",
    )
    classifier_rules: List[ClassifierRule] = Field(
        default_factory=lambda: [ClassifierRule(**r) for r in DEFAULT_CLASSIFIER_RULES],
        description="Ordered profile rules, most specific first",
    )
    upsert_chunk_size: int = Field(500, ge=1, description="Rows sent to the store per upsert call")

    @field_validator("allowed_extensions")
    @classmethod
    def normalize_extensions(cls, v):
        """Lower-case suffixes and make sure they carry the leading dot."""
        return [e.lower() if e.startswith(".") else f".{e.lower()}" for e in v]


class SlaConfig(BaseModel):
    """Thresholds and targets of the SLA reporting tiers."""

    penalty_minutes: float = Field(2640, gt=0, description="Duration above which a closure is a penalty")
    complessivo_target: float = Field(90.0, ge=0, le=100)
    regional_target: float = Field(80.0, ge=0, le=100)
    controllo_target: float = Field(99.0, ge=0, le=100)
    regionale_target: float = Field(100.0, ge=0, le=100)
    services: Dict[str, str] = Field(
        default_factory=lambda: {"TECNOFIL": "Filiali", "TECNODIR": "Presidi"},
        description="Service class code -> display label",
    )

    @field_validator("services")
    @classmethod
    def upper_service_codes(cls, v):
        if not v:
            raise ValueError("at least one service class is required")
        return {str(k).strip().upper(): label for k, label in v.items()}


class ScorecardConfig(BaseModel):
    """Weights of the composite supplier score."""

    sla_weight: float = Field(0.6, ge=0)
    volume_weight: float = Field(0.3, ge=0)
    penalty_weight: float = Field(0.1, ge=0)

    @model_validator(mode="after")
    def validate_weights(self):
        total = self.sla_weight + self.volume_weight + self.penalty_weight
        if not (0.99 <= total <= 1.01):
            raise ValueError(f"Scorecard weights must sum to 1, got {total:.3f}")
        return self


class KeywordRule(BaseModel):
    """Description keyword insight."""

    id: str
    name: str
    pattern: str = Field(..., description="Case-insensitive regular expression")
    severity: Literal["danger", "warning", "info"] = "danger"


class InsightConfig(BaseModel):
    """Parameters of the standard insight rules."""

    keyword_rules: List[KeywordRule] = Field(
        default_factory=lambda: [
            KeywordRule(id="keyword_cassa", name="Cassa", pattern=r"cass[ae]|cassunica", severity="danger")
        ]
    )
    urgency_tokens: List[str] = Field(default_factory=lambda: ["URGENTE"])
    flag_uppercase_runs: bool = Field(False, description="Also flag runs of 5+ upper-case letters")
    near_breach_working_days: int = Field(2, ge=0)
    recidivist_window_days: int = Field(30, ge=1)


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    logs_dir: Optional[str] = Field(None, description="Directory for system.log; console only when unset")


class AppConfig(BaseModel):
    """Complete ispmonitor configuration."""

    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    sla: SlaConfig = Field(default_factory=SlaConfig)
    scorecard: ScorecardConfig = Field(default_factory=ScorecardConfig)
    insights: InsightConfig = Field(default_factory=InsightConfig)
    region_visibility: Dict[str, bool] = Field(
        default_factory=dict,
        description="Region name -> visible; empty means every region is in scope",
    )
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_and_validate_config(config_dict: Optional[dict]) -> AppConfig:
    """
    Validate a raw configuration mapping.

    Args:
        config_dict: Parsed YAML content; ``None`` or ``{}`` yields the defaults.

    Returns:
        Validated AppConfig object

    Raises:
        ValidationError: If configuration is invalid
    """
    return AppConfig(**(config_dict or {}))


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load a YAML configuration file and validate it."""

    if path is None:
        return AppConfig()
    with open(path, "r", encoding="utf-8") as stream:
        return load_and_validate_config(yaml.safe_load(stream))
