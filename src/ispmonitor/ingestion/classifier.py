"""File-name based selection of the ingestion profile."""
from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Optional, Sequence

from ..common.config_validator import DEFAULT_CLASSIFIER_RULES, ClassifierRule


logger = logging.getLogger("ispmonitor.ingestion.classifier")

_SEPARATORS = re.compile(r"[\s_\-.]+")


class FileProfile(str, Enum):
    SLA_VIOLATION = "sla_violation"
    MAIN_FEED = "main_feed"
    POST_SALE = "post_sale"
    SITE_INVENTORY = "site_inventory"
    TERRITORY_SUPPLIER = "territory_supplier"
    PLANNING_UPDATE = "planning_update"
    UNKNOWN = "unknown"


# Profiles whose rows become incident records
RECORD_PROFILES = frozenset(
    {FileProfile.SLA_VIOLATION, FileProfile.MAIN_FEED, FileProfile.POST_SALE, FileProfile.SITE_INVENTORY}
)

DEFAULT_RULES: tuple[ClassifierRule, ...] = tuple(ClassifierRule(**r) for r in DEFAULT_CLASSIFIER_RULES)


def normalize_file_name(name: str) -> str:
    """Upper-case a file name and collapse separators to single spaces.

    ``AAA_MTZ-OUT.xlsx`` and ``AAA MTZ OUT.xlsx`` both become ``AAA MTZ OUT XLSX``.
    """
    return _SEPARATORS.sub(" ", str(name)).strip().upper()


def _matches(normalized: str, rule: ClassifierRule) -> bool:
    if not all(normalize_file_name(tok) in normalized for tok in rule.include):
        return False
    return not any(normalize_file_name(tok) in normalized for tok in rule.exclude)


def classify_file_name(name: str, rules: Optional[Sequence[ClassifierRule]] = None) -> FileProfile:
    """Return the ingestion profile for ``name``.

    Rules are checked in order, so the most specific tokens must come first
    (an ``MTZ OUT`` export is an SLA-violation feed, not the main feed).
    Unknown names are logged and mapped to :attr:`FileProfile.UNKNOWN`.
    """
    normalized = normalize_file_name(name)
    for rule in rules if rules is not None else DEFAULT_RULES:
        if _matches(normalized, rule):
            profile = FileProfile(rule.profile)
            logger.debug("Classified %s as %s", name, profile.value)
            return profile
    logger.info("Unknown file type for %s; skipping", name)
    return FileProfile.UNKNOWN


def header_row_for(profile: FileProfile) -> int:
    """Zero-based header row: site-inventory sheets carry a title on row 1."""
    return 1 if profile is FileProfile.SITE_INVENTORY else 0
