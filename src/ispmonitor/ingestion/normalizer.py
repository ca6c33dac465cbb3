"""Per-profile column remapping of source rows into canonical incidents.

Each profile owns a fixed dictionary from the (Italian, business-language)
source headers to canonical attribute names together with the coercion to
apply. Columns absent from a sheet simply yield no value; columns no profile
field consumes are retained as passthrough attributes.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from ..models import FLEET_GROUP, KNOWN_FIELDS, Incident
from .classifier import FileProfile
from .coercion import clean_text, coerce_date, coerce_date_only, coerce_flag, coerce_number, is_missing
from .suppliers import SupplierResolver


logger = logging.getLogger("ispmonitor.ingestion.normalizer")

SITE_INVENTORY_DEFAULTS: Dict[str, Any] = {
    "stato": "Chiuso",
    "gruppo_assegnazione": FLEET_GROUP,
    "breve_descrizione": "Incidente importato da LDS - Dati parziali",
}

SITE_INVENTORY_ID_COLUMNS = ("IdTicket", "ID Ticket", "Numero", "Ticket", "id_ticket", "IDTicket")


@dataclass(frozen=True)
class FieldSpec:
    target: str
    sources: Tuple[str, ...]
    coerce: Callable[[Any], Any] = clean_text


def _f(target: str, *sources: str, coerce: Callable[[Any], Any] = clean_text) -> FieldSpec:
    return FieldSpec(target=target, sources=tuple(sources), coerce=coerce)


SLA_VIOLATION_FIELDS: Tuple[FieldSpec, ...] = (
    _f("numero", "Numero"),
    _f("ora_violazione", "Ora violazione", coerce=coerce_date),
    _f("violazione_avvenuta", "Violazione avvenuta", coerce=coerce_flag),
)

MAIN_FEED_FIELDS: Tuple[FieldSpec, ...] = (
    _f("numero", "Numero"),
    _f("breve_descrizione", "Breve descrizione"),
    _f("descrizione", "Descrizione"),
    _f("stato", "Stato"),
    _f("data_apertura", "Data apertura", coerce=coerce_date),
    _f("data_esecuzione", "Data di esecuzione", coerce=coerce_date),
    _f("data_pianificazione_intervento", "Data di pianificazione intervento", coerce=coerce_date),
    _f("in_carico_a", "In carico a"),
    _f("beneficiario", "Beneficiario"),
    _f("indirizzo_intervento", "Indirizzo di Intervento"),
    _f("indirizzo_beneficiario", "Indirizzo Beneficiario"),
    _f("recall", "Recall"),
    _f("data_aggiornamento", "Data aggiornamento", coerce=coerce_date),
    _f("item", "Item", "item", "ITEM"),
    _f("regione", "Regione"),
    _f("sede_presidiata", "Sede Presidiata"),
    _f("hw_model", "HW Model"),
    _f("provincia_stato", "Provincia/Stato"),
    _f("categoria_manutentiva", "Categoria Manutentiva"),
    _f("citta", "Città", "Citta"),
    _f("asset", "Asset"),
    _f("serial_number", "Serial number"),
    _f("data_ultima_riassegnazione", "Data Ultima Riassegnazione", coerce=coerce_date),
    _f("ambito", "Ambito"),
    _f("chiuso", "Chiuso", coerce=coerce_date),
    _f("gruppo_assegnazione", "Gruppo di assegnazione"),
    _f("violazione_avvenuta", "Violazione avvenuta", coerce=coerce_flag),
    _f("fornitore", "Fornitore"),
)

POST_SALE_FIELDS: Tuple[FieldSpec, ...] = (
    # In this export "Numero" is the task and "Incidente" the ticket number
    _f("task", "Numero"),
    _f("numero", "Incidente"),
    _f("item", "Item", "item", "ITEM"),
    _f("nome", "Nome"),
    _f("tag_asset", "Tag asset"),
    _f("numero_di_serie", "Numero di serie"),
    _f("motivo_stato", "Motivo Stato"),
    _f("note_appuntamento", "Note appuntamento"),
    _f("chiuso", "Chiuso", coerce=coerce_date),
    _f("descrizione_classe_guasto", "Descrizione classe guasto"),
    _f("descrizione_guasto_effettivo", "Descrizione guasto effettivo"),
    _f("descrizione", "Descrizione"),
)

SITE_INVENTORY_FIELDS: Tuple[FieldSpec, ...] = (
    _f("numero", *SITE_INVENTORY_ID_COLUMNS),
    _f("manutentore", "Manutentore"),
    _f("clone", "Clone"),
    _f("data_pr_trasf", "DataPrTrasf", coerce=coerce_date_only),
    _f("data_sol_guasto", "DataSolGuasto", coerce=coerce_date_only),
    _f("data_chiusura", "DataChiusura", coerce=coerce_date_only),
    _f("classe_app", "ClasseApp"),
    _f("servizio_hd", "ServizioHD"),
    _f("causale", "Causale"),
    _f("durata", "Durata", coerce=coerce_number),
    _f("in_sla", "inSla"),
    _f("dbanca", "DBANCA"),
    _f("citta", "Citta"),
    _f("indirizzo_intervento", "Indirizzo"),
    _f("regione", "Regione"),
    _f("area_metro", "AreaMetro"),
    _f("descrizione_dipendenza", "Descrizione_Dipendenza"),
    _f("modello", "Modello"),
    _f("classe_hw", "Classe_HW"),
    _f("tipo_apparato", "Tipo_Apparato"),
)

PROFILE_FIELDS: Dict[FileProfile, Tuple[FieldSpec, ...]] = {
    FileProfile.SLA_VIOLATION: SLA_VIOLATION_FIELDS,
    FileProfile.MAIN_FEED: MAIN_FEED_FIELDS,
    FileProfile.POST_SALE: POST_SALE_FIELDS,
    FileProfile.SITE_INVENTORY: SITE_INVENTORY_FIELDS,
}


@dataclass
class NormalizationResult:
    profile: FileProfile
    records: List[Incident] = field(default_factory=list)
    rows_read: int = 0
    dropped: int = 0
    duplicates: int = 0
    unresolved_suppliers: int = 0

    @property
    def ids(self) -> set[str]:
        return {r.numero for r in self.records}


@dataclass
class PlanningResult:
    updates: List[Tuple[str, Any]] = field(default_factory=list)
    skipped: int = 0


def slugify_header(text: object) -> str:
    """Snake-case a source header: ``Data Prevista (UTC)`` -> ``data_prevista_utc``."""
    slug = re.sub(r"[^0-9a-z]+", "_", str(text).strip().lower())
    return slug.strip("_")


def _first_value(row: Mapping[str, Any], sources: Tuple[str, ...]) -> Any:
    for name in sources:
        if name in row and not is_missing(row[name]):
            return row[name]
    return None


def _passthrough(row: Mapping[str, Any], consumed: Collection[str], targets: Collection[str]) -> Dict[str, Any]:
    extra: Dict[str, Any] = {}
    for column, value in row.items():
        if column in consumed or is_missing(value):
            continue
        key = slugify_header(column)
        if not key:
            continue
        if key in targets or key in KNOWN_FIELDS:
            key = f"src_{key}"
        if isinstance(value, pd.Timestamp):
            value = coerce_date(value)
        extra[key] = value
    return extra


def map_row(row: Mapping[str, Any], specs: Tuple[FieldSpec, ...]) -> Dict[str, Any]:
    """Apply a profile dictionary to one source row; blank cells are omitted."""
    values: Dict[str, Any] = {}
    for spec in specs:
        raw = _first_value(row, spec.sources)
        value = spec.coerce(raw)
        if value is None:
            continue
        values[spec.target] = value
    return values


def normalize_frame(
    profile: FileProfile,
    frame: pd.DataFrame,
    resolver: Optional[SupplierResolver] = None,
    existing_ids: Optional[Collection[str]] = None,
) -> NormalizationResult:
    """Normalize every row of ``frame`` under ``profile``.

    Args:
        profile: One of the record-producing profiles.
        frame: First sheet of the export, header already applied.
        resolver: Province -> supplier lookup used by the main feed.
        existing_ids: Ticket numbers already in the store; site-inventory rows
            for other tickets receive the creation defaults.

    Returns:
        NormalizationResult with one Incident per surviving ticket number.
    """
    if profile not in PROFILE_FIELDS:
        raise ValueError(f"Profile {profile.value} does not produce incident records")

    specs = PROFILE_FIELDS[profile]
    consumed = {src for spec in specs for src in spec.sources}
    targets = {spec.target for spec in specs}
    existing = set(existing_ids or ())
    result = NormalizationResult(profile=profile, rows_read=len(frame))

    if profile is FileProfile.SITE_INVENTORY and len(frame) and not any(c in frame.columns for c in SITE_INVENTORY_ID_COLUMNS):
        logger.warning(
            "Could not find 'IdTicket' or 'Numero' column. Available keys: %s",
            ", ".join(str(c) for c in frame.columns),
        )

    by_numero: Dict[str, Incident] = {}
    for row in frame.to_dict(orient="records"):
        values = map_row(row, specs)
        numero = values.get("numero")
        if not numero:
            result.dropped += 1
            continue

        if profile is FileProfile.MAIN_FEED and "fornitore" not in values:
            supplier = resolver.resolve(values.get("provincia_stato")) if resolver is not None else None
            if supplier:
                values["fornitore"] = supplier
            elif values.get("provincia_stato"):
                result.unresolved_suppliers += 1

        if profile is FileProfile.SITE_INVENTORY and numero not in existing:
            for key, default in SITE_INVENTORY_DEFAULTS.items():
                values.setdefault(key, default)
            if "data_chiusura" in values:
                # Inventory-only tickets take the closing date as opening date
                values.setdefault("data_apertura", values["data_chiusura"])

        values.update(_passthrough(row, consumed, targets))
        if numero in by_numero:
            result.duplicates += 1
        by_numero[numero] = Incident.from_fields(values)

    result.records = list(by_numero.values())
    if result.dropped:
        logger.info("Dropped %d rows without ticket number (%s)", result.dropped, profile.value)
    if result.duplicates:
        logger.info("Collapsed %d duplicate ticket rows (%s)", result.duplicates, profile.value)
    if result.unresolved_suppliers:
        logger.info("No supplier mapping for %d rows", result.unresolved_suppliers)
    return result


def normalize_planning_rows(frame: pd.DataFrame) -> PlanningResult:
    """Extract ``(numero, pianificazione)`` updates from a planning export."""
    result = PlanningResult()
    for row in frame.to_dict(orient="records"):
        numero = clean_text(_first_value(row, ("Numero", "numero")))
        planned = coerce_date(_first_value(row, ("Pianificazione", "pianificazione")))
        if not numero or planned is None:
            result.skipped += 1
            continue
        result.updates.append((numero, planned))
    return result
