"""Canonical incident record and its wire-format conversions."""
from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from .ingestion.coercion import clean_text, coerce_bool, coerce_number, is_missing


CLOSED_STATES = ("Chiuso", "Closed")
SUSPENDED_STATES = ("Sospeso", "Suspended")
IN_PROGRESS_STATES = ("Aperto", "Open", "In Corso", "In Lavorazione")
ACTIVE_STATES = IN_PROGRESS_STATES + SUSPENDED_STATES
# Insight rules also ignore resolved and cancelled tickets
INACTIVE_INSIGHT_STATES = ("Chiuso", "Closed", "Resolved", "Annullato")
REASSIGNED_STATE = "Reassigned"

REQUEST_LIFECYCLE = ("Pending", "In gestione", "Disponibile", "Evasione", "CONSEGNATO")
REQUEST_SIDE_EXITS = ("Bocciato", "Annullato")
REQUEST_TERMINAL_STATES = ("CONSEGNATO",) + REQUEST_SIDE_EXITS

LOCKER_GROUP = "EUS_LOCKER_LASER_MICROINF_INC"
FLEET_GROUP = "EUS_LASER_MICROINF_INC"

PARTS_SEPARATOR = "|"
NOTE_SEPARATOR = "\n\n"
NOTE_TIMESTAMP_FMT = "%d/%m/%Y, %H:%M"
NOTE_RX = re.compile(r"^\[(?P<timestamp>[^\]]*)\]\s*\[(?P<author>[^\]]*)\]\s?(?P<text>.*)$", re.DOTALL)


@dataclass(frozen=True)
class NoteEntry:
    """One line of the append-only operator note log."""

    timestamp: str
    author: str
    text: str

    @classmethod
    def create(cls, text: str, author: str, when: datetime) -> "NoteEntry":
        return cls(timestamp=when.strftime(NOTE_TIMESTAMP_FMT), author=author, text=text)

    def render(self) -> str:
        return f"[{self.timestamp}] [{self.author}] {self.text}"


def parse_notes(history: Optional[str]) -> List[NoteEntry]:
    """Split a stored note history into entries.

    Blocks that do not carry the ``[timestamp] [author]`` prefix are kept as
    entries with empty timestamp and author so no text is ever lost.
    """
    if is_missing(history):
        return []
    entries: List[NoteEntry] = []
    for block in str(history).split(NOTE_SEPARATOR):
        block = block.strip("\n")
        if not block.strip():
            continue
        match = NOTE_RX.match(block)
        if match:
            entries.append(NoteEntry(match.group("timestamp"), match.group("author"), match.group("text")))
        else:
            entries.append(NoteEntry("", "", block))
    return entries


def serialize_notes(entries: Iterable[NoteEntry]) -> Optional[str]:
    rendered = [e.render() if (e.timestamp or e.author) else e.text for e in entries]
    return NOTE_SEPARATOR.join(rendered) if rendered else None


def split_parts(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(p).strip() for p in value if str(p).strip()]
    text = clean_text(value)
    if not text:
        return []
    return [p.strip() for p in text.split(PARTS_SEPARATOR) if p.strip()]


def join_parts(parts: Iterable[str]) -> str:
    return PARTS_SEPARATOR.join(parts)


@dataclass
class Incident:
    """Canonical incident record.

    Known attributes are explicit fields; any other source column is kept in
    ``extra``. ``provided`` lists the attributes a normalized source row
    actually carried, so partial feeds only overwrite what they own.
    """

    numero: str
    # classification
    stato: Optional[str] = None
    gruppo_assegnazione: Optional[str] = None
    # temporal
    data_apertura: Optional[str] = None
    data_aggiornamento: Optional[str] = None
    data_ultima_riassegnazione: Optional[str] = None
    chiuso: Optional[str] = None
    data_chiusura: Optional[str] = None
    data_esecuzione: Optional[str] = None
    pianificazione: Optional[str] = None
    ora_violazione: Optional[str] = None
    data_richiesta_parti: Optional[str] = None
    # SLA
    violazione_avvenuta: Optional[bool] = None
    in_sla: Optional[str] = None
    durata: Optional[float] = None
    servizio_hd: Optional[str] = None
    # location / ownership
    regione: Optional[str] = None
    citta: Optional[str] = None
    provincia_stato: Optional[str] = None
    fornitore: Optional[str] = None
    asset: Optional[str] = None
    beneficiario: Optional[str] = None
    indirizzo_intervento: Optional[str] = None
    indirizzo_beneficiario: Optional[str] = None
    # parts workflow
    parti_richieste: List[str] = field(default_factory=list)
    richiesta_apparato: Optional[bool] = None
    stato_richiesta: Optional[str] = None
    ldv: Optional[str] = None
    data_consegna: Optional[str] = None
    # free text
    breve_descrizione: Optional[str] = None
    descrizione: Optional[str] = None
    note_laser: List[NoteEntry] = field(default_factory=list)
    # passthrough
    extra: Dict[str, Any] = field(default_factory=dict)
    provided: FrozenSet[str] = field(default_factory=frozenset, compare=False, repr=False)

    @property
    def is_closed(self) -> bool:
        return (self.stato or "").strip() in CLOSED_STATES

    @property
    def is_active(self) -> bool:
        return (self.stato or "").strip() in ACTIVE_STATES

    @property
    def is_suspended(self) -> bool:
        return (self.stato or "").strip() in SUSPENDED_STATES

    @property
    def is_locker(self) -> bool:
        return (self.gruppo_assegnazione or "").strip().upper() == LOCKER_GROUP

    @property
    def has_parts_request(self) -> bool:
        return bool(self.parti_richieste) or bool(self.richiesta_apparato)

    @classmethod
    def from_fields(cls, values: Mapping[str, Any], provided: Optional[Iterable[str]] = None) -> "Incident":
        """Build an incident from canonical attribute names.

        Unknown names go to ``extra``. Values are expected to be coerced already.
        """
        known = KNOWN_FIELDS
        kwargs: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in values.items():
            if key in known:
                kwargs[key] = value
            else:
                extra[key] = value
        if "parti_richieste" in kwargs:
            kwargs["parti_richieste"] = split_parts(kwargs["parti_richieste"])
        if "note_laser" in kwargs and not isinstance(kwargs["note_laser"], list):
            kwargs["note_laser"] = parse_notes(kwargs["note_laser"])
        kwargs["numero"] = clean_text(kwargs.get("numero")) or ""
        return cls(**kwargs, extra=extra, provided=frozenset(provided if provided is not None else values.keys()))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Incident":
        """Read a store record (wire format) into an incident."""
        values = {k: (None if is_missing(v) else v) for k, v in record.items()}
        if values.get("durata") is not None:
            values["durata"] = coerce_number(values["durata"])
        for flag in ("violazione_avvenuta", "richiesta_apparato"):
            if values.get(flag) is not None:
                values[flag] = coerce_bool(values[flag])
        return cls.from_fields(values, provided=values.keys())

    def to_record(self, only_provided: bool = False) -> Dict[str, Any]:
        """Serialize to the store wire format.

        With ``only_provided`` the record is restricted to ``numero`` plus the
        attributes in ``provided``, which is the upsert patch of a partial feed.
        """
        record: Dict[str, Any] = {}
        for name in KNOWN_FIELDS:
            value = getattr(self, name)
            if name == "parti_richieste":
                value = join_parts(value)
            elif name == "note_laser":
                value = serialize_notes(value)
            record[name] = value
        for key, value in self.extra.items():
            record.setdefault(key, value)
        if only_provided:
            keep = set(self.provided) | {"numero"}
            record = {k: v for k, v in record.items() if k in keep}
        return record

    def with_changes(self, **changes: Any) -> "Incident":
        """Return a copy with ``changes`` applied and marked as provided."""
        return replace(self, **changes, provided=self.provided | frozenset(changes))


KNOWN_FIELDS = tuple(f.name for f in fields(Incident) if f.name not in ("extra", "provided"))
