"""Operator actions on a single incident.

Every helper returns a new :class:`Incident` with the touched attributes
marked as provided, so ``incident.to_record(only_provided=True)`` (or
:func:`changed_fields`) is the patch to persist with :func:`apply_patch`.
Invalid transitions raise :class:`WorkflowError`.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .errors import WorkflowError
from .ingestion.coercion import clean_text, coerce_date, to_timestamp
from .models import (
    REQUEST_LIFECYCLE,
    REQUEST_SIDE_EXITS,
    REQUEST_TERMINAL_STATES,
    Incident,
    NoteEntry,
)


logger = logging.getLogger("ispmonitor.workflow")

DEFAULT_AUTHOR = "Utente"


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


# ----------------------------------------------------------------- parts request

def toggle_part(incident: Incident, part: str) -> Incident:
    """Add or remove ``part``; selecting a part clears the device request."""
    name = clean_text(part)
    if not name:
        raise WorkflowError("Part name must not be blank")
    parts = list(incident.parti_richieste)
    if name in parts:
        parts.remove(name)
    else:
        parts.append(name)
    device = False if parts else bool(incident.richiesta_apparato)
    return incident.with_changes(parti_richieste=parts, richiesta_apparato=device)


def toggle_device(incident: Incident) -> Incident:
    """Flip the whole-device request; requesting the device clears the parts."""
    requested = not bool(incident.richiesta_apparato)
    parts = [] if requested else list(incident.parti_richieste)
    return incident.with_changes(richiesta_apparato=requested, parti_richieste=parts)


def save_parts_request(
    incident: Incident,
    now: Optional[datetime] = None,
    ldv: Optional[str] = None,
    data_consegna: Any = None,
) -> Incident:
    """Stamp and persist-ready the current parts/device selection.

    The request timestamp is set on the first save of an active request and
    kept on later saves. Clearing both parts and device clears the timestamp
    and the lifecycle state. ``ldv`` and ``data_consegna`` keep their stored
    values when not given.
    """
    if incident.parti_richieste and incident.richiesta_apparato:
        raise WorkflowError(f"{incident.numero}: parts and whole device cannot both be requested")

    changes: Dict[str, Any] = {
        "parti_richieste": list(incident.parti_richieste),
        "richiesta_apparato": bool(incident.richiesta_apparato),
    }
    if incident.has_parts_request:
        stamp = incident.data_richiesta_parti or coerce_date(_now(now))
        changes["data_richiesta_parti"] = stamp
        changes["stato_richiesta"] = incident.stato_richiesta or REQUEST_LIFECYCLE[0]
    else:
        changes["data_richiesta_parti"] = None
        changes["stato_richiesta"] = None
    if ldv is not None:
        changes["ldv"] = clean_text(ldv)
    if data_consegna is not None:
        changes["data_consegna"] = coerce_date(data_consegna)
    return incident.with_changes(**changes)


def _require_request(incident: Incident) -> str:
    if not incident.data_richiesta_parti:
        raise WorkflowError(f"{incident.numero}: no saved parts request")
    return incident.stato_richiesta or REQUEST_LIFECYCLE[0]


def advance_request_status(incident: Incident) -> Incident:
    """Move the request one step along Pending -> ... -> CONSEGNATO."""
    current = _require_request(incident)
    if current in REQUEST_TERMINAL_STATES:
        raise WorkflowError(f"{incident.numero}: request is {current} and cannot advance")
    if current not in REQUEST_LIFECYCLE:
        raise WorkflowError(f"{incident.numero}: unknown request state {current!r}")
    nxt = REQUEST_LIFECYCLE[REQUEST_LIFECYCLE.index(current) + 1]
    if nxt == REQUEST_LIFECYCLE[-1] and not incident.data_consegna:
        raise WorkflowError(f"{incident.numero}: delivery date required before {nxt}")
    logger.info("Request %s: %s -> %s", incident.numero, current, nxt)
    return incident.with_changes(stato_richiesta=nxt)


def _side_exit(incident: Incident, state: str) -> Incident:
    current = _require_request(incident)
    if current == state:
        raise WorkflowError(f"{incident.numero}: request already {state}")
    if current == REQUEST_LIFECYCLE[-1]:
        raise WorkflowError(f"{incident.numero}: request already delivered")
    logger.info("Request %s: %s -> %s", incident.numero, current, state)
    return incident.with_changes(stato_richiesta=state)


def reject_request(incident: Incident) -> Incident:
    return _side_exit(incident, REQUEST_SIDE_EXITS[0])


def cancel_request(incident: Incident) -> Incident:
    return _side_exit(incident, REQUEST_SIDE_EXITS[1])


# ------------------------------------------------------------- notes / planning

def append_note(incident: Incident, text: str, author: Optional[str] = None, now: Optional[datetime] = None) -> Incident:
    body = (text or "").strip()
    if not body:
        raise WorkflowError("Note text must not be blank")
    entry = NoteEntry.create(body, clean_text(author) or DEFAULT_AUTHOR, _now(now))
    return incident.with_changes(note_laser=list(incident.note_laser) + [entry])


def plan_intervention(incident: Incident, value: Any) -> Incident:
    """Set ``pianificazione`` from any date-like value; blank clears it."""
    planned = coerce_date(value)
    if planned is not None and to_timestamp(value) is None:
        raise WorkflowError(f"{incident.numero}: cannot interpret planning date {value!r}")
    return incident.with_changes(pianificazione=planned)


# ------------------------------------------------------------------ persistence

def changed_fields(before: Incident, after: Incident) -> Dict[str, Any]:
    """Wire-format attributes that differ between two versions of a ticket."""
    old = before.to_record()
    new = after.to_record()
    return {k: v for k, v in new.items() if k != "numero" and old.get(k) != v}


def apply_patch(store, numero: str, patch: Mapping[str, Any]):
    """Persist ``patch`` on ``numero`` through the store's keyed update."""
    if not patch:
        raise WorkflowError(f"{numero}: empty patch")
    result = store.update_by_key(numero, dict(patch))
    if not result.ok:
        logger.error("Update of %s failed: %s", numero, result.error)
    return result
