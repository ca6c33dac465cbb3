"""Ghost detection gate for main-feed imports.

A ghost is a ticket the store still considers active which the newest
authoritative feed no longer mentions. The reconciler never guesses what
happened to it: the batch is held until every ghost is resolved (moved to
``Reassigned``) or the review is explicitly dismissed.

State machine::

    IDLE -> GHOSTS_PENDING -> RESOLVING -> COMMITTED
                           \\-> ABORTED
    IDLE -> RESOLVING -> COMMITTED            (no ghosts)

The read-diff-write sequence is not atomic against other writers; a commit
re-reads the active set and reports tickets that appeared in between.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..errors import ReconciliationStateError
from ..models import ACTIVE_STATES, REASSIGNED_STATE, Incident
from .upsert import UpsertSummary, upsert_batch


logger = logging.getLogger("ispmonitor.reconciliation.ghosts")


class ReconcilerState(str, Enum):
    IDLE = "idle"
    GHOSTS_PENDING = "ghosts_pending"
    RESOLVING = "resolving"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class Ghost:
    numero: str
    stato: Optional[str] = None
    regione: Optional[str] = None
    breve_descrizione: Optional[str] = None
    descrizione: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Ghost":
        return cls(
            numero=str(record.get("numero")),
            stato=record.get("stato"),
            regione=record.get("regione"),
            breve_descrizione=record.get("breve_descrizione"),
            descrizione=record.get("descrizione"),
        )


@dataclass
class ReconciliationOutcome:
    state: ReconcilerState
    ghosts: List[Ghost] = field(default_factory=list)
    resolved: List[str] = field(default_factory=list)
    dismissed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    drift: List[str] = field(default_factory=list)
    upsert: Optional[UpsertSummary] = None

    @property
    def pending(self) -> bool:
        return self.state is ReconcilerState.GHOSTS_PENDING


def find_ghosts(active_records: Iterable[Mapping[str, Any]], imported_ids: Set[str]) -> List[Ghost]:
    """Return the active store records whose ``numero`` is not in ``imported_ids``.

    An empty import flags every active record.
    """
    ghosts = [Ghost.from_record(r) for r in active_records if str(r.get("numero")) not in imported_ids]
    return sorted(ghosts, key=lambda g: g.numero)


class GhostReconciler:
    """Hold a main-feed batch until its ghost tickets have been dealt with."""

    def __init__(self, store, chunk_size: int = 500, active_states: Sequence[str] = ACTIVE_STATES) -> None:
        self.store = store
        self.chunk_size = chunk_size
        self.active_states = tuple(active_states)
        self._state = ReconcilerState.IDLE
        self._batch: List[Incident] = []
        self._ghosts: Dict[str, Ghost] = {}
        self._outcome = ReconciliationOutcome(state=ReconcilerState.IDLE)
        self._active_snapshot: Set[str] = set()

    @property
    def state(self) -> ReconcilerState:
        return self._state

    @property
    def is_pending(self) -> bool:
        return self._state is ReconcilerState.GHOSTS_PENDING

    @property
    def ghosts(self) -> List[Ghost]:
        return list(self._ghosts.values())

    @property
    def pending_batch(self) -> List[Incident]:
        return list(self._batch)

    def _active_records(self) -> List[Dict[str, Any]]:
        return self.store.query({"stato": self.active_states})

    def _require_pending(self, operation: str) -> None:
        if not self.is_pending:
            raise ReconciliationStateError(f"Cannot {operation} while reconciler is {self._state.value}")

    def submit(self, batch: Iterable[Incident]) -> ReconciliationOutcome:
        """Diff a normalized main-feed batch against the active backlog.

        Commits immediately when there are no ghosts, otherwise holds the batch
        and returns the ghost list in a ``GHOSTS_PENDING`` outcome.
        """
        if self.is_pending or self._state is ReconcilerState.RESOLVING:
            raise ReconciliationStateError("A batch is already awaiting ghost resolution")

        self._batch = list(batch)
        imported_ids = {r.numero for r in self._batch}
        active = self._active_records()
        self._active_snapshot = {str(r.get("numero")) for r in active}
        ghosts = find_ghosts(active, imported_ids)
        self._ghosts = {g.numero: g for g in ghosts}
        self._outcome = ReconciliationOutcome(state=ReconcilerState.IDLE, ghosts=list(ghosts))

        if ghosts:
            self._state = ReconcilerState.GHOSTS_PENDING
            self._outcome.state = self._state
            logger.warning(
                "Detected %d ghost incidents (active in store, missing from feed); holding %d rows",
                len(ghosts),
                len(self._batch),
            )
            return self._snapshot()
        return self._commit()

    def resolve(self, numero: str) -> ReconciliationOutcome:
        """Move one ghost to ``Reassigned``; commits when it was the last one."""
        self._require_pending("resolve a ghost")
        if numero not in self._ghosts:
            raise ReconciliationStateError(f"{numero} is not a pending ghost")
        self._reassign(numero)
        if not self._ghosts:
            return self._commit()
        return self._snapshot()

    def resolve_all(self) -> ReconciliationOutcome:
        """Bulk-reassign every pending ghost; commits when none is left."""
        self._require_pending("resolve ghosts")
        for numero in list(self._ghosts):
            self._reassign(numero)
        if not self._ghosts:
            return self._commit()
        return self._snapshot()

    def dismiss(self) -> ReconciliationOutcome:
        """Skip the remaining ghost review and commit the held batch as-is."""
        self._require_pending("dismiss ghost review")
        self._outcome.dismissed = sorted(self._ghosts)
        logger.info("Ghost review dismissed with %d unresolved ghosts", len(self._ghosts))
        self._ghosts = {}
        return self._commit()

    def abort(self) -> ReconciliationOutcome:
        """Discard the held batch without writing anything."""
        self._require_pending("abort")
        self._state = ReconcilerState.ABORTED
        self._outcome.state = self._state
        logger.info("Import aborted; %d held rows discarded", len(self._batch))
        self._batch = []
        self._ghosts = {}
        return self._snapshot()

    def _reassign(self, numero: str) -> None:
        result = self.store.update_by_key(numero, {"stato": REASSIGNED_STATE})
        if not result.ok:
            self._outcome.errors[numero] = result.error or "update failed"
            logger.error("Failed to reassign ghost %s: %s", numero, result.error)
            return
        self._ghosts.pop(numero, None)
        self._outcome.errors.pop(numero, None)
        self._outcome.resolved.append(numero)

    def _commit(self) -> ReconciliationOutcome:
        self._state = ReconcilerState.RESOLVING
        imported_ids = {r.numero for r in self._batch}
        current = {str(r.get("numero")) for r in self._active_records()}
        appeared = sorted((current - self._active_snapshot) - imported_ids)
        if appeared:
            logger.warning("Active backlog changed during reconciliation: %s", ", ".join(appeared))
        self._outcome.drift = appeared
        self._outcome.upsert = upsert_batch(self.store, self._batch, chunk_size=self.chunk_size)
        self._state = ReconcilerState.COMMITTED
        self._outcome.state = self._state
        self._batch = []
        return self._snapshot()

    def _snapshot(self) -> ReconciliationOutcome:
        out = self._outcome
        return ReconciliationOutcome(
            state=self._state,
            ghosts=self.ghosts,
            resolved=list(out.resolved),
            dismissed=list(out.dismissed),
            errors=dict(out.errors),
            drift=list(out.drift),
            upsert=out.upsert,
        )
