"""File-drop import entry point.

Files are processed strictly one at a time: classified, read, normalized and,
for the main feed, reconciled against the active backlog before the next file
is started. When the reconciler pauses on ghosts the remaining files stay
queued until :meth:`ImportPipeline.drain` is called after the decision.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, Iterable, List, Optional, Union

import pandas as pd

from .common.config_validator import AppConfig
from .errors import UnsupportedFileError
from .ingestion.classifier import RECORD_PROFILES, FileProfile, classify_file_name
from .ingestion.normalizer import normalize_frame, normalize_planning_rows
from .ingestion.reader import read_input_file, validate_extension
from .ingestion.suppliers import SupplierResolver, parse_territory_rows
from .logging_utils import end_phase_timer, get_user_logger, log_system_event, log_warning, start_phase_timer
from .reconciliation.ghosts import Ghost, GhostReconciler, ReconciliationOutcome
from .reconciliation.upsert import UpsertSummary, upsert_batch


logger = logging.getLogger("ispmonitor.import")

STATUS_COMMITTED = "committed"
STATUS_PENDING = "pending"
STATUS_UPDATED = "updated"
STATUS_SUPPLIERS = "suppliers_updated"
STATUS_SKIPPED = "skipped"
STATUS_EMPTY = "empty"
STATUS_FAILED = "failed"


@dataclass
class ImportOutcome:
    file_name: str
    profile: FileProfile
    status: str
    rows_read: int = 0
    valid_rows: int = 0
    dropped: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    upsert: Optional[UpsertSummary] = None
    ghosts: List[Ghost] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)


class ImportPipeline:
    """Synchronous import of source exports into a record store."""

    def __init__(self, store, config: Optional[AppConfig] = None, user_logger: Optional[logging.Logger] = None) -> None:
        self.store = store
        self.config = config or AppConfig()
        self.user_logger = user_logger or get_user_logger(self.config)
        self.reconciler = GhostReconciler(store, chunk_size=self.config.ingestion.upsert_chunk_size)
        self.outcomes: List[ImportOutcome] = []
        self.timings: Dict[str, float] = {}
        self._queue: Deque[Path] = deque()
        self._pending: Optional[ImportOutcome] = None
        self._resolver: Optional[SupplierResolver] = None

    @property
    def resolver(self) -> SupplierResolver:
        """Supplier lookup, loaded from the store on first use."""
        if self._resolver is None:
            self._resolver = SupplierResolver.from_store(self.store)
        return self._resolver

    def _log(self, outcome: ImportOutcome, message: str) -> None:
        outcome.messages.append(message)
        self.user_logger.info(message)

    @property
    def queued(self) -> List[Path]:
        return list(self._queue)

    # ------------------------------------------------------------------ files

    def process_files(self, paths: Iterable[Union[str, Path]]) -> List[ImportOutcome]:
        """Queue ``paths`` and process them in order until done or paused."""
        self._queue.extend(Path(p) for p in paths)
        return self.drain()

    def drain(self) -> List[ImportOutcome]:
        """Process queued files; stops while a ghost review is pending."""
        if self.reconciler.is_pending:
            log_warning(logger, "Ghost review pending; %d files wait in queue", len(self._queue))
            return list(self.outcomes)
        while self._queue:
            path = self._queue.popleft()
            outcome = self.process_file(path)
            if outcome.status == STATUS_PENDING:
                break
        return list(self.outcomes)

    def process_file(self, path: Union[str, Path]) -> ImportOutcome:
        path = Path(path)
        profile = classify_file_name(path.name, self.config.ingestion.classifier_rules)
        if profile is FileProfile.UNKNOWN:
            outcome = ImportOutcome(file_name=path.name, profile=profile, status=STATUS_SKIPPED)
            self._log(outcome, f"Unknown file type: {path.name}. Skipping.")
            self.outcomes.append(outcome)
            return outcome
        try:
            validate_extension(path, self.config.ingestion.allowed_extensions)
            frame = read_input_file(path, profile)
        except UnsupportedFileError as exc:
            outcome = ImportOutcome(file_name=path.name, profile=profile, status=STATUS_FAILED)
            self._log(outcome, f"ERROR: {exc}")
            self.outcomes.append(outcome)
            return outcome
        return self.process_frame(path.name, frame, profile=profile)

    # ----------------------------------------------------------------- frames

    def process_frame(self, file_name: str, frame: pd.DataFrame, profile: Optional[FileProfile] = None) -> ImportOutcome:
        """Import an already-read sheet; ``profile`` defaults to the name's."""
        if profile is None:
            profile = classify_file_name(file_name, self.config.ingestion.classifier_rules)
        if self.reconciler.is_pending:
            message = "Resolve or dismiss the pending ghost review before importing more files"
            outcome = ImportOutcome(file_name=file_name, profile=profile, status=STATUS_SKIPPED)
            self._log(outcome, message)
            self.outcomes.append(outcome)
            return outcome

        timer = start_phase_timer(file_name)
        outcome = ImportOutcome(file_name=file_name, profile=profile, status=STATUS_SKIPPED, rows_read=len(frame))
        self._log(outcome, f"Reading file: {file_name}")
        self._log(outcome, f"Parsed {len(frame)} rows.")

        if profile is FileProfile.UNKNOWN:
            self._log(outcome, "Unknown file type. Skipping.")
        elif profile is FileProfile.PLANNING_UPDATE:
            self._import_planning(frame, outcome)
        elif profile is FileProfile.TERRITORY_SUPPLIER:
            self._import_territory(frame, outcome)
        elif profile in RECORD_PROFILES:
            self._import_records(frame, profile, outcome)

        end_phase_timer(file_name, timer, self.timings, logger)
        self.outcomes.append(outcome)
        return outcome

    def _import_planning(self, frame: pd.DataFrame, outcome: ImportOutcome) -> None:
        self._log(outcome, "Detected Planning Import Mode (Update Only)")
        planning = normalize_planning_rows(frame)
        outcome.skipped = planning.skipped
        for numero, planned in planning.updates:
            result = self.store.update_by_key(numero, {"pianificazione": planned})
            if result.ok:
                outcome.updated += 1
            else:
                outcome.errors += 1
                logger.debug("Planning update for %s failed: %s", numero, result.error)
        outcome.status = STATUS_UPDATED
        self._log(outcome, f"Done! Updated: {outcome.updated}, Skipped/Missing: {outcome.skipped}, Errors: {outcome.errors}")

    def _import_territory(self, frame: pd.DataFrame, outcome: ImportOutcome) -> None:
        self._log(outcome, "Detected Type: DISTRIBUZIONE TERRITORIALE (Suppliers Update)")
        rows = parse_territory_rows(frame)
        outcome.valid_rows = len(rows)
        outcome.dropped = len(frame) - len(rows)
        self._log(outcome, f"Found {len(rows)} supplier mappings to update.")
        if not rows:
            outcome.status = STATUS_EMPTY
            return
        outcome.updated = self.store.replace_suppliers(rows)
        self.resolver.refresh(rows)
        outcome.status = STATUS_SUPPLIERS
        self._log(outcome, f"Successfully updated {outcome.updated} suppliers.")

    def _import_records(self, frame: pd.DataFrame, profile: FileProfile, outcome: ImportOutcome) -> None:
        self._log(outcome, f"Detected Type: {profile.value}")
        resolver = None
        if profile is FileProfile.MAIN_FEED:
            resolver = self.resolver
            self._log(outcome, f"Loaded {len(resolver)} suppliers mappings.")
        existing_ids = None
        if profile is FileProfile.SITE_INVENTORY:
            existing_ids = {str(r.get("numero")) for r in self.store.query()}

        result = normalize_frame(profile, frame, resolver=resolver, existing_ids=existing_ids)
        outcome.valid_rows = len(result.records)
        outcome.dropped = result.dropped
        self._log(outcome, f"Valid rows to upsert: {outcome.valid_rows}")

        if profile is FileProfile.MAIN_FEED:
            # The main feed is authoritative for the backlog even when empty
            self._reconcile(result.records, outcome)
            return

        if not result.records:
            outcome.status = STATUS_EMPTY
            return
        outcome.upsert = upsert_batch(self.store, result.records, chunk_size=self.config.ingestion.upsert_chunk_size)
        outcome.status = STATUS_COMMITTED
        self._report_upsert(outcome)

    def _reconcile(self, records, outcome: ImportOutcome) -> None:
        reconciliation = self.reconciler.submit(records)
        self._apply_reconciliation(outcome, reconciliation)
        if reconciliation.pending:
            self._pending = outcome
            log_system_event(logger, "Import of %s paused on %d ghosts", outcome.file_name, len(reconciliation.ghosts))
            self._log(outcome, f"Ghost incidents detected: {len(reconciliation.ghosts)}. Awaiting resolution.")

    def _apply_reconciliation(self, outcome: ImportOutcome, reconciliation: ReconciliationOutcome) -> None:
        outcome.ghosts = reconciliation.ghosts
        if reconciliation.pending:
            outcome.status = STATUS_PENDING
            return
        if reconciliation.upsert is not None:
            outcome.upsert = reconciliation.upsert
            outcome.status = STATUS_COMMITTED
            self._report_upsert(outcome)
        else:
            outcome.status = STATUS_SKIPPED
            self._log(outcome, "Import aborted; no rows written.")

    def _report_upsert(self, outcome: ImportOutcome) -> None:
        summary = outcome.upsert
        if summary is None:
            return
        if summary.failed:
            self._log(outcome, f"ERROR: {summary.failed} rows rejected, {summary.succeeded} upserted.")
        else:
            self._log(outcome, "Success: Data upserted.")

    # ------------------------------------------------------- ghost decisions

    def _after_decision(self, reconciliation: ReconciliationOutcome) -> ReconciliationOutcome:
        if self._pending is not None:
            self._apply_reconciliation(self._pending, reconciliation)
            if not reconciliation.pending:
                self._pending = None
        return reconciliation

    def resolve_ghost(self, numero: str) -> ReconciliationOutcome:
        return self._after_decision(self.reconciler.resolve(numero))

    def resolve_all_ghosts(self) -> ReconciliationOutcome:
        return self._after_decision(self.reconciler.resolve_all())

    def dismiss_ghosts(self) -> ReconciliationOutcome:
        return self._after_decision(self.reconciler.dismiss())

    def abort_pending(self) -> ReconciliationOutcome:
        return self._after_decision(self.reconciler.abort())
