"""Exception hierarchy shared by the ingestion, reconciliation and workflow layers."""
from __future__ import annotations


class IspMonitorError(Exception):
    """Base class for every error raised by ispmonitor."""


class UnsupportedFileError(IspMonitorError, ValueError):
    """Raised when an input file cannot be read as a spreadsheet export."""


class StoreError(IspMonitorError):
    """Raised by store collaborators when a read or write cannot be performed."""


class ReconciliationStateError(IspMonitorError):
    """Raised when a reconciler operation is not valid in its current state."""


class WorkflowError(IspMonitorError, ValueError):
    """Raised for invalid parts-request, planning or note transitions."""
