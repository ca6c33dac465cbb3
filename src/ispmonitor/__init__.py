"""ispmonitor: ingestion, reconciliation and SLA analytics for ticketing exports."""

__version__ = "0.3.0"
