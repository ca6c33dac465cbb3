"""Pure rollups over a snapshot of incident records."""
