"""Ghost reconciliation and store commits for normalized batches."""
