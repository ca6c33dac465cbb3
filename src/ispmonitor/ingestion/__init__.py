"""Source export ingestion: classification, coercion, supplier lookup and normalization."""
