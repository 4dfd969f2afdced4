"""Domain services for the retrieval pipeline."""
