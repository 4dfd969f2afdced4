"""Per-query signal detectors feeding intent extraction."""
