"""Intent extraction: raw query text to a validated IntentState."""
