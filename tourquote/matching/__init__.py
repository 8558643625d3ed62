"""Free-text to catalog matching."""
