"""Chat-facing message handling."""
