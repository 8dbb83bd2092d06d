"""Per-platform message formatting."""
