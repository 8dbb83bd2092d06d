"""Session correlation and message routing."""
