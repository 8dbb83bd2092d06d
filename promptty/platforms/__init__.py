"""Chat platform adapters.

Adapters are imported from their own modules so the optional Teams
dependency is only needed when Teams is configured.
"""
