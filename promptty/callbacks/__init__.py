"""Loopback callback ingress."""

from .handler import CallbackHandler, CallbackResult
from .server import CallbackServer, create_callback_app

__all__ = ["CallbackHandler", "CallbackResult", "CallbackServer", "create_callback_app"]
