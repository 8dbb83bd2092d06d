"""SQLite persistence for sessions and the message log."""

from .database import DatabaseManager
from .sessions import Direction, Session, SessionKey, SessionStore

__all__ = ["DatabaseManager", "Direction", "Session", "SessionKey", "SessionStore"]
