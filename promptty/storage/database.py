"""SQLite database connection management and schema migrations.

A single long-lived aiosqlite connection is shared by the process.  The
schema is versioned in ``schema_version``; migrations are applied in order
on startup and each runs inside its own transaction.
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List, Optional, Tuple

import aiosqlite
import structlog

from ..exceptions import DatabaseConnectionError, StorageError

logger = structlog.get_logger()


# ── Migrations ────────────────────────────────────────────────────────

MIGRATIONS: List[Tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT PRIMARY KEY,
            platform TEXT NOT NULL CHECK (platform IN ('slack', 'teams')),
            workspace_id TEXT NOT NULL,
            channel_id TEXT NOT NULL,
            thread_id TEXT,
            agent_session_id TEXT,
            last_activity INTEGER NOT NULL,
            expires_at INTEGER NOT NULL,
            created_at INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_lookup
            ON sessions(platform, workspace_id, channel_id, thread_id);

        CREATE INDEX IF NOT EXISTS idx_sessions_expires
            ON sessions(expires_at);

        CREATE TABLE IF NOT EXISTS message_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            direction TEXT NOT NULL CHECK (direction IN ('in', 'out')),
            content TEXT NOT NULL,
            metadata TEXT,
            created_at INTEGER NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_message_log_session
            ON message_log(session_id);
        """,
    ),
    (
        2,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_key
            ON sessions(platform, workspace_id, channel_id, IFNULL(thread_id, ''));
        """,
    ),
]


class DatabaseManager:
    """Owns the SQLite connection and applies migrations."""

    def __init__(self, database_path: Path):
        self.database_path = Path(database_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database and bring the schema up to date.

        Failures here are fatal: there is no degraded mode without durable
        session state.
        """
        if self._connection is not None:
            return

        try:
            if str(self.database_path) != ":memory:":
                self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(str(self.database_path))
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA journal_mode = WAL")
            await self._connection.execute("PRAGMA foreign_keys = ON")
        except (OSError, aiosqlite.Error) as e:
            logger.error(
                "Failed to open database", path=str(self.database_path), error=str(e)
            )
            raise DatabaseConnectionError(
                f"Cannot open database at {self.database_path}: {e}"
            ) from e

        await self._run_migrations()
        logger.info("Database initialized", path=str(self.database_path))

    async def _run_migrations(self) -> None:
        conn = self._require_connection()
        try:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                )
                """
            )
            cursor = await conn.execute("SELECT MAX(version) FROM schema_version")
            row = await cursor.fetchone()
            current = row[0] if row and row[0] is not None else 0

            for version, script in MIGRATIONS:
                if version <= current:
                    continue
                await conn.executescript(
                    "BEGIN;\n"
                    + script
                    + f"\nINSERT INTO schema_version (version, applied_at)"
                    f" VALUES ({version}, {int(time.time() * 1000)});\nCOMMIT;"
                )
                logger.info("Applied database migration", version=version)
        except aiosqlite.Error as e:
            raise StorageError(f"Database migration failed: {e}") from e

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DatabaseConnectionError("Database is not initialized")
        return self._connection

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the shared connection."""
        yield self._require_connection()

    async def close(self) -> None:
        """Close the connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")
