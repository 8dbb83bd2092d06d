"""Persistent conversation sessions and the message audit log."""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Literal, Optional

import aiosqlite
import structlog

from ..exceptions import DataIntegrityError
from ..platforms.types import Platform
from .database import DatabaseManager

logger = structlog.get_logger()

Direction = Literal["in", "out"]


def _to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _ttl_ms(ttl: timedelta) -> int:
    return int(ttl.total_seconds() * 1000)


@dataclass(frozen=True)
class SessionKey:
    """Identifies a conversation: ``thread_id=None`` means channel-level."""

    platform: Platform
    workspace_id: str
    channel_id: str
    thread_id: Optional[str] = None


@dataclass
class Session:
    """A conversation thread bound to one agent working context."""

    id: str
    platform: Platform
    workspace_id: str
    channel_id: str
    thread_id: Optional[str]
    agent_session_id: Optional[str]
    last_activity: datetime
    expires_at: datetime
    created_at: datetime

    @property
    def key(self) -> SessionKey:
        return SessionKey(
            self.platform, self.workspace_id, self.channel_id, self.thread_id
        )

    @classmethod
    def from_row(cls, row: Any) -> "Session":
        data = dict(row)
        return cls(
            id=data["id"],
            platform=Platform(data["platform"]),
            workspace_id=data["workspace_id"],
            channel_id=data["channel_id"],
            thread_id=data["thread_id"],
            agent_session_id=data["agent_session_id"],
            last_activity=_to_datetime(data["last_activity"]),
            expires_at=_to_datetime(data["expires_at"]),
            created_at=_to_datetime(data["created_at"]),
        )


class SessionStore:
    """SQLite-backed session table.

    Writers go through ``_lock`` so a lookup followed by an insert is one
    critical section; the unique index on the session key is a second line
    of defence should another writer ever share the database file.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        clock: Callable[[], float] = time.time,
    ):
        self.db_manager = db_manager
        self._clock = clock
        self._lock = asyncio.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def find_live(self, key: SessionKey) -> Optional[Session]:
        """Most recently active non-expired session for ``key``."""
        async with self.db_manager.get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM sessions
                WHERE platform = ? AND workspace_id = ? AND channel_id = ?
                  AND thread_id IS ? AND expires_at > ?
                ORDER BY last_activity DESC
                LIMIT 1
                """,
                (
                    key.platform.value,
                    key.workspace_id,
                    key.channel_id,
                    key.thread_id,
                    self._now_ms(),
                ),
            )
            row = await cursor.fetchone()
        return Session.from_row(row) if row else None

    async def get_by_id(
        self, session_id: str, include_expired: bool = False
    ) -> Optional[Session]:
        """Fetch a session by id; expired rows are hidden unless asked for."""
        query = "SELECT * FROM sessions WHERE id = ?"
        params: tuple = (session_id,)
        if not include_expired:
            query += " AND expires_at > ?"
            params = (session_id, self._now_ms())

        async with self.db_manager.get_connection() as conn:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
        return Session.from_row(row) if row else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def get_or_create(self, key: SessionKey, ttl: timedelta) -> Session:
        """Return the live session for ``key``, creating one if needed.

        A found session has its last-activity refreshed. Expired rows for
        the same key are removed before a replacement is inserted.
        """
        async with self._lock:
            existing = await self.find_live(key)
            if existing is not None:
                return await self._touch(existing)

            try:
                return await self._insert(key, ttl)
            except aiosqlite.IntegrityError:
                # Lost a race with a writer outside this process.
                existing = await self.find_live(key)
                if existing is None:
                    raise DataIntegrityError(
                        f"Session key conflict without a live session: {key}"
                    )
                return await self._touch(existing)

    async def _touch(self, session: Session) -> Session:
        now = self._now_ms()
        async with self.db_manager.get_connection() as conn:
            await conn.execute(
                "UPDATE sessions SET last_activity = ? WHERE id = ?",
                (now, session.id),
            )
            await conn.commit()
        session.last_activity = _to_datetime(now)
        return session

    async def _insert(self, key: SessionKey, ttl: timedelta) -> Session:
        now = self._now_ms()
        session_id = str(uuid.uuid4())
        expires_at = now + _ttl_ms(ttl)

        async with self.db_manager.get_connection() as conn:
            await conn.execute(
                """
                DELETE FROM sessions
                WHERE platform = ? AND workspace_id = ? AND channel_id = ?
                  AND thread_id IS ? AND expires_at <= ?
                """,
                (
                    key.platform.value,
                    key.workspace_id,
                    key.channel_id,
                    key.thread_id,
                    now,
                ),
            )
            try:
                await conn.execute(
                    """
                    INSERT INTO sessions (
                        id, platform, workspace_id, channel_id, thread_id,
                        agent_session_id, last_activity, expires_at, created_at
                    ) VALUES (?, ?, ?, ?, ?, NULL, ?, ?, ?)
                    """,
                    (
                        session_id,
                        key.platform.value,
                        key.workspace_id,
                        key.channel_id,
                        key.thread_id,
                        now,
                        expires_at,
                        now,
                    ),
                )
            except aiosqlite.IntegrityError:
                await conn.rollback()
                raise
            await conn.commit()

        logger.info(
            "Created session",
            session_id=session_id,
            platform=key.platform.value,
            channel_id=key.channel_id,
            thread_id=key.thread_id,
        )
        return Session(
            id=session_id,
            platform=key.platform,
            workspace_id=key.workspace_id,
            channel_id=key.channel_id,
            thread_id=key.thread_id,
            agent_session_id=None,
            last_activity=_to_datetime(now),
            expires_at=_to_datetime(expires_at),
            created_at=_to_datetime(now),
        )

    async def set_agent_session_id(self, session_id: str, agent_session_id: str) -> bool:
        """Record the agent's own conversation id; also bumps last-activity."""
        async with self._lock:
            async with self.db_manager.get_connection() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE sessions SET agent_session_id = ?, last_activity = ?
                    WHERE id = ?
                    """,
                    (agent_session_id, self._now_ms(), session_id),
                )
                await conn.commit()
                return cursor.rowcount > 0

    async def extend(self, session_id: str, ttl: timedelta) -> bool:
        """Bump last-activity and recompute expiry from now."""
        now = self._now_ms()
        async with self._lock:
            async with self.db_manager.get_connection() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE sessions SET last_activity = ?, expires_at = ?
                    WHERE id = ?
                    """,
                    (now, now + _ttl_ms(ttl), session_id),
                )
                await conn.commit()
                return cursor.rowcount > 0

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            async with self.db_manager.get_connection() as conn:
                cursor = await conn.execute(
                    "DELETE FROM sessions WHERE id = ?", (session_id,)
                )
                await conn.commit()
                return cursor.rowcount > 0

    async def delete_expired(self, keep: Iterable[str] = ()) -> int:
        """Delete every session whose expiry has elapsed; returns the count.

        Sessions whose ids are in ``keep`` survive regardless of expiry.
        """
        keep_ids = list(keep)
        query = "DELETE FROM sessions WHERE expires_at <= ?"
        if keep_ids:
            query += f" AND id NOT IN ({', '.join('?' for _ in keep_ids)})"
        async with self._lock:
            async with self.db_manager.get_connection() as conn:
                cursor = await conn.execute(query, (self._now_ms(), *keep_ids))
                await conn.commit()
                return cursor.rowcount

    # ------------------------------------------------------------------
    # Message log
    # ------------------------------------------------------------------

    async def log_message(
        self,
        session_id: str,
        direction: Direction,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append an audit record for a session.

        Returns False when the session row is gone (deleted or swept), in
        which case nothing is written.
        """
        async with self.db_manager.get_connection() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO message_log
                        (session_id, direction, content, metadata, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        session_id,
                        direction,
                        content,
                        json.dumps(metadata) if metadata is not None else None,
                        self._now_ms(),
                    ),
                )
            except aiosqlite.IntegrityError:
                await conn.rollback()
                logger.warning(
                    "Message log skipped, session no longer exists",
                    session_id=session_id,
                    direction=direction,
                )
                return False
            await conn.commit()
            return True
