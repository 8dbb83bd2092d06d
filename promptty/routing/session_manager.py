"""Session lifecycle on top of the session store."""

from collections import Counter
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, Optional

import structlog

from ..storage.sessions import Direction, Session, SessionKey, SessionStore

logger = structlog.get_logger()


class SessionManager:
    """Find-or-create, extend, bind and expire conversation sessions."""

    def __init__(self, store: SessionStore):
        self.store = store
        self._in_use: Counter = Counter()

    @asynccontextmanager
    async def in_use(self, session_id: str) -> AsyncIterator[None]:
        """Hold a session back from the expiry sweep while a turn runs."""
        self._in_use[session_id] += 1
        try:
            yield
        finally:
            self._in_use[session_id] -= 1
            if self._in_use[session_id] <= 0:
                del self._in_use[session_id]

    async def get_or_create(self, key: SessionKey, ttl: timedelta) -> Session:
        """Live session for ``key`` (activity refreshed) or a new one."""
        return await self.store.get_or_create(key, ttl)

    async def get(self, session_id: str) -> Optional[Session]:
        """Live session by id, or ``None`` if unknown or expired."""
        return await self.store.get_by_id(session_id)

    async def bind_agent_session(self, session_id: str, agent_session_id: str) -> None:
        """Remember the agent's conversation id so later turns can resume it."""
        updated = await self.store.set_agent_session_id(session_id, agent_session_id)
        if updated:
            logger.debug(
                "Bound agent session",
                session_id=session_id,
                agent_session_id=agent_session_id,
            )
        else:
            logger.warning("Cannot bind agent session, session gone", session_id=session_id)

    async def extend(self, session_id: str, ttl: timedelta) -> None:
        if not await self.store.extend(session_id, ttl):
            logger.debug("Cannot extend session, session gone", session_id=session_id)

    async def delete(self, session_id: str) -> bool:
        return await self.store.delete(session_id)

    async def expire_sweep(self) -> int:
        """Delete every expired session not in use; returns how many were removed."""
        count = await self.store.delete_expired(keep=list(self._in_use))
        if count:
            logger.info("Expired sessions removed", count=count)
        return count

    async def log_message(
        self,
        session_id: str,
        direction: Direction,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return await self.store.log_message(session_id, direction, content, metadata)
