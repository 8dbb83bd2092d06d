"""In-flight routing handles, keyed by session id.

Each platform adapter owns one registry.  An entry lives exactly as long
as one agent invocation: it is registered after the acknowledgement is
posted and removed in the invocation's ``finally`` block.  Callbacks that
arrive outside that window find nothing and are reported as unroutable.

All mutations are synchronous dict operations, so they never interleave
on the event loop.  Registration is last-writer-wins; a replaced entry is
logged because any callback still aimed at it now lands on the newer
context.
"""

from typing import Dict, Generic, Iterator, Optional, TypeVar

import structlog

logger = structlog.get_logger()

C = TypeVar("C")


class ActiveContextRegistry(Generic[C]):
    """Session id → platform-specific reply context."""

    def __init__(self, platform: str):
        self.platform = platform
        self._contexts: Dict[str, C] = {}

    def register(self, session_id: str, context: C) -> None:
        previous = self._contexts.get(session_id)
        if previous is not None and previous is not context:
            logger.warning(
                "Replacing active context",
                platform=self.platform,
                session_id=session_id,
            )
        self._contexts[session_id] = context

    def get(self, session_id: str) -> Optional[C]:
        return self._contexts.get(session_id)

    def unregister(self, session_id: str, context: Optional[C] = None) -> bool:
        """Remove an entry.

        When ``context`` is given the entry is only removed if it is still
        that exact object, so a late cleanup cannot evict a newer one.
        """
        current = self._contexts.get(session_id)
        if current is None:
            return False
        if context is not None and current is not context:
            return False
        del self._contexts[session_id]
        return True

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._contexts))
