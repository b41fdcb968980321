"""
Intake session persistence.

Sessions are kept as opaque JSON blobs keyed by session id and expire
after a period without reads or writes. Writes are last-write-wins.
"""

import logging
import time
from typing import Callable, Optional

from matter_intake.config import settings
from matter_intake.schemas.session_schema import IntakeSession

logger = logging.getLogger(__name__)


class InMemorySessionStore:
    """Process-local session store with a per-entry TTL."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds or settings.sessions.ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, session_id: str) -> Optional[IntakeSession]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        blob, expires_at = entry
        if self._clock() >= expires_at:
            logger.debug("Session %s expired", session_id)
            del self._entries[session_id]
            return None
        self._entries[session_id] = (blob, self._clock() + self.ttl_seconds)
        return IntakeSession.model_validate_json(blob)

    async def put(self, session: IntakeSession) -> None:
        blob = session.model_dump_json(by_alias=True)
        self._entries[session.session_id] = (blob, self._clock() + self.ttl_seconds)

    async def delete(self, session_id: str) -> None:
        self._entries.pop(session_id, None)

    def purge_expired(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [sid for sid, (_, expires_at) in self._entries.items() if now >= expires_at]
        for sid in expired:
            del self._entries[sid]
        return len(expired)

    def reset(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
