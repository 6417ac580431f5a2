from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Dict, Optional

from .config import SESSION_TTL_MINUTES
from .security import mask_session_id, normalize_session_id
from .storage import FileStorage

logger = logging.getLogger(__name__)


class SessionTracker:
    """Anonymous visitor sessions and convert-and-forget cleanup.

    When a session ends or sits idle past the TTL, every file it owns is
    deleted and its ownership entries are dropped.
    """

    def __init__(
        self,
        storage: FileStorage,
        ttl_minutes: float = SESSION_TTL_MINUTES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.ttl_seconds = max(0.0, float(ttl_minutes)) * 60.0
        self.clock = clock
        self._lock = threading.Lock()
        self._last_seen: Dict[str, float] = {}

    def resolve(self, raw_session_id: Optional[str]) -> tuple[str, bool]:
        """Return (session_id, is_new) for an incoming cookie value.

        Missing or malformed cookies get a fresh UUID4 session.
        """
        if raw_session_id:
            try:
                sid = normalize_session_id(raw_session_id)
            except ValueError:
                logger.debug("Ignoring malformed session cookie")
            else:
                self.touch(sid)
                return sid, False
        sid = str(uuid.uuid4())
        self.touch(sid)
        logger.debug("Session created: %s", mask_session_id(sid))
        return sid, True

    def touch(self, session_id: str) -> None:
        with self._lock:
            self._last_seen[session_id] = self.clock()

    def last_seen(self, session_id: str) -> Optional[float]:
        with self._lock:
            return self._last_seen.get(session_id)

    def end(self, session_id: str) -> int:
        """Delete a session's files and forget it. Returns the number of files deleted."""
        with self._lock:
            self._last_seen.pop(session_id, None)
        files = self.storage.ownership.files_for(session_id)
        deleted = self.storage.delete_files(files) if files else 0
        self.storage.ownership.forget(session_id)
        logger.info(
            "Session cleanup completed for %s - deleted: %d, total: %d",
            mask_session_id(session_id),
            deleted,
            len(files),
        )
        return deleted

    def expire_idle(self, now: Optional[float] = None) -> int:
        """End every session idle longer than the TTL. Returns how many ended."""
        if not self.ttl_seconds:
            return 0
        now = self.clock() if now is None else now
        with self._lock:
            expired = [sid for sid, seen in self._last_seen.items() if now - seen > self.ttl_seconds]
        for sid in expired:
            try:
                self.end(sid)
            except Exception as e:
                logger.error("Failed to clean up expired session %s: %s", mask_session_id(sid), e)
        if expired:
            logger.info("Expired %d idle session(s)", len(expired))
        return len(expired)
