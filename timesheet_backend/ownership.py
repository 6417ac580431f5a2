"""Session-scoped ownership of stored files.

Stored names are unguessable, but a leaked link must still not let another
visitor download the file: every download checks ownership here first.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, FrozenSet, Optional, Set

from .security import mask_session_id

logger = logging.getLogger(__name__)


class OwnershipRegistry:
    """Bidirectional session <-> filename index.

    A filename has exactly one owner; tracking it again from another session
    moves it (last writer wins). Both maps are only mutated together under
    ``_lock`` so no reader can observe them disagreeing. The lock never covers
    I/O, only dict updates.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_to_files: Dict[str, Set[str]] = {}
        self._file_to_session: Dict[str, str] = {}

    def track(self, session_id: Optional[str], filename: Optional[str]) -> None:
        if not session_id or not filename:
            logger.warning("Attempted to track file with empty session id or filename")
            return

        with self._lock:
            previous = self._file_to_session.get(filename)
            if previous is not None and previous != session_id:
                owned = self._session_to_files.get(previous)
                if owned is not None:
                    owned.discard(filename)
                    if not owned:
                        del self._session_to_files[previous]
            self._session_to_files.setdefault(session_id, set()).add(filename)
            self._file_to_session[filename] = session_id

        if previous is not None and previous != session_id:
            logger.info(
                "Ownership of %r moved from session %s to %s",
                filename,
                mask_session_id(previous),
                mask_session_id(session_id),
            )
        logger.debug("Tracked file %r for session %s", filename, mask_session_id(session_id))

    def verify(self, session_id: Optional[str], filename: Optional[str]) -> bool:
        if not session_id or not filename:
            logger.warning("Ownership verification failed: empty session or filename")
            return False

        with self._lock:
            owner = self._file_to_session.get(filename)

        if owner != session_id:
            logger.warning(
                "Access denied: session %s attempted to access file %r owned by session %s",
                mask_session_id(session_id),
                filename,
                mask_session_id(owner),
            )
            return False
        return True

    def owner_of(self, filename: str) -> Optional[str]:
        with self._lock:
            return self._file_to_session.get(filename)

    def files_for(self, session_id: str) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._session_to_files.get(session_id, ()))

    def forget(self, session_id: Optional[str]) -> Set[str]:
        """Drop a session and every file it owns. Returns the dropped names."""
        if not session_id:
            return set()
        with self._lock:
            files = self._session_to_files.pop(session_id, set())
            for filename in files:
                if self._file_to_session.get(filename) == session_id:
                    del self._file_to_session[filename]
        if files:
            logger.info("Cleaned up %d file(s) for session %s", len(files), mask_session_id(session_id))
        return files

    def remove_file(self, filename: Optional[str]) -> None:
        """Stop tracking one file, e.g. after it was deleted from disk."""
        if not filename:
            return
        with self._lock:
            session_id = self._file_to_session.pop(filename, None)
            if session_id is not None:
                owned = self._session_to_files.get(session_id)
                if owned is not None:
                    owned.discard(filename)
                    if not owned:
                        del self._session_to_files[session_id]
        if session_id is not None:
            logger.debug("Removed file %r from session %s", filename, mask_session_id(session_id))

    def clear(self) -> None:
        with self._lock:
            self._session_to_files.clear()
            self._file_to_session.clear()
        logger.info("Cleared all file ownership tracking data")

    def sessions(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._session_to_files)

    def __len__(self) -> int:
        with self._lock:
            return len(self._file_to_session)
