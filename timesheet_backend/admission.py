from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Deque, Iterator

from .config import MAX_CONCURRENT_REQUESTS, PERMIT_TIMEOUT_SECONDS
from .errors import AdmissionTimeout

logger = logging.getLogger(__name__)


class AdmissionController:
    """Fair counting semaphore bounding concurrent conversions.

    ``threading.Semaphore`` makes no ordering promise, so waiters queue in a
    deque and only the head may take a free permit. A caller arriving while
    others wait joins the back of the queue even if a permit is momentarily
    free.
    """

    def __init__(
        self,
        max_permits: int = MAX_CONCURRENT_REQUESTS,
        timeout_seconds: float = PERMIT_TIMEOUT_SECONDS,
    ) -> None:
        if max_permits < 1:
            raise ValueError("max_permits must be at least 1")
        self._max_permits = int(max_permits)
        self._timeout_seconds = max(0.0, float(timeout_seconds))
        self._available = self._max_permits
        self._waiters: Deque[object] = deque()
        self._cond = threading.Condition(threading.Lock())
        logger.info(
            "Admission control initialized with max %d concurrent requests, %.1f second timeout",
            self._max_permits,
            self._timeout_seconds,
        )

    @property
    def max_permits(self) -> int:
        return self._max_permits

    @property
    def timeout_seconds(self) -> float:
        return self._timeout_seconds

    @property
    def available_permits(self) -> int:
        with self._cond:
            return self._available

    @property
    def queued(self) -> int:
        with self._cond:
            return len(self._waiters)

    def acquire(self) -> None:
        """Take a permit, waiting up to the timeout.

        Raises AdmissionTimeout when none frees up in time; in that case no
        permit is held and release() must not be called.
        """
        with self._cond:
            if self._available > 0 and not self._waiters:
                self._available -= 1
                logger.debug("Permit acquired. Available: %d/%d", self._available, self._max_permits)
                return

            ticket = object()
            self._waiters.append(ticket)
            deadline = time.monotonic() + self._timeout_seconds
            try:
                while not (self._waiters[0] is ticket and self._available > 0):
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.warning(
                            "Failed to acquire permit within %.1f seconds. All %d slots busy.",
                            self._timeout_seconds,
                            self._max_permits,
                        )
                        raise AdmissionTimeout(
                            f"No conversion slot free after {self._timeout_seconds:.1f}s",
                            retry_after=self._timeout_seconds,
                        )
                    self._cond.wait(remaining)
                self._waiters.popleft()
                self._available -= 1
            except BaseException:
                if ticket in self._waiters:
                    self._waiters.remove(ticket)
                # The head may have changed; let the next waiter re-check.
                self._cond.notify_all()
                raise
            logger.debug("Permit acquired. Available: %d/%d", self._available, self._max_permits)
            if self._available > 0 and self._waiters:
                self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self._available >= self._max_permits:
                raise RuntimeError("release() called more times than acquire()")
            self._available += 1
            logger.debug("Permit released. Available: %d/%d", self._available, self._max_permits)
            self._cond.notify_all()

    @contextmanager
    def permit(self) -> Iterator[None]:
        """Hold a permit for the duration of the block, released on every exit path."""
        self.acquire()
        try:
            yield
        finally:
            self.release()
