"""
Cancellation support for NexusRAG.

A single CancellationToken is created per top-level request and handed down
through the agent loop, tools, deep search fan-out, generation and rerank
waits. Every blocking step checks it before starting work.
"""

import logging
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class OperationCancelled(RuntimeError):
    """Raised when a request was cancelled or ran past its deadline."""


class CancellationToken:
    """Thread-safe cancellation flag with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Initialize token.

        Args:
            timeout: Seconds until the token cancels itself (None = no deadline)
        """
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Cancel every operation holding this token."""
        if not self._event.is_set():
            self.reason = reason
            logger.info(f"Cancellation requested: {reason}")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.reason = self.reason or "deadline exceeded"
            self._event.set()
            return True
        return False

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self, where: str = "") -> None:
        """
        Raise OperationCancelled if the token is cancelled.

        Args:
            where: Short label of the step being skipped (for the message)
        """
        if self.cancelled:
            label = f" before {where}" if where else ""
            raise OperationCancelled(f"Operation cancelled{label}: {self.reason}")

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`, waking early on cancellation. Returns cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(seconds)
        return self.cancelled
