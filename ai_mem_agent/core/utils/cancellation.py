"""Cooperative cancellation shared between the session manager and runners."""
from __future__ import annotations

import threading
from typing import Optional


class CancellationError(Exception):
    """Raised when work is aborted by an external signal.

    Cancellation is never retried and never triggers provider failover.
    """


class AbortSignal:
    """Thread-safe abort flag with an optional reason."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def abort(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until aborted or ``timeout`` elapses; return whether aborted."""
        return self._event.wait(timeout)

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise CancellationError(self._reason or "aborted")


__all__ = ["AbortSignal", "CancellationError"]
