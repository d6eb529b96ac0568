"""
Caller-supplied cancellation signal with an optional deadline.

A `CancelToken` is passed down into every remote and collaborator call.
Code checks it with `raise_if_cancelled()` before starting work and uses
`remaining()` to clamp its own timeouts.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from .errors import OperationCancelled


class CancelToken:
    def __init__(self, *, timeout_sec: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline: Optional[float] = None
        if timeout_sec is not None:
            self._deadline = time.monotonic() + float(timeout_sec)

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def remaining(self, default: Optional[float] = None) -> Optional[float]:
        """Seconds left before the deadline, capped by `default` when given."""
        if self._deadline is None:
            return default
        left = max(0.0, self._deadline - time.monotonic())
        if default is None:
            return left
        return min(left, default)

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True as soon as the token is cancelled."""
        timeout = self.remaining(seconds)
        if self._event.wait(timeout if timeout is not None else seconds):
            return True
        return self.cancelled

    def raise_if_cancelled(self, what: str = "operation") -> None:
        if self._event.is_set():
            raise OperationCancelled(f"{what} cancelled")
        if self.expired:
            raise OperationCancelled(f"{what} deadline exceeded")


def never() -> CancelToken:
    """A token that is never cancelled and has no deadline."""
    return CancelToken()
