"""Cancellation tokens shared between the issuance loop, flows and jobs.

A token wraps a :class:`threading.Event`. Child tokens are cancelled together
with their parent, and a token built with a timeout cancels itself when the
deadline passes, so deadlines compose with caller-driven cancellation.
"""

from __future__ import annotations

import contextlib
import threading
from typing import Callable

DEADLINE_EXCEEDED = "deadline exceeded"
CANCELLED = "cancelled"


class CancelledError(Exception):
    """Raised when work is abandoned because its token was cancelled."""


class CancelToken:
    def __init__(self, parent: CancelToken | None = None, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[CancelToken], None]] = []
        self._reason: str | None = None
        self._timer: threading.Timer | None = None
        self._parent = parent

        if timeout is not None:
            self._timer = threading.Timer(timeout, self.cancel, args=(DEADLINE_EXCEEDED,))
            self._timer.daemon = True
            self._timer.start()

        if parent is not None:
            parent.add_callback(self._on_parent_cancel)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = CANCELLED) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        if self._timer is not None:
            self._timer.cancel()
        for callback in callbacks:
            callback(self)

    def add_callback(
        self, callback: Callable[[CancelToken], None]
    ) -> Callable[[CancelToken], None]:
        """Run ``callback(token)`` on cancel; returns the handle for removal."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return callback
        callback(self)
        return callback

    def remove_callback(self, callback: Callable[[CancelToken], None]) -> None:
        with self._lock, contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to ``timeout`` seconds; True if the token was cancelled."""
        return self._event.wait(timeout)

    def child(self, timeout: float | None = None) -> CancelToken:
        return CancelToken(parent=self, timeout=timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancelledError(self._reason or CANCELLED)

    def close(self) -> None:
        """Stop the deadline timer and detach from the parent."""
        if self._timer is not None:
            self._timer.cancel()
        if self._parent is not None:
            self._parent.remove_callback(self._on_parent_cancel)
            self._parent = None

    def _on_parent_cancel(self, parent: CancelToken) -> None:
        self.cancel(parent.reason or CANCELLED)

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self.cancelled else "active"
        return f"<CancelToken {state}>"


__all__ = ["CANCELLED", "DEADLINE_EXCEEDED", "CancelToken", "CancelledError"]
