"""Cancellation and deadline propagation for diagnostic runs."""

from __future__ import annotations

import threading
import time


class RunContext:
    """Carries cancellation and an optional deadline through every probe call.

    The runner never imposes a deadline of its own; callers derive one with
    :meth:`with_timeout`. Children observe their parent's cancellation.
    """

    def __init__(
        self,
        deadline: float | None = None,
        parent: RunContext | None = None,
    ) -> None:
        """Create a context expiring at *deadline* (a ``time.monotonic`` value)."""
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline
        self._parent = parent
        self._event = threading.Event()

    @classmethod
    def background(cls) -> RunContext:
        """Return a context that is never cancelled and has no deadline."""
        return cls()

    def with_timeout(self, seconds: float) -> RunContext:
        """Return a child context that expires after *seconds*."""
        return RunContext(deadline=time.monotonic() + max(seconds, 0.0), parent=self)

    def cancel(self) -> None:
        """Cancel this context and every child derived from it."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once cancelled directly, via a parent, or by deadline."""
        if self._event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return True
        return self._parent.cancelled if self._parent is not None else False

    def remaining(self) -> float | None:
        """Return seconds left before the deadline, or ``None`` when unbounded."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def timeout(self, default: float) -> float:
        """Return *default* clipped to the time remaining on this context."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def sleep(self, seconds: float) -> bool:
        """Wait up to *seconds*; return ``False`` if cancelled before it elapses."""
        end = time.monotonic() + max(seconds, 0.0)
        while True:
            if self.cancelled:
                return False
            now = time.monotonic()
            if now >= end:
                return True
            wait_for = end - now
            remaining = self.remaining()
            if remaining is not None:
                wait_for = min(wait_for, remaining)
            # Short slices so a parent's cancellation is noticed promptly.
            self._event.wait(min(wait_for, 0.05))


__all__ = ["RunContext"]
