"""Synchronised access to the single shared diagnostic report."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import TypeVar

from .models import ClusterStatus, StatusCheck

T = TypeVar("T")

ReportMonitor = Callable[[ClusterStatus], None]


class StatusAccessor:
    """Owns one :class:`ClusterStatus` and serialises every access to it.

    Reads and writes share one exclusive, non-reentrant lock. Callbacks passed
    to :meth:`write_to_report` or :meth:`read_from_report` must not call back
    into the accessor.
    """

    def __init__(
        self,
        report: ClusterStatus | None = None,
        *monitors: ReportMonitor,
    ) -> None:
        """Wrap *report* (a fresh one by default); *monitors* observe each write."""
        self._report = report if report is not None else ClusterStatus()
        self._monitors = tuple(monitors)
        self._lock = threading.Lock()

    def write_to_report(self, mutator: Callable[[ClusterStatus], T]) -> T:
        """Run *mutator* with exclusive access and return its result."""
        with self._lock:
            result = mutator(self._report)
            for monitor in self._monitors:
                monitor(self._report)
            return result

    def read_from_report(self, reader: Callable[[ClusterStatus], T]) -> T:
        """Run *reader* with exclusive access and return its result."""
        with self._lock:
            return reader(self._report)

    def add_check(self, check: StatusCheck) -> None:
        """Append *check* to the report."""
        self.write_to_report(lambda report: report.checks.append(check))


__all__ = ["ReportMonitor", "StatusAccessor"]
