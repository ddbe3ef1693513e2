"""Utility helpers for serialising diagnostic reports."""
from __future__ import annotations

import json

from .accessor import StatusAccessor
from .models import ClusterStatus, StatusCheck


def serialize_report(report: ClusterStatus) -> dict[str, object]:
    """Convert a report into a JSON-serialisable mapping."""
    payload = report.to_dict()
    checks = report.checks
    payload["summary"] = {
        "total": len(checks),
        "passing": sum(1 for check in checks if check.passing),
        "failing": sum(1 for check in checks if not check.passing),
    }
    return payload


def snapshot(accessor: StatusAccessor) -> dict[str, object]:
    """Serialise the accessor's report while holding its lock."""
    return accessor.read_from_report(serialize_report)


def report_json(accessor: StatusAccessor, *, indent: int | None = 2) -> str:
    """Return the accessor's report encoded as JSON."""
    return json.dumps(snapshot(accessor), indent=indent)


def check_rows(checks: list[StatusCheck]) -> list[tuple[str, str, str]]:
    """Return ``(name, passing, error)`` rows for tabular rendering."""
    return [
        (check.name.value, "yes" if check.passing else "no", check.error)
        for check in checks
    ]


__all__ = ["check_rows", "report_json", "serialize_report", "snapshot"]
