"""Tests for the lock-guarded report accessor."""

from __future__ import annotations

import threading

from agentcheck.diagnostic import ClusterStatus, DiagnosticId, StatusAccessor, StatusCheck


def test_concurrent_add_check_keeps_every_entry() -> None:
    """One hundred concurrent appends produce exactly one hundred checks."""
    accessor = StatusAccessor()
    start = threading.Barrier(100)

    def _worker(index: int) -> None:
        start.wait()
        accessor.add_check(
            StatusCheck(name=DiagnosticId.K8S_VERSION, passing=index % 2 == 0)
        )

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(100)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    checks = accessor.read_from_report(lambda report: list(report.checks))
    assert len(checks) == 100
    assert sum(1 for check in checks if check.passing) == 50


def test_write_and_read_return_callback_results() -> None:
    accessor = StatusAccessor(ClusterStatus(name="cluster"))

    previous = accessor.write_to_report(lambda report: report.name)
    accessor.write_to_report(lambda report: setattr(report, "region", "eu-west-1"))

    assert previous == "cluster"
    assert accessor.read_from_report(lambda report: (report.name, report.region)) == (
        "cluster",
        "eu-west-1",
    )


def test_monitors_observe_writes_only() -> None:
    """Monitors fire after each write while reads stay silent."""
    seen: list[int] = []
    accessor = StatusAccessor(None, lambda report: seen.append(len(report.checks)))

    accessor.add_check(StatusCheck(name=DiagnosticId.K8S_NAMESPACE, passing=True))
    accessor.read_from_report(lambda report: report.checks)
    accessor.add_check(StatusCheck(name=DiagnosticId.K8S_PROVIDER, error="boom"))

    assert seen == [1, 2]


def test_failing_checks_and_serialisation() -> None:
    report = ClusterStatus(name="cluster")
    report.checks.append(StatusCheck(name=DiagnosticId.API_KEY, passing=True))
    report.checks.append(StatusCheck(name=DiagnosticId.SCRAPE_CONFIG, error="missing"))

    assert [check.name for check in report.failing_checks()] == [DiagnosticId.SCRAPE_CONFIG]
    payload = report.to_dict()
    assert payload["name"] == "cluster"
    assert "region" not in payload
    assert payload["state"] == "UNSPECIFIED"
    assert payload["checks"] == [
        {"name": "api_key_valid", "passing": True},
        {"name": "scrape_cfg", "passing": False, "error": "missing"},
    ]
