"""Tests for the agentcheck CLI."""
from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner, Result

from agentcheck import __version__
from agentcheck.cli import app
from agentcheck.telemetry import STATUS_PATH

runner = CliRunner()


@pytest.fixture(autouse=True)
def _cluster_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NAMESPACE", "cloudzero")
    monkeypatch.delenv("AGENTCHECK_CONFIG_FILE", raising=False)


def _report(result: Result) -> dict[str, Any]:
    output = result.stdout
    payload, _ = json.JSONDecoder().raw_decode(output[output.index("{"):])
    return payload


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"agentcheck {__version__}" in result.stdout


def test_get_available_lists_public_checks() -> None:
    result = runner.invoke(app, ["diagnose", "get-available"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert "- k8s_version" in lines
    assert "- scrape_cfg" in lines
    assert "- init_ok" not in lines
    assert "- prometheus_version" not in lines


def test_pre_start_passes(sample_config: Path) -> None:
    result = runner.invoke(app, ["diagnose", "pre-start", "-f", str(sample_config), "--json"])

    assert result.exit_code == 0, result.output
    report = _report(result)
    assert report["state"] == "INIT_OK"
    assert report["name"] == "test-cluster"
    assert report["namespace"] == "cloudzero"
    assert report["chart_version"] == "1.2.3"
    assert report["validator_version"] == __version__
    assert report["summary"] == {"total": 2, "passing": 2, "failing": 0}


def test_pre_start_renders_table(sample_config: Path) -> None:
    result = runner.invoke(app, ["diagnose", "pre-start", "-f", str(sample_config)])

    assert result.exit_code == 0, result.output
    assert "k8s_namespace" in result.stdout
    assert "scrape_cfg" in result.stdout


def test_pre_start_fails_when_enforced_check_fails(
    sample_config: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("NAMESPACE")

    result = runner.invoke(app, ["diagnose", "pre-start", "-f", str(sample_config), "--json"])

    assert result.exit_code == 4
    report = _report(result)
    assert report["state"] == "INIT_FAILED"
    assert {
        "name": "k8s_namespace",
        "passing": False,
        "error": "the env variable `NAMESPACE` must exist",
    } in report["checks"]


def test_post_start_failures_are_not_enforced(
    sample_config: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("NAMESPACE")

    result = runner.invoke(app, ["diagnose", "post-start", "-f", str(sample_config), "--json"])

    assert result.exit_code == 0, result.output
    report = _report(result)
    assert report["state"] == "POD_STARTED"
    assert report["summary"]["failing"] == 1


def test_pre_stop_without_checks(sample_config: Path) -> None:
    result = runner.invoke(app, ["diagnose", "pre-stop", "-f", str(sample_config), "--json"])

    assert result.exit_code == 0, result.output
    report = _report(result)
    assert report["state"] == "POD_STOPPING"
    assert report["checks"] == []


def test_invalid_config_exits_with_validation_code(tmp_path: Path) -> None:
    result = runner.invoke(app, ["diagnose", "pre-start", "-f", str(tmp_path / "absent.yml")])

    assert result.exit_code == 2
    assert "Invalid configuration" in result.stdout


def test_run_rejects_unknown_check(sample_config: Path) -> None:
    result = runner.invoke(
        app, ["diagnose", "run", "--check", "nonsense", "-f", str(sample_config)]
    )

    assert result.exit_code == 2
    assert "unknown diagnostic check: nonsense" in result.stdout


def test_run_prints_report_and_posts(
    stub_server,
    config_writer: Callable[..., Path],
) -> None:
    stub_server.expect("POST", STATUS_PATH, status=200)
    config = config_writer(host=stub_server.url, disable_telemetry=False)

    result = runner.invoke(
        app,
        ["diagnose", "run", "--check", "k8s_namespace, scrape_cfg", "-f", str(config), "--post"],
    )

    assert result.exit_code == 0, result.output
    report = _report(result)
    assert sorted(check["name"] for check in report["checks"]) == ["k8s_namespace", "scrape_cfg"]
    assert report["state"] == "INIT_OK"
    (request,) = stub_server.requests_for("POST", STATUS_PATH)
    assert json.loads(request.body)["name"] == "test-cluster"


def test_run_failures_do_not_change_exit_code(
    sample_config: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("NAMESPACE")

    result = runner.invoke(
        app, ["diagnose", "run", "--check", "k8s_namespace", "-f", str(sample_config)]
    )

    assert result.exit_code == 0, result.output
    assert _report(result)["state"] == "INIT_FAILED"


def test_telemetry_failure_is_reported_but_not_fatal(
    stub_server,
    config_writer: Callable[..., Path],
) -> None:
    stub_server.expect("POST", STATUS_PATH, status=500, body="unavailable")
    config = config_writer(host=stub_server.url, disable_telemetry=False)

    result = runner.invoke(app, ["diagnose", "pre-stop", "-f", str(config)])

    assert result.exit_code == 0, result.output
    assert "Failed to post status" in result.stdout


def test_config_load_encodes_component_configs(sample_config: Path, tmp_path: Path) -> None:
    webhook = tmp_path / "webhook.yml"
    webhook.write_text("server:\n  port: 8443\n", encoding="utf-8")
    aggregator = tmp_path / "aggregator.yml"
    aggregator.write_text("database:\n  max_records: 100\n", encoding="utf-8")

    result = runner.invoke(
        app,
        [
            "diagnose",
            "config-load",
            "-f",
            str(sample_config),
            "--config-webhook",
            str(webhook),
            "--config-aggregator",
            str(aggregator),
            "--json",
        ],
    )

    assert result.exit_code == 0, result.output
    report = _report(result)
    assert report["checks"] == [{"name": "agent_settings", "passing": True}]
    assert report["config_webhook_base64"]
    assert report["config_aggregator_base64"]


def test_config_show_json_hides_credential(sample_config: Path) -> None:
    result = runner.invoke(app, ["config", "show", "-f", str(sample_config), "--json"])

    assert result.exit_code == 0, result.output
    data = _report(result)
    assert data["deployment"]["cluster_name"] == "test-cluster"
    assert "credential" not in data["cloudzero"]
    assert "secret-key" not in result.stdout


def test_operations_log_records_command(sample_config: Path, tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "operations.jsonl"
    override = tmp_path / "logging.yml"
    override.write_text(f"logging:\n  location: {log_file}\n", encoding="utf-8")

    result = runner.invoke(
        app, ["diagnose", "pre-start", "-f", str(sample_config), "-f", str(override)]
    )

    assert result.exit_code == 0, result.output
    (line,) = log_file.read_text(encoding="utf-8").splitlines()
    record = json.loads(line)
    assert record["command"] == "diagnose pre-start"
    assert record["result"]["status"] == "success"
    assert record["steps"][0] == {
        "name": "stage.pre-start",
        "status": "success",
        "detail": "2 checks planned",
    }
