"""Tests for the diagnostic catalog."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentcheck.config import default_settings, load_settings
from agentcheck.context import RunContext
from agentcheck.diagnostic import (
    DiagnosticId,
    StatusAccessor,
    UnknownDiagnosticError,
    public_diagnostics,
)
from agentcheck.diagnostic.catalog import DiagnosticCatalog, build_catalog
from agentcheck.diagnostic.probes import LifecycleProbe
from agentcheck.http import HttpClient


class _Named:
    def __init__(self, name: str) -> None:
        self.name = name

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        return None


def test_factories_are_called_exactly_once() -> None:
    calls: list[str] = []

    def _factory(name: str):
        def _build() -> _Named:
            calls.append(name)
            return _Named(name)

        return _build

    catalog = DiagnosticCatalog(
        {
            DiagnosticId.K8S_VERSION: _factory("version"),
            "k8s_namespace": _factory("namespace"),
        }
    )
    catalog.get(DiagnosticId.K8S_VERSION, DiagnosticId.K8S_VERSION)
    catalog.get("k8s_namespace")

    assert sorted(calls) == ["namespace", "version"]
    assert len(catalog) == 2


def test_get_preserves_request_order_and_skips_unknown_ids() -> None:
    catalog = DiagnosticCatalog(
        {
            DiagnosticId.API_KEY: lambda: _Named("api"),
            DiagnosticId.K8S_VERSION: lambda: _Named("version"),
            DiagnosticId.SCRAPE_CONFIG: lambda: _Named("scrape"),
        }
    )

    probes = catalog.get(
        DiagnosticId.SCRAPE_CONFIG,
        "not-a-check",
        DiagnosticId.API_KEY,
        DiagnosticId.PROMETHEUS_VERSION,
        " K8S_VERSION ",
    )

    assert [probe.name for probe in probes] == ["scrape", "api", "version"]  # type: ignore[attr-defined]
    assert catalog.get() == []


def test_get_returns_same_instance_each_time() -> None:
    catalog = DiagnosticCatalog({DiagnosticId.API_KEY: lambda: _Named("api")})

    assert catalog.get(DiagnosticId.API_KEY)[0] is catalog.get("api_key_valid")[0]


def test_construction_rejects_invalid_keys() -> None:
    with pytest.raises(UnknownDiagnosticError):
        DiagnosticCatalog({"bogus": lambda: _Named("bogus")})


def test_has_contains_and_list() -> None:
    catalog = DiagnosticCatalog(
        {
            DiagnosticId.K8S_PROVIDER: lambda: _Named("provider"),
            DiagnosticId.INIT_OK: lambda: _Named("init-ok"),
        }
    )

    assert catalog.has("k8s_provider")
    assert not catalog.has("bogus")
    assert DiagnosticId.INIT_OK in catalog
    assert DiagnosticId.API_KEY not in catalog
    assert 42 not in catalog
    assert catalog.list() == [DiagnosticId.K8S_PROVIDER]


def test_default_catalog_registers_every_public_check_but_prometheus_version() -> None:
    catalog = build_catalog(default_settings())

    expected = [item for item in public_diagnostics() if item is not DiagnosticId.PROMETHEUS_VERSION]
    assert catalog.list() == expected
    assert not catalog.has(DiagnosticId.PROMETHEUS_VERSION)
    assert not catalog.has(DiagnosticId.CONFIG_LOAD)
    for marker in (
        DiagnosticId.INIT_START,
        DiagnosticId.INIT_OK,
        DiagnosticId.INIT_FAILED,
        DiagnosticId.POD_START,
        DiagnosticId.POD_STOP,
    ):
        (probe,) = catalog.get(marker)
        assert isinstance(probe, LifecycleProbe)


def test_default_catalog_uses_configured_settings(sample_config: Path) -> None:
    settings = load_settings(sample_config, env={})
    catalog = build_catalog(settings, env={"NAMESPACE": "agents"})

    accessor = StatusAccessor()
    (probe,) = catalog.get(DiagnosticId.K8S_NAMESPACE)
    probe.check(RunContext.background(), HttpClient(), accessor)

    assert accessor.read_from_report(lambda report: report.namespace) == "agents"
