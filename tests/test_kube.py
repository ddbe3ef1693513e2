"""Tests for the in-cluster Kubernetes reader."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentcheck.context import RunContext
from agentcheck.kube import KubeClient, KubeError


def test_in_cluster_requires_service_env(tmp_path: Path) -> None:
    with pytest.raises(KubeError, match="KUBERNETES_SERVICE_HOST"):
        KubeClient.in_cluster(env={}, service_account_dir=tmp_path)


def test_in_cluster_requires_token(tmp_path: Path) -> None:
    env = {"KUBERNETES_SERVICE_HOST": "10.0.0.1", "KUBERNETES_SERVICE_PORT": "443"}

    with pytest.raises(KubeError, match="service account token"):
        KubeClient.in_cluster(env=env, service_account_dir=tmp_path)


def test_in_cluster_builds_https_endpoint(tmp_path: Path) -> None:
    (tmp_path / "token").write_text("abc\n", encoding="utf-8")
    env = {"KUBERNETES_SERVICE_HOST": "fd00::1", "KUBERNETES_SERVICE_PORT": "6443"}

    client = KubeClient.in_cluster(env=env, service_account_dir=tmp_path)

    assert client.host == "https://[fd00::1]:6443"


def test_provider_id_requires_scheduled_pod(stub_server) -> None:
    stub_server.expect("GET", "/api/v1/namespaces/ns/pods/p", body={"spec": {}})

    with pytest.raises(KubeError, match="not scheduled"):
        KubeClient(stub_server.url).provider_id(RunContext.background(), "ns", "p")


def test_get_json_rejects_non_objects(stub_server) -> None:
    stub_server.expect("GET", "/version", body="[1, 2]")

    with pytest.raises(KubeError, match="expected a JSON object"):
        KubeClient(stub_server.url).get_json(RunContext.background(), "/version")
