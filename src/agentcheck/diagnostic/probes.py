"""Concrete probes bound to diagnostic identifiers by the catalog."""

from __future__ import annotations

import base64
import json
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

import yaml

from ..config import ConfigError, ServicesConfig, load_settings
from ..context import RunContext
from ..http import (
    CONTENT_TYPE_JSON,
    HEADER_ACCEPT,
    HEADER_AUTHORIZATION,
    HEADER_CONTENT_TYPE,
    HttpClient,
    HttpError,
)
from ..kube import KubeClient, KubeError
from .accessor import StatusAccessor
from .models import ClusterStatus, DiagnosticId, ProbeError, StatusCheck, StatusType
from .resilience import BackoffPolicy, RetryPolicy

LOGGER = logging.getLogger(__name__)

ENV_NAMESPACE = "NAMESPACE"
ENV_POD_NAME = "POD_NAME"

KubeFactory = Callable[[], KubeClient]


def _fail(accessor: StatusAccessor, diagnostic: DiagnosticId, error: str) -> None:
    LOGGER.debug("%s failed: %s", diagnostic.value, error)
    accessor.add_check(StatusCheck(name=diagnostic, passing=False, error=error))


def _pass(accessor: StatusAccessor, diagnostic: DiagnosticId) -> None:
    accessor.add_check(StatusCheck(name=diagnostic, passing=True))


def _missing_env(name: str) -> str:
    return f"the env variable `{name}` must exist"


# ---------------------------------------------------------------------------
# Lifecycle markers
# ---------------------------------------------------------------------------


class LifecycleProbe:
    """Set the report's lifecycle state. Records no check."""

    def __init__(self, state: StatusType) -> None:
        """Remember the state written on every call."""
        self.state = state

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        def _set_state(report: ClusterStatus) -> None:
            report.state = self.state

        accessor.write_to_report(_set_state)


# ---------------------------------------------------------------------------
# Cloud API
# ---------------------------------------------------------------------------


class ApiKeyProbe:
    """Verify the cloud API credential against an authenticated endpoint."""

    def __init__(self, host: str, credential: str) -> None:
        self._url = f"{host.rstrip('/')}/v2/insights"
        self._credential = credential.strip()

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        if not self._credential:
            raise ProbeError("no cloud API credential configured")
        headers = {
            HEADER_AUTHORIZATION: self._credential,
            HEADER_ACCEPT: CONTENT_TYPE_JSON,
        }
        try:
            response = client.get(ctx, self._url, headers=headers)
        except HttpError as exc:
            _fail(accessor, DiagnosticId.API_KEY, str(exc))
            return
        if not response.ok:
            _fail(
                accessor,
                DiagnosticId.API_KEY,
                f"GET {self._url} returned HTTP {response.status}",
            )
            return
        _pass(accessor, DiagnosticId.API_KEY)


# ---------------------------------------------------------------------------
# Kubernetes
# ---------------------------------------------------------------------------


class K8sVersionProbe:
    """Record the API server's ``major.minor`` version."""

    def __init__(self, kube_factory: KubeFactory = KubeClient.in_cluster) -> None:
        self._kube_factory = kube_factory

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        try:
            version = self._kube_factory().server_version(ctx)
        except KubeError as exc:
            _fail(accessor, DiagnosticId.K8S_VERSION, f"server version: {exc}")
            return

        def _record(report: ClusterStatus) -> None:
            report.k8s_version = version

        accessor.write_to_report(_record)
        _pass(accessor, DiagnosticId.K8S_VERSION)


class K8sNamespaceProbe:
    """Record the namespace the agent was deployed into."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = env

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        env = os.environ if self._env is None else self._env
        namespace = env.get(ENV_NAMESPACE)
        if namespace is None:
            _fail(accessor, DiagnosticId.K8S_NAMESPACE, _missing_env(ENV_NAMESPACE))
            return

        def _record(report: ClusterStatus) -> None:
            report.namespace = namespace

        accessor.write_to_report(_record)
        _pass(accessor, DiagnosticId.K8S_NAMESPACE)


class K8sProviderProbe:
    """Record the cloud provider id of the node running this pod."""

    def __init__(
        self,
        kube_factory: KubeFactory = KubeClient.in_cluster,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._kube_factory = kube_factory
        self._env = env

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        env = os.environ if self._env is None else self._env
        for name in (ENV_NAMESPACE, ENV_POD_NAME):
            if name not in env:
                _fail(accessor, DiagnosticId.K8S_PROVIDER, _missing_env(name))
                return
        try:
            provider_id = self._kube_factory().provider_id(
                ctx, env[ENV_NAMESPACE], env[ENV_POD_NAME]
            )
        except KubeError as exc:
            LOGGER.warning("Unable to resolve the node provider id: %s", exc)
            _fail(accessor, DiagnosticId.K8S_PROVIDER, str(exc))
            return

        def _record(report: ClusterStatus) -> None:
            report.provider_id = provider_id

        accessor.write_to_report(_record)
        _pass(accessor, DiagnosticId.K8S_PROVIDER)


# ---------------------------------------------------------------------------
# Prometheus
# ---------------------------------------------------------------------------


class KubeStateMetricsProbe:
    """Check kube-state-metrics is reachable and exports the expected metrics."""

    def __init__(
        self,
        endpoint: str,
        metrics: Sequence[str],
        policy: RetryPolicy | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._metrics = tuple(metrics)
        self._policy = policy or RetryPolicy()

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        if not self._endpoint:
            _fail(
                accessor,
                DiagnosticId.KUBE_STATE_METRICS,
                "no kube-state-metrics service endpoint specified in configuration file",
            )
            return
        url = f"{self._endpoint}/metrics"

        def _attempt(attempt_ctx: RunContext) -> None:
            response = client.get(attempt_ctx, url)
            if not response.ok:
                raise ProbeError(f"GET {url} returned HTTP {response.status}")
            body = response.text()
            missing = [metric for metric in self._metrics if metric not in body]
            if missing:
                raise ProbeError(f"metrics not found: {', '.join(missing)}")

        self._policy.run(ctx, accessor, DiagnosticId.KUBE_STATE_METRICS, _attempt)


class ScrapeConfigProbe:
    """Append every configured Prometheus scrape config to the report."""

    def __init__(self, locations: Sequence[Path]) -> None:
        self._locations = tuple(Path(location) for location in locations)

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        if not self._locations:
            _fail(
                accessor,
                DiagnosticId.SCRAPE_CONFIG,
                "no prometheus scrape config locations specified in configuration file",
            )
            return

        for location in self._locations:
            if not location.exists():
                _fail(
                    accessor,
                    DiagnosticId.SCRAPE_CONFIG,
                    f"find scrape configuration failed: {location}",
                )
                continue
            try:
                data = location.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                _fail(accessor, DiagnosticId.SCRAPE_CONFIG, f"failed to read: {location}: {exc}")
                continue

            def _append(report: ClusterStatus, data: str = data) -> None:
                if report.scrape_config:
                    report.scrape_config = f"{report.scrape_config}\n{data}"
                else:
                    report.scrape_config = data
                report.checks.append(StatusCheck(name=DiagnosticId.SCRAPE_CONFIG, passing=True))

            accessor.write_to_report(_append)


# ---------------------------------------------------------------------------
# Admission webhook
# ---------------------------------------------------------------------------


def webhook_url(services: ServicesConfig) -> str:
    """Return the in-cluster validation URL of the insights webhook."""
    return (
        f"https://{services.insights_service}.{services.namespace}"
        ".svc.cluster.local/validate/pod"
    )


def admission_review() -> dict[str, object]:
    """Return an AdmissionReview asking the webhook to validate a test pod."""
    return {
        "kind": "AdmissionReview",
        "apiVersion": "admission.k8s.io/v1",
        "request": {
            "uid": "test-uid-12345",
            "kind": {"group": "", "version": "v1", "kind": "Pod"},
            "resource": {"group": "", "version": "v1", "resource": "pods"},
            "operation": "CREATE",
            "object": {
                "apiVersion": "v1",
                "kind": "Pod",
                "metadata": {
                    "name": "cloudzero-test",
                    "namespace": "default",
                    "labels": {"app": "test"},
                    "annotations": {"app": "test"},
                },
            },
        },
    }


class WebhookProbe:
    """Check the admission webhook answers a validation request.

    TLS verification is disabled; only reachability is being tested.
    """

    def __init__(self, url: str, policy: BackoffPolicy | None = None) -> None:
        self._url = url
        self._policy = policy or BackoffPolicy()
        self._payload = json.dumps(admission_review()).encode("utf-8")

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        def _attempt(attempt_ctx: RunContext) -> None:
            try:
                response = client.post(
                    attempt_ctx,
                    self._url,
                    headers={HEADER_CONTENT_TYPE: CONTENT_TYPE_JSON},
                    body=self._payload,
                    verify=False,
                )
            except HttpError as exc:
                raise ProbeError(f"webhook POST failed: {exc}") from exc
            if response.status != 200:
                raise ProbeError(f"webhook returned {response.status}: {response.text()}")
            try:
                review = response.json()
            except HttpError as exc:
                raise ProbeError(f"could not unmarshal response AdmissionReview: {exc}") from exc
            if not isinstance(review, dict) or not isinstance(review.get("response"), dict):
                raise ProbeError("no AdmissionResponse in webhook reply")

        self._policy.run(ctx, accessor, DiagnosticId.WEBHOOK_SERVER, _attempt)


# ---------------------------------------------------------------------------
# Agent settings
# ---------------------------------------------------------------------------


def _read_configs(paths: Sequence[Path], label: str) -> str:
    chunks: list[str] = []
    for path in paths:
        try:
            text = path.read_text(encoding="utf-8")
            yaml.safe_load(text)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            raise ProbeError(f"failed to create the {label} config: {exc}") from exc
        chunks.append(text)
    return "\n".join(chunks)


def _encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class AgentSettingsProbe:
    """Capture the configuration of every agent component in the report."""

    def __init__(
        self,
        validator_configs: Sequence[Path],
        webhook_configs: Sequence[Path],
        aggregator_configs: Sequence[Path],
    ) -> None:
        self._validator = tuple(Path(item) for item in validator_configs)
        self._webhook = tuple(Path(item) for item in webhook_configs)
        self._aggregator = tuple(Path(item) for item in aggregator_configs)

    def check(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        if not (self._validator and self._webhook and self._aggregator):
            _fail(accessor, DiagnosticId.AGENT_SETTINGS, "there were no settings provided")
            return

        try:
            load_settings(*self._validator, env={})
        except ConfigError as exc:
            _fail(
                accessor,
                DiagnosticId.AGENT_SETTINGS,
                f"failed to create the validator config: {exc}",
            )
            return

        try:
            validator = _read_configs(self._validator, "validator")
            webhook = _read_configs(self._webhook, "webhook")
            aggregator = _read_configs(self._aggregator, "aggregator")
        except ProbeError as exc:
            _fail(accessor, DiagnosticId.AGENT_SETTINGS, str(exc))
            return

        def _record(report: ClusterStatus) -> None:
            report.config_validator_base64 = _encode(validator)
            report.config_webhook_base64 = _encode(webhook)
            report.config_aggregator_base64 = _encode(aggregator)

        accessor.write_to_report(_record)
        _pass(accessor, DiagnosticId.AGENT_SETTINGS)


__all__ = [
    "ENV_NAMESPACE",
    "ENV_POD_NAME",
    "AgentSettingsProbe",
    "ApiKeyProbe",
    "K8sNamespaceProbe",
    "K8sProviderProbe",
    "K8sVersionProbe",
    "KubeFactory",
    "KubeStateMetricsProbe",
    "LifecycleProbe",
    "ScrapeConfigProbe",
    "WebhookProbe",
    "admission_review",
    "webhook_url",
]
