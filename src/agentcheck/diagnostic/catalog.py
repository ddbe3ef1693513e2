"""Registry mapping diagnostic identifiers to probe instances."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from pathlib import Path
from types import MappingProxyType

from ..config import Settings
from .models import DiagnosticId, Probe, StatusType, UnknownDiagnosticError
from .probes import (
    AgentSettingsProbe,
    ApiKeyProbe,
    K8sNamespaceProbe,
    K8sProviderProbe,
    K8sVersionProbe,
    KubeFactory,
    KubeStateMetricsProbe,
    LifecycleProbe,
    ScrapeConfigProbe,
    WebhookProbe,
    webhook_url,
)
from .resilience import BackoffPolicy, RetryPolicy

LOGGER = logging.getLogger(__name__)

ProbeFactory = Callable[[], Probe]


class DiagnosticCatalog:
    """Immutable lookup of probes built once from a factory table.

    Each factory is called exactly once during construction. Lookups are
    pure: unknown or unregistered identifiers are skipped rather than raised.
    """

    def __init__(self, factories: Mapping[DiagnosticId | str, ProbeFactory]) -> None:
        """Validate every key and instantiate its probe."""
        probes: dict[DiagnosticId, Probe] = {}
        for key, factory in factories.items():
            diagnostic = DiagnosticId.parse(key)
            if diagnostic in probes:
                raise UnknownDiagnosticError(f"duplicate diagnostic: {diagnostic.value}")
            probes[diagnostic] = factory()
        self._probes: Mapping[DiagnosticId, Probe] = MappingProxyType(probes)

    def get(self, *ids: DiagnosticId | str) -> list[Probe]:
        """Return the probes registered for *ids*, preserving request order."""
        found: list[Probe] = []
        for item in ids:
            try:
                diagnostic = DiagnosticId.parse(item)
            except UnknownDiagnosticError:
                LOGGER.debug("Skipping unknown diagnostic %r", item)
                continue
            probe = self._probes.get(diagnostic)
            if probe is None:
                LOGGER.debug("No probe registered for %s", diagnostic.value)
                continue
            found.append(probe)
        return found

    def has(self, diagnostic: DiagnosticId | str) -> bool:
        """Return ``True`` when a probe is registered for *diagnostic*."""
        try:
            return DiagnosticId.parse(diagnostic) in self._probes
        except UnknownDiagnosticError:
            return False

    def list(self) -> list[DiagnosticId]:
        """Return the registered public diagnostics in vocabulary order."""
        return [item for item in DiagnosticId if item in self._probes and not item.is_internal]

    def __contains__(self, diagnostic: object) -> bool:
        return isinstance(diagnostic, (DiagnosticId, str)) and self.has(diagnostic)

    def __len__(self) -> int:
        return len(self._probes)

    def __iter__(self) -> Iterator[DiagnosticId]:
        return iter(self._probes)


def build_catalog(
    settings: Settings,
    *,
    env: Mapping[str, str] | None = None,
    kube_factory: KubeFactory | None = None,
    webhook_configs: Sequence[Path] = (),
    aggregator_configs: Sequence[Path] = (),
) -> DiagnosticCatalog:
    """Return the default catalog wired from *settings*.

    ``prometheus_version`` is part of the vocabulary but intentionally has no
    probe, so configuring it is accepted and the check is skipped.
    """
    kube = kube_factory
    retry = RetryPolicy(
        attempts=settings.diagnostics.retry.attempts,
        interval=settings.diagnostics.retry.interval,
    )
    backoff = BackoffPolicy(
        attempts=settings.diagnostics.backoff.attempts,
        base=settings.diagnostics.backoff.base,
        timeout=settings.diagnostics.backoff.timeout,
    )

    def _version() -> Probe:
        return K8sVersionProbe(kube) if kube is not None else K8sVersionProbe()

    def _provider() -> Probe:
        if kube is not None:
            return K8sProviderProbe(kube, env=env)
        return K8sProviderProbe(env=env)

    factories: dict[DiagnosticId | str, ProbeFactory] = {
        DiagnosticId.API_KEY: lambda: ApiKeyProbe(
            settings.cloudzero.host, settings.cloudzero.credential
        ),
        DiagnosticId.K8S_VERSION: _version,
        DiagnosticId.K8S_NAMESPACE: lambda: K8sNamespaceProbe(env=env),
        DiagnosticId.K8S_PROVIDER: _provider,
        DiagnosticId.KUBE_STATE_METRICS: lambda: KubeStateMetricsProbe(
            settings.prometheus.kube_state_metrics_service_endpoint,
            settings.prometheus.kube_metrics,
            policy=retry,
        ),
        DiagnosticId.SCRAPE_CONFIG: lambda: ScrapeConfigProbe(
            settings.prometheus.configurations
        ),
        DiagnosticId.WEBHOOK_SERVER: lambda: WebhookProbe(
            webhook_url(settings.services), policy=backoff
        ),
        DiagnosticId.AGENT_SETTINGS: lambda: AgentSettingsProbe(
            settings.config_files, webhook_configs, aggregator_configs
        ),
        DiagnosticId.INIT_START: lambda: LifecycleProbe(StatusType.INIT_STARTED),
        DiagnosticId.INIT_OK: lambda: LifecycleProbe(StatusType.INIT_OK),
        DiagnosticId.INIT_FAILED: lambda: LifecycleProbe(StatusType.INIT_FAILED),
        DiagnosticId.POD_START: lambda: LifecycleProbe(StatusType.POD_STARTED),
        DiagnosticId.POD_STOP: lambda: LifecycleProbe(StatusType.POD_STOPPING),
    }
    return DiagnosticCatalog(factories)


__all__ = ["DiagnosticCatalog", "ProbeFactory", "build_catalog"]
