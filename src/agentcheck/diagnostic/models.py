"""Data models shared by the diagnostic engine and its probes."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ..context import RunContext
    from ..http import HttpClient
    from .accessor import StatusAccessor


class UnknownDiagnosticError(ValueError):
    """Raised when a diagnostic identifier is outside the known vocabulary."""


class UnknownStageError(ValueError):
    """Raised when a stage name is outside the known lifecycle stages."""


def _normalise(value: object) -> str:
    return str(value).strip().lower()


class DiagnosticId(str, Enum):
    """Closed vocabulary of diagnostic identifiers."""

    API_KEY = "api_key_valid"
    K8S_VERSION = "k8s_version"
    K8S_NAMESPACE = "k8s_namespace"
    K8S_PROVIDER = "k8s_provider"
    KUBE_STATE_METRICS = "kube_state_metrics_reachable"
    PROMETHEUS_VERSION = "prometheus_version"
    SCRAPE_CONFIG = "scrape_cfg"
    WEBHOOK_SERVER = "webhook_server_reachable"
    AGENT_SETTINGS = "agent_settings"

    INIT_START = "init_start"
    INIT_OK = "init_ok"
    INIT_FAILED = "init_failed"
    POD_START = "pod_start"
    POD_STOP = "pod_stop"
    CONFIG_LOAD = "config_load"

    @property
    def is_internal(self) -> bool:
        """Return ``True`` for lifecycle markers that configuration may not name."""
        return self in _INTERNAL_DIAGNOSTICS

    @classmethod
    def parse(cls, value: object) -> DiagnosticId:
        """Return the identifier matching *value* after trimming and lower-casing."""
        if isinstance(value, cls):
            return value
        try:
            return cls(_normalise(value))
        except ValueError as exc:
            raise UnknownDiagnosticError(f"unknown diagnostic check: {value}") from exc


_INTERNAL_DIAGNOSTICS = frozenset(
    {
        DiagnosticId.INIT_START,
        DiagnosticId.INIT_OK,
        DiagnosticId.INIT_FAILED,
        DiagnosticId.POD_START,
        DiagnosticId.POD_STOP,
        DiagnosticId.CONFIG_LOAD,
    }
)


def public_diagnostics() -> tuple[DiagnosticId, ...]:
    """Return the diagnostics that configuration is allowed to reference."""
    return tuple(item for item in DiagnosticId if not item.is_internal)


class StageName(str, Enum):
    """Lifecycle stages that select which diagnostics run."""

    INIT = "pre-start"
    START = "post-start"
    STOP = "pre-stop"
    CONFIG_LOAD = "config-load"

    @classmethod
    def parse(cls, value: object) -> StageName:
        """Return the stage matching *value* after trimming and lower-casing."""
        if isinstance(value, cls):
            return value
        try:
            return cls(_normalise(value))
        except ValueError as exc:
            raise UnknownStageError(f"invalid stage: {value}") from exc


class StatusType(IntEnum):
    """Lifecycle state recorded in the report."""

    UNSPECIFIED = 0
    INIT_STARTED = 1
    INIT_OK = 2
    INIT_FAILED = 3
    POD_STARTED = 4
    POD_STOPPING = 5


@dataclass(slots=True, frozen=True)
class Stage:
    """Configured stage: its name, enforcement flag and ordered checks."""

    name: StageName
    enforce: bool = False
    checks: tuple[DiagnosticId, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name.value,
            "enforce": self.enforce,
            "checks": [check.value for check in self.checks],
        }


@dataclass(slots=True, frozen=True)
class StatusCheck:
    """Single diagnostic result. Immutable once appended to a report."""

    name: DiagnosticId
    passing: bool = False
    error: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload: dict[str, object] = {"name": self.name.value, "passing": self.passing}
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class ClusterStatus:
    """Mutable aggregate of cluster metadata and diagnostic results."""

    account: str = ""
    region: str = ""
    name: str = ""
    namespace: str = ""
    provider_id: str = ""
    release_name: str = ""
    k8s_version: str = ""
    chart_version: str = ""
    agent_version: str = ""
    validator_version: str = ""
    scrape_config: str = ""
    config_validator_base64: str = ""
    config_webhook_base64: str = ""
    config_aggregator_base64: str = ""
    state: StatusType = StatusType.UNSPECIFIED
    checks: list[StatusCheck] = field(default_factory=list)

    def failing_checks(self) -> list[StatusCheck]:
        """Return the checks that did not pass, in report order."""
        return [check for check in self.checks if not check.passing]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable mapping, omitting empty string fields."""
        payload: dict[str, object] = {}
        for key in (
            "account",
            "region",
            "name",
            "namespace",
            "provider_id",
            "release_name",
            "k8s_version",
            "chart_version",
            "agent_version",
            "validator_version",
            "scrape_config",
            "config_validator_base64",
            "config_webhook_base64",
            "config_aggregator_base64",
        ):
            value = getattr(self, key)
            if value:
                payload[key] = value
        payload["state"] = self.state.name
        payload["checks"] = [check.to_dict() for check in self.checks]
        return payload


class Probe(Protocol):
    """Unit implementing one diagnostic's check logic.

    Implementations record their outcome through ``accessor`` and raise only
    for conditions that must abort the rest of their stage.
    """

    def check(
        self,
        ctx: RunContext,
        client: HttpClient,
        accessor: StatusAccessor,
    ) -> None:
        """Run the check and record results on the shared report."""
        ...


class ProbeError(RuntimeError):
    """Raised by a probe when the remainder of its stage must not run."""


class DiagnosticRunError(RuntimeError):
    """Base class for orchestration failures surfaced from a run.

    The partially populated report stays reachable through ``accessor``.
    """

    def __init__(self, message: str, accessor: StatusAccessor) -> None:
        """Store the message and the accessor holding the partial report."""
        super().__init__(message)
        self.accessor = accessor


class StageAbortedError(DiagnosticRunError):
    """A sequential (pre or post) probe aborted its stage."""

    def __init__(
        self,
        stage: str,
        probe: Probe,
        cause: Exception,
        accessor: StatusAccessor,
    ) -> None:
        """Record which sequential stage and probe aborted the run."""
        super().__init__(str(cause), accessor)
        self.stage = stage
        self.probe = probe


class PlanStageError(DiagnosticRunError):
    """One or more parallel probes raised; their errors are joined."""

    def __init__(self, errors: Sequence[Exception], accessor: StatusAccessor) -> None:
        """Join the collected errors into a single message."""
        super().__init__("\n".join(str(error) for error in errors), accessor)
        self.errors = tuple(errors)


__all__ = [
    "ClusterStatus",
    "DiagnosticId",
    "DiagnosticRunError",
    "PlanStageError",
    "Probe",
    "ProbeError",
    "Stage",
    "StageAbortedError",
    "StageName",
    "StatusCheck",
    "StatusType",
    "UnknownDiagnosticError",
    "UnknownStageError",
    "public_diagnostics",
]
