"""Configuration loader for agentcheck.

Values are merged from several sources, later ones winning:

1. Built-in defaults.
2. Each YAML file passed on the command line, in order (or the file named by
   ``AGENTCHECK_CONFIG_FILE`` when none is given).
3. Environment variables prefixed with ``AGENTCHECK_``.
4. Explicit overrides supplied programmatically.

Environment keys use double underscores to express nesting, e.g.::

    export AGENTCHECK_DEPLOYMENT__CLUSTER_NAME=prod-east
    export AGENTCHECK_CLOUDZERO__DISABLE_TELEMETRY=true

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
flow-style lists are parsed naturally. Stage names and diagnostic identifiers
are checked against their closed vocabularies here, so a runner is never
built from a configuration that names an unknown check.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml

from .diagnostic.models import (
    DiagnosticId,
    Stage,
    StageName,
    UnknownDiagnosticError,
    UnknownStageError,
)

ENV_PREFIX = "AGENTCHECK_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
ALLOWED_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class LoggingConfig:
    """Log level and optional log file location."""

    level: str = "info"
    location: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "level": self.level,
            "location": str(self.location) if self.location is not None else None,
        }


@dataclass(frozen=True)
class DeploymentConfig:
    """Identity of the cluster being validated."""

    account_id: str = ""
    cluster_name: str = ""
    region: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "account_id": self.account_id,
            "cluster_name": self.cluster_name,
            "region": self.region,
        }


@dataclass(frozen=True)
class VersionsConfig:
    """Chart and agent versions stamped into every report."""

    chart_version: str = ""
    agent_version: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"chart_version": self.chart_version, "agent_version": self.agent_version}


@dataclass(frozen=True)
class CloudzeroConfig:
    """Cloud API endpoint, credential and telemetry switch."""

    host: str = "https://api.cloudzero.com"
    credentials_file: Path | None = None
    credential: str = field(default="", repr=False)
    disable_telemetry: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation (the credential is never emitted)."""
        return {
            "host": self.host,
            "credentials_file": (
                str(self.credentials_file) if self.credentials_file is not None else None
            ),
            "disable_telemetry": self.disable_telemetry,
        }


@dataclass(frozen=True)
class PrometheusConfig:
    """Where kube-state-metrics lives and which scrape configs to report."""

    kube_state_metrics_service_endpoint: str = ""
    kube_metrics: tuple[str, ...] = ()
    configurations: tuple[Path, ...] = ()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "kube_state_metrics_service_endpoint": self.kube_state_metrics_service_endpoint,
            "kube_metrics": list(self.kube_metrics),
            "configurations": [str(path) for path in self.configurations],
        }


@dataclass(frozen=True)
class ServicesConfig:
    """In-cluster service names used to reach the agent's own components."""

    namespace: str = ""
    insights_service: str = ""
    collector_service: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "namespace": self.namespace,
            "insights_service": self.insights_service,
            "collector_service": self.collector_service,
        }


@dataclass(frozen=True)
class RetrySettings:
    """Bounded-retry tunables for reachability probes."""

    attempts: int = 12
    interval: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts, "interval": self.interval}


@dataclass(frozen=True)
class BackoffSettings:
    """Exponential-backoff tunables for slow endpoint probes."""

    attempts: int = 5
    base: float = 1.0
    timeout: float = 10.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"attempts": self.attempts, "base": self.base, "timeout": self.timeout}


@dataclass(frozen=True)
class DiagnosticsConfig:
    """Stage plan plus execution tunables."""

    stages: tuple[Stage, ...] = ()
    max_workers: int = 8
    retry: RetrySettings = RetrySettings()
    backoff: BackoffSettings = BackoffSettings()

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "stages": [stage.to_dict() for stage in self.stages],
            "max_workers": self.max_workers,
            "retry": self.retry.to_dict(),
            "backoff": self.backoff.to_dict(),
        }


@dataclass(frozen=True)
class Settings:
    """Resolved configuration values for agentcheck."""

    config_files: tuple[Path, ...]
    logging: LoggingConfig
    deployment: DeploymentConfig
    versions: VersionsConfig
    cloudzero: CloudzeroConfig
    prometheus: PrometheusConfig
    services: ServicesConfig
    diagnostics: DiagnosticsConfig

    def stage(self, name: StageName | str) -> tuple[Stage, ...]:
        """Return every configured stage called *name*, in file order."""
        wanted = StageName.parse(name)
        return tuple(stage for stage in self.diagnostics.stages if stage.name is wanted)

    def with_stages(self, *stages: Stage) -> Settings:
        """Return a copy whose stage plan is replaced by *stages*."""
        diagnostics = DiagnosticsConfig(
            stages=tuple(stages),
            max_workers=self.diagnostics.max_workers,
            retry=self.diagnostics.retry,
            backoff=self.diagnostics.backoff,
        )
        return Settings(
            config_files=self.config_files,
            logging=self.logging,
            deployment=self.deployment,
            versions=self.versions,
            cloudzero=self.cloudzero,
            prometheus=self.prometheus,
            services=self.services,
            diagnostics=diagnostics,
        )

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the settings."""
        return {
            "config_files": [str(path) for path in self.config_files],
            "logging": self.logging.to_dict(),
            "deployment": self.deployment.to_dict(),
            "versions": self.versions.to_dict(),
            "cloudzero": self.cloudzero.to_dict(),
            "prometheus": self.prometheus.to_dict(),
            "services": self.services.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
        }

    def to_yaml(self) -> str:
        """Return the settings encoded as YAML."""
        return yaml.safe_dump(self.to_dict(), sort_keys=False)


DEFAULTS: dict[str, object] = {
    "logging": {
        "level": "info",
        "location": None,
    },
    "deployment": {
        "account_id": "",
        "cluster_name": "",
        "region": "",
    },
    "versions": {
        "chart_version": "",
        "agent_version": "",
    },
    "cloudzero": {
        "host": "https://api.cloudzero.com",
        "credentials_file": None,
        "credential": None,
        "disable_telemetry": False,
    },
    "prometheus": {
        "kube_state_metrics_service_endpoint": "",
        "kube_metrics": [],
        "configurations": [],
    },
    "services": {
        "namespace": "",
        "insights_service": "",
        "collector_service": "",
    },
    "diagnostics": {
        "stages": [],
        "max_workers": 8,
        "retry": {"attempts": 12, "interval": 10.0},
        "backoff": {"attempts": 5, "base": 1.0, "timeout": 10.0},
    },
}

ALLOWED_KEYS: dict[str, set[str]] = {
    section: set(values) for section, values in cast(dict[str, dict[str, object]], DEFAULTS).items()
}
ALLOWED_POLICY_KEYS: dict[str, set[str]] = {
    "retry": {"attempts", "interval"},
    "backoff": {"attempts", "base", "timeout"},
}
ALLOWED_STAGE_KEYS = {"name", "enforce", "checks"}


def load_settings(
    *config_files: str | os.PathLike[str],
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    require_deployment: bool = True,
) -> Settings:
    """Load and merge configuration sources into :class:`Settings`.

    Explicitly named files must exist. ``require_deployment=False`` skips the
    cluster-identity check so listing commands work without a full config.
    """
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    paths = _determine_config_paths(config_files, resolved_env)
    for path in paths:
        file_values = _load_yaml_file(path)
        if file_values:
            _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    _validate_structure(merged)

    settings = _build_settings(merged, paths)
    if require_deployment and not settings.deployment.cluster_name:
        raise ConfigError("deployment.cluster_name is required.")
    return settings


def default_settings() -> Settings:
    """Return settings built purely from the defaults."""
    return load_settings(env={}, require_deployment=False)


def _determine_config_paths(
    config_files: Sequence[str | os.PathLike[str]],
    env: Mapping[str, str],
) -> tuple[Path, ...]:
    candidates = [Path(item) for item in config_files if str(item).strip()]
    if not candidates and env.get(CONFIG_ENV_VAR):
        candidates = [Path(env[CONFIG_ENV_VAR])]
    for path in candidates:
        if not path.exists():
            raise ConfigError(f"No config file {path}.")
    return tuple(candidates)


def _load_yaml_file(path: Path) -> dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Failed to read config from {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - set(ALLOWED_KEYS)
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    logging_map = _as_dict(raw.get("logging"), "logging")
    level = str(logging_map.get("level") or "info").strip().lower()
    if level not in ALLOWED_LOG_LEVELS:
        allowed_levels = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ConfigError(f"Unsupported log level '{level}'. Allowed: {allowed_levels}.")

    diagnostics_map = _as_dict(raw.get("diagnostics"), "diagnostics")
    for sub, allowed_sub in ALLOWED_POLICY_KEYS.items():
        sub_map = _as_dict(diagnostics_map.get(sub), f"diagnostics.{sub}")
        unknown = set(sub_map.keys()) - allowed_sub
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown diagnostics.{sub} keys: {joined}.")


def _build_settings(raw: Mapping[str, object], paths: tuple[Path, ...]) -> Settings:
    logging_map = _as_dict(raw.get("logging"), "logging")
    location_value = logging_map.get("location")
    logging_config = LoggingConfig(
        level=str(logging_map.get("level") or "info").strip().lower(),
        location=_to_path(location_value) if location_value else None,
    )

    deployment_map = _as_dict(raw.get("deployment"), "deployment")
    deployment = DeploymentConfig(
        account_id=_expect_text(deployment_map.get("account_id"), "deployment.account_id"),
        cluster_name=_expect_text(deployment_map.get("cluster_name"), "deployment.cluster_name"),
        region=_expect_text(deployment_map.get("region"), "deployment.region"),
    )

    versions_map = _as_dict(raw.get("versions"), "versions")
    versions = VersionsConfig(
        chart_version=_expect_text(versions_map.get("chart_version"), "versions.chart_version"),
        agent_version=_expect_text(versions_map.get("agent_version"), "versions.agent_version"),
    )

    cloud_map = _as_dict(raw.get("cloudzero"), "cloudzero")
    credentials_value = cloud_map.get("credentials_file")
    credentials_file = _to_path(credentials_value) if credentials_value else None
    credential = _expect_text(cloud_map.get("credential"), "cloudzero.credential")
    if not credential and credentials_file is not None:
        credential = _read_credential(credentials_file)
    cloudzero = CloudzeroConfig(
        host=_expect_text(cloud_map.get("host"), "cloudzero.host").rstrip("/"),
        credentials_file=credentials_file,
        credential=credential,
        disable_telemetry=_expect_bool(
            cloud_map.get("disable_telemetry"), "cloudzero.disable_telemetry"
        ),
    )

    prom_map = _as_dict(raw.get("prometheus"), "prometheus")
    prometheus = PrometheusConfig(
        kube_state_metrics_service_endpoint=_expect_text(
            prom_map.get("kube_state_metrics_service_endpoint"),
            "prometheus.kube_state_metrics_service_endpoint",
        ).rstrip("/"),
        kube_metrics=tuple(
            _expect_text(item, "prometheus.kube_metrics[]")
            for item in _as_sequence(prom_map.get("kube_metrics") or [], "prometheus.kube_metrics")
        ),
        configurations=tuple(
            _to_path(item)
            for item in _as_sequence(
                prom_map.get("configurations") or [], "prometheus.configurations"
            )
        ),
    )

    services_map = _as_dict(raw.get("services"), "services")
    services = ServicesConfig(
        namespace=_expect_text(services_map.get("namespace"), "services.namespace"),
        insights_service=_expect_text(
            services_map.get("insights_service"), "services.insights_service"
        ),
        collector_service=_expect_text(
            services_map.get("collector_service"), "services.collector_service"
        ),
    )

    return Settings(
        config_files=paths,
        logging=logging_config,
        deployment=deployment,
        versions=versions,
        cloudzero=cloudzero,
        prometheus=prometheus,
        services=services,
        diagnostics=_build_diagnostics(_as_dict(raw.get("diagnostics"), "diagnostics")),
    )


def _build_diagnostics(raw: Mapping[str, object]) -> DiagnosticsConfig:
    stages = tuple(
        parse_stage(entry, f"diagnostics.stages[{index}]")
        for index, entry in enumerate(
            _as_sequence(raw.get("stages") or [], "diagnostics.stages")
        )
    )

    max_workers = _expect_int(raw.get("max_workers"), "diagnostics.max_workers", default=8)
    if max_workers < 1:
        raise ConfigError("diagnostics.max_workers must be at least 1.")

    retry_map = _as_dict(raw.get("retry"), "diagnostics.retry")
    retry = RetrySettings(
        attempts=_expect_int(retry_map.get("attempts"), "diagnostics.retry.attempts", default=12),
        interval=_expect_non_negative_float(
            retry_map.get("interval"), "diagnostics.retry.interval", default=10.0
        ),
    )
    if retry.attempts < 1:
        raise ConfigError("diagnostics.retry.attempts must be at least 1.")

    backoff_map = _as_dict(raw.get("backoff"), "diagnostics.backoff")
    backoff = BackoffSettings(
        attempts=_expect_int(
            backoff_map.get("attempts"), "diagnostics.backoff.attempts", default=5
        ),
        base=_expect_non_negative_float(
            backoff_map.get("base"), "diagnostics.backoff.base", default=1.0
        ),
        timeout=_expect_non_negative_float(
            backoff_map.get("timeout"), "diagnostics.backoff.timeout", default=10.0
        ),
    )
    if backoff.attempts < 1:
        raise ConfigError("diagnostics.backoff.attempts must be at least 1.")
    if backoff.timeout <= 0:
        raise ConfigError("diagnostics.backoff.timeout must be greater than zero.")

    return DiagnosticsConfig(
        stages=stages,
        max_workers=max_workers,
        retry=retry,
        backoff=backoff,
    )


def parse_stage(value: object, label: str = "stage") -> Stage:
    """Validate one ``{name, enforce, checks}`` entry against the vocabularies."""
    mapping = _as_dict(value, label)
    unknown = set(mapping.keys()) - ALLOWED_STAGE_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys for {label}: {joined}.")
    try:
        name = StageName.parse(mapping.get("name", ""))
    except UnknownStageError as exc:
        raise ConfigError(str(exc)) from exc
    return Stage(
        name=name,
        enforce=_expect_bool(mapping.get("enforce"), f"{label}.enforce"),
        checks=parse_checks(
            _as_sequence(mapping.get("checks") or [], f"{label}.checks"),
        ),
    )


def parse_checks(values: Sequence[object]) -> tuple[DiagnosticId, ...]:
    """Return configured check ids, rejecting unknown ids and lifecycle markers."""
    checks: list[DiagnosticId] = []
    for value in values:
        try:
            diagnostic = DiagnosticId.parse(value)
        except UnknownDiagnosticError as exc:
            raise ConfigError(str(exc)) from exc
        if diagnostic.is_internal:
            raise ConfigError(f"unknown diagnostic check: {diagnostic.value}")
        checks.append(diagnostic)
    return tuple(checks)


def _read_credential(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ConfigError(f"Failed to read credentials file {path}: {exc}") from exc


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_text(value: object | None, label: str) -> str:
    """Return *value* as a trimmed string; YAML may hand back ints for ids."""
    if value is None:
        return ""
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a string. Got boolean {value!r}.")
    if isinstance(value, (str, int, float)):
        return str(value).strip()
    raise ConfigError(f"Expected {label} to be a string. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0", ""}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "BackoffSettings",
    "CloudzeroConfig",
    "ConfigError",
    "DeploymentConfig",
    "DiagnosticsConfig",
    "LoggingConfig",
    "PrometheusConfig",
    "RetrySettings",
    "ServicesConfig",
    "Settings",
    "VersionsConfig",
    "default_settings",
    "load_settings",
    "parse_checks",
    "parse_stage",
]
