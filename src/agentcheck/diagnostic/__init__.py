"""Diagnostic engine: models, shared report, resilience policies and runner.

The probe implementations and the default catalog live in
:mod:`agentcheck.diagnostic.probes` and :mod:`agentcheck.diagnostic.catalog`;
they depend on :mod:`agentcheck.config` and are imported from there directly.
"""

from __future__ import annotations

from .accessor import ReportMonitor, StatusAccessor
from .models import (
    ClusterStatus,
    DiagnosticId,
    DiagnosticRunError,
    PlanStageError,
    Probe,
    ProbeError,
    Stage,
    StageAbortedError,
    StageName,
    StatusCheck,
    StatusType,
    UnknownDiagnosticError,
    UnknownStageError,
    public_diagnostics,
)
from .resilience import BackoffPolicy, RetryPolicy
from .runner import DiagnosticRunner, EscalationHook, RunnerState

__all__ = [
    "BackoffPolicy",
    "ClusterStatus",
    "DiagnosticId",
    "DiagnosticRunError",
    "DiagnosticRunner",
    "EscalationHook",
    "PlanStageError",
    "Probe",
    "ProbeError",
    "ReportMonitor",
    "RetryPolicy",
    "RunnerState",
    "Stage",
    "StageAbortedError",
    "StageName",
    "StatusAccessor",
    "StatusCheck",
    "StatusType",
    "UnknownDiagnosticError",
    "UnknownStageError",
    "public_diagnostics",
]
