"""Staged execution of probes against one shared report.

A run goes through four phases:

* ``pre``: lifecycle markers, sequential on the calling thread.
* ``plan``: the configured checks, fanned out on a thread pool.
* ``post``: closing markers, sequential, only after a clean plan phase.
* escalation: for the init stage, one failure hook when any check failed.

Probe errors abort the run and surface as :class:`DiagnosticRunError`
subclasses that still carry the partially populated report.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .. import get_version
from ..context import RunContext
from ..http import HttpClient
from .accessor import StatusAccessor
from .models import (
    ClusterStatus,
    DiagnosticId,
    PlanStageError,
    Probe,
    StageAbortedError,
    StageName,
)

if TYPE_CHECKING:
    from ..config import Settings
    from .catalog import DiagnosticCatalog

LOGGER = logging.getLogger(__name__)

_POST_MARKERS: dict[StageName, DiagnosticId] = {
    StageName.INIT: DiagnosticId.INIT_OK,
    StageName.START: DiagnosticId.POD_START,
    StageName.STOP: DiagnosticId.POD_STOP,
}


class RunnerState(str, Enum):
    """Phases a runner moves through; ``DONE`` is terminal."""

    ASSEMBLED = "assembled"
    PRE_RUNNING = "pre-running"
    PLAN_RUNNING = "plan-running"
    POST_RUNNING = "post-running"
    ESCALATING = "escalating"
    DONE = "done"


@dataclass(slots=True, frozen=True)
class EscalationHook:
    """Probe invoked once after an init stage that recorded a failing check."""

    probe: Probe

    def fire(self, ctx: RunContext, client: HttpClient, accessor: StatusAccessor) -> None:
        """Run the probe; its errors are logged and dropped."""
        try:
            self.probe.check(ctx, client, accessor)
        except Exception as exc:
            LOGGER.warning("Failure escalation raised: %s", exc)


def _plan_worker(
    index: int,
    probe: Probe,
    ctx: RunContext,
    client: HttpClient,
    accessor: StatusAccessor,
) -> tuple[int, Exception | None]:
    try:
        probe.check(ctx, client, accessor)
    except Exception as exc:
        LOGGER.warning("Diagnostic probe %s raised: %s", type(probe).__name__, exc)
        return index, exc
    return index, None


class DiagnosticRunner:
    """Assemble and execute the probes for one lifecycle stage."""

    def __init__(
        self,
        settings: Settings,
        catalog: DiagnosticCatalog,
        stage: StageName | str,
        *,
        client: HttpClient | None = None,
        max_workers: int | None = None,
    ) -> None:
        """Select the pre, plan and post probes for *stage* from *catalog*."""
        self.settings = settings
        self.stage = StageName.parse(stage)
        self.client = client or HttpClient()
        self.max_workers = max_workers or settings.diagnostics.max_workers
        self._state = RunnerState.ASSEMBLED
        self._pre: list[Probe] = []
        self._plan: list[Probe] = []
        self._post: list[Probe] = []
        self.failure_hook: EscalationHook | None = None

        if self.stage is StageName.INIT:
            self.add_pre_step(*catalog.get(DiagnosticId.INIT_START))

        for configured in settings.diagnostics.stages:
            if configured.name is not self.stage:
                continue
            self.add_step(*catalog.get(*configured.checks))

        marker = _POST_MARKERS.get(self.stage)
        if marker is not None:
            self.add_post_step(*catalog.get(marker))

        if self.stage is StageName.INIT:
            hooks = catalog.get(DiagnosticId.INIT_FAILED)
            if hooks:
                self.failure_hook = EscalationHook(hooks[0])

    @property
    def state(self) -> RunnerState:
        """Return the current phase."""
        return self._state

    @property
    def pre(self) -> Sequence[Probe]:
        return tuple(self._pre)

    @property
    def plan(self) -> Sequence[Probe]:
        return tuple(self._plan)

    @property
    def post(self) -> Sequence[Probe]:
        return tuple(self._post)

    def add_pre_step(self, *probes: Probe) -> None:
        """Append probes to the sequential pre phase."""
        self._ensure_assembling()
        self._pre.extend(probes)

    def add_step(self, *probes: Probe) -> None:
        """Append probes to the concurrent plan phase."""
        self._ensure_assembling()
        self._plan.extend(probes)

    def add_post_step(self, *probes: Probe) -> None:
        """Append probes to the sequential post phase."""
        self._ensure_assembling()
        self._post.extend(probes)

    def run(self, ctx: RunContext | None = None) -> StatusAccessor:
        """Execute every phase and return the accessor holding the report.

        Raises :class:`StageAbortedError` when a pre or post probe raises and
        :class:`PlanStageError` when any plan probe raises.
        """
        self._ensure_assembling()
        ctx = ctx or RunContext.background()
        accessor = StatusAccessor()
        accessor.write_to_report(self._baseline)

        try:
            self._transition(RunnerState.PRE_RUNNING)
            self._run_sequential("pre", self._pre, ctx, accessor)

            self._transition(RunnerState.PLAN_RUNNING)
            self._run_plan(ctx, accessor)

            self._transition(RunnerState.POST_RUNNING)
            self._run_sequential("post", self._post, ctx, accessor)

            if self.stage is StageName.INIT:
                self._transition(RunnerState.ESCALATING)
                self._escalate(ctx, accessor)
        finally:
            self._transition(RunnerState.DONE)
        return accessor

    def _baseline(self, report: ClusterStatus) -> None:
        report.account = self.settings.deployment.account_id
        report.region = self.settings.deployment.region
        report.name = self.settings.deployment.cluster_name
        report.validator_version = get_version()
        report.chart_version = self.settings.versions.chart_version
        report.agent_version = self.settings.versions.agent_version

    def _run_sequential(
        self,
        stage: str,
        probes: Sequence[Probe],
        ctx: RunContext,
        accessor: StatusAccessor,
    ) -> None:
        for probe in probes:
            try:
                probe.check(ctx, self.client, accessor)
            except Exception as exc:
                LOGGER.warning(
                    "%s step %s aborted the %s stage: %s",
                    stage,
                    type(probe).__name__,
                    self.stage.value,
                    exc,
                )
                raise StageAbortedError(stage, probe, exc, accessor) from exc

    def _run_plan(self, ctx: RunContext, accessor: StatusAccessor) -> None:
        if not self._plan:
            return
        errors: list[Exception | None] = [None] * len(self._plan)
        workers = max(1, min(self.max_workers, len(self._plan)))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=workers,
            thread_name_prefix="agentcheck-probe",
        ) as executor:
            futures = [
                executor.submit(_plan_worker, index, probe, ctx, self.client, accessor)
                for index, probe in enumerate(self._plan)
            ]
            for future in concurrent.futures.as_completed(futures):
                index, error = future.result()
                errors[index] = error

        collected = [error for error in errors if error is not None]
        if collected:
            raise PlanStageError(collected, accessor)

    def _escalate(self, ctx: RunContext, accessor: StatusAccessor) -> None:
        if self.failure_hook is None:
            return
        failed = accessor.read_from_report(
            lambda report: any(not check.passing for check in report.checks)
        )
        if failed:
            LOGGER.debug("Init stage recorded failing checks; escalating")
            self.failure_hook.fire(ctx, self.client, accessor)

    def _transition(self, state: RunnerState) -> None:
        LOGGER.debug("Runner %s: %s -> %s", self.stage.value, self._state.value, state.value)
        self._state = state

    def _ensure_assembling(self) -> None:
        if self._state is not RunnerState.ASSEMBLED:
            raise RuntimeError(f"runner already {self._state.value}; build a new one per run")


__all__ = ["DiagnosticRunner", "EscalationHook", "RunnerState"]
