"""Retry policies for probes that talk to slow or flaky dependencies.

Both policies record exactly one :class:`StatusCheck` per invocation and never
raise to the runner: exhausting the attempts is a check failure, not an
orchestration error.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field

from ..context import RunContext
from .accessor import StatusAccessor
from .models import DiagnosticId, StatusCheck

LOGGER = logging.getLogger(__name__)

Attempt = Callable[[RunContext], None]


def _exhausted(
    accessor: StatusAccessor,
    diagnostic: DiagnosticId,
    attempts: int,
    last_error: Exception | None,
) -> None:
    message = f"{diagnostic.value} failed after {attempts} attempts"
    if last_error is not None:
        message = f"{message}: {last_error}"
    accessor.add_check(StatusCheck(name=diagnostic, passing=False, error=message))


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry an attempt up to ``attempts`` times with a constant ``interval``."""

    attempts: int = 12
    interval: float = 10.0

    def __post_init__(self) -> None:
        """Reject settings that would never run the attempt."""
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must be non-negative")

    def run(
        self,
        ctx: RunContext,
        accessor: StatusAccessor,
        diagnostic: DiagnosticId,
        attempt: Attempt,
    ) -> bool:
        """Call *attempt* until it returns without raising; record the outcome."""
        last_error: Exception | None = None
        made = 0
        for index in range(self.attempts):
            made = index + 1
            try:
                attempt(ctx)
            except Exception as exc:
                last_error = exc
                LOGGER.debug(
                    "%s attempt %d/%d failed: %s",
                    diagnostic.value,
                    made,
                    self.attempts,
                    exc,
                )
            else:
                accessor.add_check(StatusCheck(name=diagnostic, passing=True))
                return True
            if made < self.attempts and not ctx.sleep(self.interval):
                break
        _exhausted(accessor, diagnostic, made, last_error)
        return False


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    """Exponential backoff with jitter between attempts.

    After failed attempt ``k`` (0-indexed) the policy waits
    ``base * 2**k + uniform(0, base)`` seconds before trying again. Each
    attempt runs under a child context bounded by ``timeout``.
    """

    attempts: int = 5
    base: float = 1.0
    timeout: float = 10.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        """Reject settings that would never run the attempt."""
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.base < 0:
            raise ValueError("base must be non-negative")
        if self.timeout <= 0:
            raise ValueError("timeout must be greater than zero")

    def delay(self, attempt_index: int) -> float:
        """Return the wait after failed attempt *attempt_index*."""
        return self.base * (2**attempt_index) + self.rng.uniform(0, self.base)

    def run(
        self,
        ctx: RunContext,
        accessor: StatusAccessor,
        diagnostic: DiagnosticId,
        attempt: Attempt,
    ) -> bool:
        """Call *attempt* with backoff until it succeeds; record the outcome."""
        last_error: Exception | None = None
        made = 0
        for index in range(self.attempts):
            made = index + 1
            try:
                attempt(ctx.with_timeout(self.timeout))
            except Exception as exc:
                last_error = exc
                LOGGER.debug(
                    "%s attempt %d/%d failed: %s",
                    diagnostic.value,
                    made,
                    self.attempts,
                    exc,
                )
            else:
                accessor.add_check(StatusCheck(name=diagnostic, passing=True))
                return True
            if made < self.attempts and not ctx.sleep(self.delay(index)):
                break
        _exhausted(accessor, diagnostic, made, last_error)
        return False


__all__ = ["Attempt", "BackoffPolicy", "RetryPolicy"]
