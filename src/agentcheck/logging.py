"""Logging setup and structured operation records for agentcheck.

Two channels are configured:

* Human-facing diagnostics go through the standard :mod:`logging` tree and
  are rendered on stderr by :class:`rich.logging.RichHandler`.
* Each CLI command is recorded as one JSON object per line in the configured
  log file via :class:`StructuredLogger`. Write failures disable the file
  channel instead of failing the command.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER = logging.getLogger(__name__)

_ROOT_LOGGER_NAME = "agentcheck"
_HANDLER_MARKER = "_agentcheck_handler"


def configure_logging(level: str = "info", *, console: Console | None = None) -> logging.Logger:
    """Attach a Rich stderr handler to the package logger at *level*.

    Calling this again replaces the handler installed by a previous call.
    """
    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    setattr(handler, _HANDLER_MARKER, True)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.getLevelName(level.upper()))
    logger.propagate = False
    return logger


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the final outcome of one CLI operation."""

    def __init__(self, command: str, args: Mapping[str, object] | None) -> None:
        self.operation_id = uuid.uuid4().hex
        self.command = command
        self.args = dict(args or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.perf_counter()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, rc=0, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish("warning", message, rc=0, warnings=warnings, context=context)

    def error(
        self,
        message: str,
        *,
        rc: int = 1,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed; *errors* defaults to ``[message]``."""
        self._finish(
            "error",
            message,
            rc=rc,
            errors=list(errors) if errors else [message],
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message, "rc": rc}
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-safe record written to the operations log."""
        return {
            "ts": datetime.now(UTC).isoformat(),
            "op_id": self.operation_id,
            "command": self.command,
            "args": _sanitize(self.args),
            "steps": self.steps,
            "duration_ms": int((time.perf_counter() - self._started) * 1000),
            "result": self.result or {"status": "unknown", "message": "", "rc": 0},
        }


class StructuredLogger:
    """Append one JSON record per operation to *log_file* when configured."""

    def __init__(self, log_file: Path | None) -> None:
        self._operations_log_path = log_file
        self._enabled = log_file is not None
        if log_file is None:
            return
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Disabling operation log; cannot create %s: %s", log_file.parent, exc)
            self._enabled = False

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope for *command*; its record is written on exit."""
        scope = OperationScope(command, args)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}")
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled or self._operations_log_path is None:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.warning("Disabling operation log after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger", "configure_logging"]
