"""Structured operation logging for agentctl.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which
collects the steps taken and writes a single JSON record to
``operations.jsonl`` once the command finishes. A short human-readable line
is mirrored to ``agentctl.log`` through the standard :mod:`logging` module.

Logging must never break an install: when the log directory cannot be
created or written the logger disables itself and operations continue.
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

from . import __version__

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "agentctl.log"
SECRET_KEYS = frozenset({"api_key", "service_key", "authorization", "password"})
MASK = "***"


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize(item) for item in value]
    return str(value)


def mask_secrets(values: Mapping[str, object]) -> dict[str, object]:
    """Replace secret values in *values* with a fixed mask."""
    masked: dict[str, object] = {}
    for key, item in values.items():
        if key.lower() in SECRET_KEYS and item not in (None, ""):
            masked[key] = MASK
        elif isinstance(item, Mapping):
            masked[key] = mask_secrets(item)
        else:
            masked[key] = item
    return masked


class OperationScope:
    """Mutable accumulator for a single logged operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start a new scope for *command*."""
        self.op_id = uuid.uuid4().hex
        self.command = command
        self.args = mask_secrets(dict(args or {}))
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.perf_counter()
        self._timestamp = _timestamp()

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = sanitize(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, changed=changed, context=context, extra=extra)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            context=context,
            extra=extra,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
        **extra: object,
    ) -> None:
        """Mark the operation as failed."""
        self._finish(
            "error",
            message,
            errors=list(errors) if errors else [message],
            warnings=warnings,
            rc=rc,
            context=context,
            extra=extra,
        )

    def to_record(self) -> dict[str, object]:
        """Return the JSON record for this scope."""
        result = self.result or {"status": "unknown", "message": "Operation did not report."}
        return {
            "op_id": self.op_id,
            "timestamp": self._timestamp,
            "command": self.command,
            "args": sanitize(self.args),
            "target": sanitize(self.target),
            "context": {"agentctl_version": __version__},
            "steps": list(self.steps),
            "result": result,
            "duration_ms": int((time.perf_counter() - self._started) * 1000),
        }

    def _finish(
        self,
        status: str,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
        extra: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if warnings:
            result["warnings"] = list(warnings)
        if errors:
            result["errors"] = list(errors)
        if changed is not None:
            result["changed"] = changed
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = sanitize(mask_secrets(dict(context)))
        for key, value in (extra or {}).items():
            if value is not None:
                result[key] = sanitize(value)
        self.result = result


class StructuredLogger:
    """Write operation records to the agentctl logs directory."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the logs directory, disabling logging when unavailable."""
        self.logs_dir = logs_dir.expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._human_log_path = self.logs_dir / HUMAN_LOG
        self._enabled = True
        self._human_logger: logging.Logger | None = None
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Disabling structured logging, %s unavailable: %s", self.logs_dir, exc)
            self._enabled = False

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"{command} aborted: {exc}", errors=[repr(exc)])
            raise
        finally:
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False) + "\n")
        except OSError as exc:
            LOGGER.debug("Disabling structured logging after write failure: %s", exc)
            self._enabled = False
            return
        result = record["result"]
        status = result.get("status", "unknown") if isinstance(result, Mapping) else "unknown"
        message = result.get("message", "") if isinstance(result, Mapping) else ""
        self._human().info("%s [%s] %s (op=%s)", scope.command, status, message, scope.op_id)

    def _human(self) -> logging.Logger:
        if self._human_logger is not None:
            return self._human_logger
        # Unregistered logger owned by this instance; close() releases its handler.
        human = logging.Logger("agentctl.operations", level=logging.INFO)
        human.propagate = False
        try:
            handler = logging.FileHandler(self._human_log_path, encoding="utf-8")
        except OSError as exc:
            LOGGER.debug("Human log unavailable: %s", exc)
            handler = logging.NullHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        human.addHandler(handler)
        self._human_logger = human
        return human

    def close(self) -> None:
        """Release file handlers held by the human log."""
        if self._human_logger is None:
            return
        for handler in list(self._human_logger.handlers):
            handler.close()
            self._human_logger.removeHandler(handler)
        self._human_logger = None


__all__ = ["MASK", "OperationScope", "StructuredLogger", "mask_secrets", "sanitize"]
