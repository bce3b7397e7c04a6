"""Tests for structured operation logging."""
from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from agentctl.logging import MASK, OperationScope, StructuredLogger, mask_secrets


def _records(logs_dir: Path) -> list[dict[str, object]]:
    lines = (logs_dir / "operations.jsonl").read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_operation_writes_record(tmp_path: Path) -> None:
    """A finished operation appends one JSON line and a human log line."""
    logger = StructuredLogger(tmp_path / "logs")
    with logger.operation("install", args={"url": "https://x.example"}) as op:
        op.add_step("probe", detail={"web-server-feature": True})
        op.success("Agent 5.1.0 installed.", changed=1)
    logger.close()

    [record] = _records(tmp_path / "logs")
    assert record["command"] == "install"
    assert record["args"] == {"url": "https://x.example"}
    assert record["steps"] == [
        {"name": "probe", "status": "success", "detail": {"web-server-feature": True}}
    ]
    assert record["result"] == {
        "status": "success",
        "message": "Agent 5.1.0 installed.",
        "changed": 1,
    }
    assert "agentctl_version" in record["context"]
    human = (tmp_path / "logs" / "agentctl.log").read_text(encoding="utf-8")
    assert "install [success] Agent 5.1.0 installed." in human


def test_secrets_are_masked(tmp_path: Path) -> None:
    """Secret arguments never reach the log files."""
    logger = StructuredLogger(tmp_path / "logs")
    with logger.operation(
        "install",
        args={"api_key": "topsecret", "service_key": "svcsecret", "user_name": "agent"},
    ) as op:
        op.error("Download failed", context={"authorization": "Basic abc"})
    logger.close()

    text = (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8")
    assert "topsecret" not in text
    assert "svcsecret" not in text
    assert "Basic abc" not in text
    [record] = _records(tmp_path / "logs")
    assert record["args"]["api_key"] == MASK
    assert record["args"]["user_name"] == "agent"
    assert record["result"]["errors"] == ["Download failed"]


def test_mask_secrets_handles_nesting_and_empty_values() -> None:
    """Nested mappings are masked; empty secrets stay visible as empty."""
    masked = mask_secrets({"outer": {"API_KEY": "x"}, "service_key": None})
    assert masked == {"outer": {"API_KEY": MASK}, "service_key": None}


def test_exception_records_error(tmp_path: Path) -> None:
    """An exception inside the scope is recorded and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")
    with pytest.raises(RuntimeError):
        with logger.operation("status"):
            raise RuntimeError("boom")
    logger.close()

    [record] = _records(tmp_path / "logs")
    assert record["result"]["status"] == "error"
    assert "boom" in record["result"]["message"]


def test_warning_result(tmp_path: Path) -> None:
    """Warnings are kept alongside the result message."""
    scope = OperationScope("install")
    scope.warning("Installed with warnings.", warnings=["cleanup failed"])
    assert scope.to_record()["result"] == {
        "status": "warning",
        "message": "Installed with warnings.",
        "warnings": ["cleanup failed"],
    }


def test_unwritable_logs_dir_disables_logging(tmp_path: Path) -> None:
    """Logging problems never break the operation."""
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    logger = StructuredLogger(blocker / "logs")
    with logger.operation("check") as op:
        op.success("ok")
    assert not (blocker / "logs").exists()


def test_close_releases_human_log_handler(tmp_path: Path) -> None:
    """Closing detaches the file handler; later operations reopen it."""
    logger = StructuredLogger(tmp_path / "logs")
    with logger.operation("check") as op:
        op.success("Host is eligible.")
    human = logger._human_logger
    assert human is not None
    [handler] = human.handlers

    logger.close()

    assert human.handlers == []
    assert handler.stream is None
    assert logger._human_logger is None
    assert "agentctl.operations" not in logging.Logger.manager.loggerDict

    with logger.operation("status") as op:
        op.success("No agent installed.")
    logger.close()
    human_text = (tmp_path / "logs" / "agentctl.log").read_text(encoding="utf-8")
    assert "check [success]" in human_text
    assert "status [success]" in human_text
