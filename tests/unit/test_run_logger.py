"""Unit tests for structured run logging."""

from __future__ import annotations

import io
from pathlib import Path

from loguru import logger

from bookglot.telemetry.logger import RunLogger, configure_file_logging


def test_run_logger_formats_sorted_sanitized_context() -> None:
    """Events render as one deterministic `[phase]` line with sorted context."""

    sink = io.StringIO()
    run_logger = RunLogger(sink=sink)

    run_logger.log_event("WARNING", "retry", "translate", batch=2, attempt=1, note="two words")
    run_logger.log_stage_failure("parse", "MalformedDocument", book="")

    lines = sink.getvalue().splitlines()
    assert lines == [
        "[phase] level=WARNING stage=translate event=retry attempt=1 batch=2 note=two_words",
        "[phase] level=ERROR stage=parse event=failure book=none error_type=MalformedDocument",
    ]


def test_run_logger_honors_level_threshold() -> None:
    """Events below the configured level are dropped."""

    sink = io.StringIO()
    run_logger = RunLogger(sink=sink, level="WARNING")

    run_logger.log_stage_start("parse")
    run_logger.log_stage_complete("parse")
    run_logger.log_event("ERROR", "run_failed", "translate")

    assert sink.getvalue().splitlines() == [
        "[phase] level=ERROR stage=translate event=run_failed"
    ]


def test_configure_file_logging_writes_daily_log_file(tmp_path: Path) -> None:
    """The file sink writes timestamped lines under the log directory."""

    run_logger = RunLogger(sink=io.StringIO())
    handler_id = configure_file_logging(tmp_path / "logs", level="INFO")
    try:
        run_logger.log_event("INFO", "complete", "finalize", book="abc")
    finally:
        logger.remove(handler_id)

    content = (tmp_path / "logs" / "bookglot.log").read_text(encoding="utf-8")
    assert "INFO" in content
    assert "[phase] level=INFO stage=finalize event=complete book=abc" in content
