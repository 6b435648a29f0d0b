"""Unit tests for CLI output and error rendering helpers."""

from __future__ import annotations

import pytest
import typer

from bookglot.cli_rendering import (
    echo_cached_books,
    echo_open_summary,
    exit_with_command_error,
    format_chapter_event,
)
from bookglot.errors import PipelineStageError
from bookglot.models.datatypes import CachedBookEntry, ChapterEvent, ChapterStatus


def _event(index: int, status: ChapterStatus, **kwargs: object) -> ChapterEvent:
    return ChapterEvent(
        book_identity="abc123def4567890",
        target_language="de",
        chapter_index=index,
        chapter_title=f"Chapter {index + 1}",
        status=status,
        **kwargs,  # type: ignore[arg-type]
    )


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = PipelineStageError(
        stage="parse",
        detail="Archive `book.epub` has no META-INF/container.xml.",
        hint="Verify the file is a valid ePub.",
    )

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("open", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "open failed at stage `parse`" in captured.err
    assert "Hint: Verify the file is a valid ePub." in captured.err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for non-stage failures."""

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("show", RuntimeError("unexpected cache error"))

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "show failed (RuntimeError): unexpected cache error" in captured.err


def test_format_chapter_event_marks_degraded_and_failed_rows() -> None:
    """Progress rows carry status, index, title and fallback details."""

    assert format_chapter_event(_event(0, ChapterStatus.DONE)) == "[done] 0. Chapter 1"
    assert format_chapter_event(
        _event(1, ChapterStatus.CACHED, degraded=True, failed_span_count=3)
    ) == "[cached] 1. Chapter 2 (degraded: 3 span(s) kept in original language)"
    assert format_chapter_event(
        _event(2, ChapterStatus.FAILED, detail="bad markup")
    ) == "[failed] 2. Chapter 3 (bad markup)"


def test_echo_open_summary_counts_statuses(capsys: pytest.CaptureFixture[str]) -> None:
    """The open summary lists identity, language and per-status totals."""

    echo_open_summary(
        [
            _event(0, ChapterStatus.CACHED),
            _event(1, ChapterStatus.DONE),
            _event(2, ChapterStatus.DONE),
        ]
    )

    output = capsys.readouterr().out
    assert "Book identity: abc123def4567890" in output
    assert "Target language: de" in output
    assert "Chapters: cached=1, done=2" in output


def test_echo_cached_books_renders_rows_and_empty_state(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Listings show a short identity, state and degraded count."""

    echo_cached_books([])
    echo_cached_books(
        [
            CachedBookEntry(
                book_identity="0123456789abcdef0123",
                title="Kniha",
                target_language="en",
                timestamp="2024-01-01T00:00:00+00:00",
                complete=False,
                total_chapters=3,
                degraded_chapters=1,
            )
        ]
    )

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "No cached books."
    assert lines[1] == (
        "0123456789ab  en  2024-01-01T00:00:00+00:00  partial (3 chapters, degraded=1)  Kniha"
    )
