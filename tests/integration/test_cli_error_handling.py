"""CLI error-handling tests for concise diagnostics."""

from pathlib import Path

from pytest import MonkeyPatch
from typer.testing import CliRunner

from bookglot.cli import app
from bookglot.errors import PipelineStageError


def test_open_command_reports_stage_error_with_hint(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """Open command should print stage-aware diagnostics and fail with exit code 1."""

    def _failing_open(*_: object, **__: object) -> None:
        """Raise a stage-specific error to simulate pipeline failure."""

        raise PipelineStageError(
            stage="cache-read",
            detail="Cache metadata is not valid JSON.",
            hint="Delete the cached book with `bookglot delete <identity>` and reopen it.",
        )

    monkeypatch.setattr("bookglot.cli.TranslationPipeline.open_book", _failing_open)
    book_path = tmp_path / "book.epub"
    book_path.write_bytes(b"unused")

    result = CliRunner().invoke(app, ["open", str(book_path)])

    assert result.exit_code == 1
    assert "open failed at stage `cache-read`" in result.output
    assert "Hint: Delete the cached book" in result.output


def test_list_command_reports_non_stage_error(monkeypatch: MonkeyPatch) -> None:
    """List command should still report non-stage exceptions with exit code 1."""

    def _failing_list(*_: object, **__: object) -> None:
        """Raise a generic error to verify fallback CLI diagnostics."""

        raise RuntimeError("unexpected cache error")

    monkeypatch.setattr("bookglot.cli.TranslationPipeline.list_cached_books", _failing_list)

    result = CliRunner().invoke(app, ["list"])

    assert result.exit_code == 1
    assert "list failed (RuntimeError): unexpected cache error" in result.output


def test_open_command_reports_missing_book_file(tmp_path: Path) -> None:
    """A missing ePub path is reported without a traceback."""

    result = CliRunner().invoke(app, ["open", str(tmp_path / "missing.epub")])

    assert result.exit_code == 1
    assert "open failed (FileNotFoundError)" in result.output


def test_commands_report_missing_config_file() -> None:
    """Commands fail at the `config` stage when `--config` points nowhere."""

    result = CliRunner().invoke(app, ["list", "--config", "missing-bookglot.yaml"])

    assert result.exit_code == 1
    assert "list failed at stage `config`" in result.output


def test_invalid_environment_value_reports_config_stage(monkeypatch: MonkeyPatch) -> None:
    """Invalid `BOOKGLOT_*` values are reported at the `config` stage."""

    monkeypatch.setenv("BOOKGLOT_CONCURRENCY", "0")

    result = CliRunner().invoke(app, ["list"])

    assert result.exit_code == 1
    assert "list failed at stage `config`" in result.output
    assert "Environment field `concurrency` must be a positive integer." in result.output


def test_unsupported_provider_reports_config_stage(tmp_path: Path) -> None:
    """Unknown provider ids fail before any work starts."""

    book_path = tmp_path / "book.epub"
    book_path.write_bytes(b"unused")

    result = CliRunner().invoke(app, ["open", str(book_path), "--provider", "deepl"])

    assert result.exit_code == 1
    assert "open failed at stage `config`" in result.output
