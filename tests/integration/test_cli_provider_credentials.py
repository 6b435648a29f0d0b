"""Integration tests for CLI provider/model and secure credential flows."""

from __future__ import annotations

from pathlib import Path

from pytest import MonkeyPatch
from typer.testing import CliRunner

from bookglot.cli import app
from bookglot.provider_factory import ProviderFactory
from tests.epub_builder import FakeTranslationClient, three_chapter_book


class InMemoryCredentialStore:
    """Simple in-memory credential store used for CLI tests."""

    def __init__(self, initial_api_key: str | None = None) -> None:
        """Initialize the store with an optional pre-seeded API key."""

        self._api_key = initial_api_key

    def is_available(self) -> bool:
        """Return availability flag expected by the CLI status command."""

        return True

    def get_api_key(self) -> str | None:
        """Return currently stored API key value."""

        return self._api_key

    def set_api_key(self, api_key: str) -> None:
        """Persist a normalized API key value."""

        self._api_key = api_key.strip()

    def clear_api_key(self) -> bool:
        """Clear API key and return whether one existed."""

        existed = self._api_key is not None
        self._api_key = None
        return existed


def _use_credential_store(monkeypatch: MonkeyPatch, store: InMemoryCredentialStore) -> None:
    """Route both CLI modules to one in-memory credential store."""

    monkeypatch.setattr("bookglot.cli_runtime.create_credential_store", lambda: store)
    monkeypatch.setattr("bookglot.cli.create_credential_store", lambda: store)


def _capture_client_requests(monkeypatch: MonkeyPatch) -> list[dict[str, object]]:
    """Record provider factory arguments and hand back a fake client."""

    captured: list[dict[str, object]] = []

    def _fake_create(provider_id: str, **kwargs: object) -> FakeTranslationClient:
        captured.append({"provider": provider_id, **kwargs})
        return FakeTranslationClient()

    monkeypatch.setattr(ProviderFactory, "create_translation_client", staticmethod(_fake_create))
    return captured


def _write_book(tmp_path: Path) -> Path:
    path = tmp_path / "book.epub"
    path.write_bytes(three_chapter_book())
    return path


def test_open_runtime_precedence_cli_over_secure_over_env(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """CLI values win over secure storage, which wins over environment values."""

    monkeypatch.setenv("BOOKGLOT_PROVIDER", "google")
    monkeypatch.setenv("BOOKGLOT_MODEL", "env-model")
    monkeypatch.setenv("BOOKGLOT_API_KEY", "env-key")
    _use_credential_store(monkeypatch, InMemoryCredentialStore("secure-key"))
    captured = _capture_client_requests(monkeypatch)

    result = CliRunner().invoke(
        app,
        ["open", str(_write_book(tmp_path)), "--provider", "openai", "--model", "cli-model"],
    )

    assert result.exit_code == 0, result.output
    assert captured[0]["provider"] == "openai"
    assert captured[0]["model"] == "cli-model"
    assert captured[0]["api_key"] == "secure-key"
    assert captured[0]["min_request_interval_seconds"] == 0.0


def test_open_falls_back_to_env_when_cli_and_secure_missing(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """Environment values apply when no CLI or secure value is present."""

    monkeypatch.setenv("BOOKGLOT_PROVIDER", "openai")
    monkeypatch.setenv("BOOKGLOT_API_KEY", "env-key")
    monkeypatch.setenv("BOOKGLOT_TARGET_LANGUAGE", "fr")
    captured = _capture_client_requests(monkeypatch)

    result = CliRunner().invoke(app, ["open", str(_write_book(tmp_path))])

    assert result.exit_code == 0, result.output
    assert captured[0]["provider"] == "openai"
    assert captured[0]["api_key"] == "env-key"
    assert "Target language: fr" in result.output


def test_open_loads_yaml_config_defaults_and_allows_cli_overrides(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """`--config` supplies defaults; explicit options still take precedence."""

    config_path = tmp_path / "bookglot.yaml"
    config_path.write_text(
        "\n".join(
            [
                f"cache_dir: {tmp_path / 'yaml-cache'}",
                "provider: openai",
                "model: config-model",
                "target_language: es",
                "request_timeout_seconds: 5",
                "min_request_interval_seconds: 0",
            ]
        ),
        encoding="utf-8",
    )
    captured = _capture_client_requests(monkeypatch)

    result = CliRunner().invoke(
        app,
        ["open", str(_write_book(tmp_path)), "--config", str(config_path), "-l", "it"],
    )

    assert result.exit_code == 0, result.output
    assert captured[0]["model"] == "config-model"
    assert captured[0]["timeout_seconds"] == 5.0
    assert "Target language: it" in result.output
    assert (tmp_path / "yaml-cache" / "books").is_dir()


def test_open_prompt_api_key_hides_input_and_stores_key(
    monkeypatch: MonkeyPatch, tmp_path: Path
) -> None:
    """A prompted API key is used for this run and persisted on request."""

    store = InMemoryCredentialStore()
    _use_credential_store(monkeypatch, store)
    captured = _capture_client_requests(monkeypatch)

    result = CliRunner().invoke(
        app,
        ["open", str(_write_book(tmp_path)), "--prompt-api-key", "--store-api-key"],
        input="prompted-secret\n",
    )

    assert result.exit_code == 0, result.output
    assert "prompted-secret" not in result.output
    assert "Stored API key in secure credential storage." in result.output
    assert captured[0]["api_key"] == "prompted-secret"
    assert store.get_api_key() == "prompted-secret"


def test_open_store_api_key_failure_reports_credentials_stage(tmp_path: Path) -> None:
    """Storage failures map to the `credentials` stage."""

    result = CliRunner().invoke(
        app,
        ["open", str(_write_book(tmp_path)), "--api-key", "k", "--store-api-key"],
    )

    assert result.exit_code == 1
    assert "open failed at stage `credentials`" in result.output


def test_credentials_command_status_set_and_clear(monkeypatch: MonkeyPatch) -> None:
    """`credentials` reports status, stores a prompted key, and clears it."""

    store = InMemoryCredentialStore()
    _use_credential_store(monkeypatch, store)
    runner = CliRunner()

    status = runner.invoke(app, ["credentials"])
    assert status.exit_code == 0, status.output
    assert "Secure credential storage: available" in status.output
    assert "Stored API key: not set" in status.output

    stored = runner.invoke(app, ["credentials", "--set-api-key"], input="abc123\n")
    assert stored.exit_code == 0, stored.output
    assert "API key stored in secure credential storage." in stored.output
    assert "abc123" not in stored.output
    assert store.get_api_key() == "abc123"

    cleared = runner.invoke(app, ["credentials", "--clear-api-key"])
    assert cleared.exit_code == 0, cleared.output
    assert "Stored API key cleared from secure credential storage." in cleared.output

    again = runner.invoke(app, ["credentials", "--clear-api-key"])
    assert "No stored API key found in secure credential storage." in again.output


def test_credentials_command_rejects_conflicting_flags() -> None:
    """Set and clear cannot be combined in one invocation."""

    result = CliRunner().invoke(app, ["credentials", "--set-api-key", "--clear-api-key"])

    assert result.exit_code == 1
    assert "cannot be used together" in result.output
