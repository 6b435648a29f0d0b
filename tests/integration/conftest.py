"""Integration-test fixtures for deterministic CLI behavior."""

from __future__ import annotations

from pathlib import Path

import pytest

from bookglot.translation.client import GoogleTranslateClient
from tests.epub_builder import FakeTranslationClient


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point the cache at a temporary directory and replace ambient BOOKGLOT_* values."""

    for key in (
        "BOOKGLOT_API_KEY",
        "BOOKGLOT_PROVIDER",
        "BOOKGLOT_MODEL",
        "BOOKGLOT_TARGET_LANGUAGE",
        "BOOKGLOT_LOG_DIR",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("BOOKGLOT_API_KEY", "test-key")
    cache_dir = tmp_path / "cache"
    monkeypatch.setenv("BOOKGLOT_CACHE_DIR", str(cache_dir))
    monkeypatch.setenv("BOOKGLOT_MIN_REQUEST_INTERVAL_SECONDS", "0")
    return cache_dir


@pytest.fixture(autouse=True)
def _mock_google_translate_calls(monkeypatch: pytest.MonkeyPatch) -> FakeTranslationClient:
    """Replace Google HTTP calls with a recording fake to avoid network/key requirements."""

    recorder = FakeTranslationClient()

    def _mock_translate(self: GoogleTranslateClient, texts, target_language):  # type: ignore[no-untyped-def]
        _ = self
        return recorder.translate(texts, target_language)

    monkeypatch.setattr(GoogleTranslateClient, "translate", _mock_translate)
    return recorder


@pytest.fixture(autouse=True)
def _no_keyring(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep CLI tests away from the real OS keyring."""

    monkeypatch.setattr(
        "bookglot.cli_runtime.create_credential_store", lambda: _EmptyCredentialStore()
    )
    monkeypatch.setattr("bookglot.cli.create_credential_store", lambda: _EmptyCredentialStore())


class _EmptyCredentialStore:
    """Credential store double with no stored key."""

    def is_available(self) -> bool:
        return False

    def get_api_key(self) -> str | None:
        return None

    def set_api_key(self, api_key: str) -> None:
        raise RuntimeError("keyring unavailable in tests")

    def clear_api_key(self) -> bool:
        return False
