"""Unit tests for secure credential store helpers."""

from __future__ import annotations

import pytest
from keyring.backends.fail import Keyring as FailKeyring
from keyring.errors import KeyringError

from bookglot.credentials import KeyringCredentialStore


class FakeKeyringModule:
    """In-memory keyring stub for deterministic credential store tests."""

    def __init__(self, backend: object | None = None) -> None:
        """Initialize fake storage dictionary and reported backend."""

        self._storage: dict[tuple[str, str], str] = {}
        self._backend = backend if backend is not None else object()

    def get_keyring(self) -> object:
        """Return the configured backend object."""

        return self._backend

    def get_password(self, service_name: str, account_name: str) -> str | None:
        """Return previously stored password if present."""

        return self._storage.get((service_name, account_name))

    def set_password(self, service_name: str, account_name: str, value: str) -> None:
        """Store password value for the service/account key."""

        self._storage[(service_name, account_name)] = value

    def delete_password(self, service_name: str, account_name: str) -> None:
        """Delete password value for the service/account key."""

        self._storage.pop((service_name, account_name), None)


class BrokenKeyringModule(FakeKeyringModule):
    """Keyring stub whose backend rejects every operation."""

    def get_password(self, service_name: str, account_name: str) -> str | None:
        raise KeyringError("locked")

    def set_password(self, service_name: str, account_name: str, value: str) -> None:
        raise KeyringError("locked")


def _store_with(monkeypatch: pytest.MonkeyPatch, module: FakeKeyringModule) -> KeyringCredentialStore:
    monkeypatch.setattr(KeyringCredentialStore, "_load_keyring_module", lambda self: module)
    return KeyringCredentialStore()


def test_keyring_store_roundtrip_set_get_clear(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keyring store should set/get/clear API key values via keyring backend."""

    fake_keyring = FakeKeyringModule()
    store = _store_with(monkeypatch, fake_keyring)

    assert store.is_available() is True
    assert store.get_api_key() is None

    store.set_api_key("  abc123  ")
    assert store.get_api_key() == "abc123"
    assert fake_keyring.get_password("bookglot", "api_key") == "abc123"

    assert store.clear_api_key() is True
    assert store.get_api_key() is None
    assert store.clear_api_key() is False


def test_keyring_store_reports_fail_backend_as_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    """The keyring fail backend means no secure storage is configured."""

    store = _store_with(monkeypatch, FakeKeyringModule(backend=FailKeyring()))

    assert store.is_available() is False


def test_keyring_store_rejects_blank_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Blank API keys are never persisted."""

    store = _store_with(monkeypatch, FakeKeyringModule())

    with pytest.raises(ValueError, match="non-empty"):
        store.set_api_key("   ")


def test_keyring_store_maps_backend_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    """Backend failures read as a missing key and fail storage with a runtime error."""

    store = _store_with(monkeypatch, BrokenKeyringModule())

    assert store.get_api_key() is None
    assert store.clear_api_key() is False
    with pytest.raises(RuntimeError, match="BOOKGLOT_API_KEY"):
        store.set_api_key("abc123")
