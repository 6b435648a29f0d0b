"""CLI provider runtime resolution helpers.

This module isolates runtime source assembly, API-key prompting, and secure
API-key persistence from the command wiring layer.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Protocol

import typer

from .config import BookglotConfig, ConfigLoader, ConfigStore, RuntimeConfigSources
from .credentials import create_credential_store
from .errors import PipelineStageError
from .parsing import normalize_optional_string


class CredentialStoreProtocol(Protocol):
    """Protocol for secure credential store operations used by CLI runtime resolution."""

    def get_api_key(self) -> str | None:
        """Return currently stored API key, if available."""

    def set_api_key(self, api_key: str) -> None:
        """Persist API key value in secure storage."""


def _set_runtime_cli_value(
    runtime_cli_values: dict[str, str],
    key: str,
    value: str | None,
) -> None:
    """Set a normalized runtime CLI value when user input is present."""

    normalized = normalize_optional_string(value)
    if normalized is not None:
        runtime_cli_values[key] = normalized


def load_cli_config(config_path: Path | None) -> BookglotConfig:
    """Load config from an explicit YAML file, or from `BOOKGLOT_*` variables."""

    try:
        if config_path is not None:
            return ConfigLoader.from_yaml(config_path)
        return ConfigLoader.from_env()
    except (OSError, ValueError) as exc:
        raise PipelineStageError(
            stage="config",
            detail=str(exc),
            hint="Fix the configuration file or BOOKGLOT_* variables and rerun.",
        ) from exc


def resolve_provider_runtime_sources(
    target_language: str | None,
    provider: str | None,
    model: str | None,
    api_key: str | None,
    prompt_api_key: bool,
    store_api_key: bool,
    credential_store_factory: Callable[[], CredentialStoreProtocol] | None = None,
) -> tuple[dict[str, str], dict[str, str]]:
    """Resolve CLI and secure runtime source mappings for provider configuration."""

    runtime_cli_values: dict[str, str] = {}
    _set_runtime_cli_value(runtime_cli_values, "target_language", target_language)
    _set_runtime_cli_value(runtime_cli_values, "provider", provider)
    _set_runtime_cli_value(runtime_cli_values, "model", model)
    _set_runtime_cli_value(runtime_cli_values, "api_key", api_key)

    if prompt_api_key and "api_key" not in runtime_cli_values:
        prompted_api_key = normalize_optional_string(
            typer.prompt(
                "Translation API key (hidden; leave blank to skip)",
                default="",
                hide_input=True,
                show_default=False,
            )
        )
        if prompted_api_key is not None:
            runtime_cli_values["api_key"] = prompted_api_key

    credential_store = (credential_store_factory or create_credential_store)()
    runtime_secure_values: dict[str, str] = {}
    stored_api_key = credential_store.get_api_key()
    if stored_api_key is not None:
        runtime_secure_values["api_key"] = stored_api_key

    if "api_key" in runtime_cli_values and store_api_key:
        try:
            credential_store.set_api_key(runtime_cli_values["api_key"])
        except (RuntimeError, ValueError) as exc:
            raise PipelineStageError(
                stage="credentials",
                detail=f"Failed to store API key securely: {exc}",
                hint=(
                    "Install and configure a keyring backend, or rerun without "
                    "`--store-api-key` for one-off usage."
                ),
            ) from exc
        typer.echo("Stored API key in secure credential storage.")

    return runtime_cli_values, runtime_secure_values


def build_config_store(
    config: BookglotConfig,
    runtime_cli_values: dict[str, str],
    runtime_secure_values: dict[str, str],
) -> ConfigStore:
    """Combine loaded config and CLI/secure sources into a resolved settings view."""

    try:
        return ConfigStore(
            config,
            RuntimeConfigSources(
                cli=runtime_cli_values,
                secure=runtime_secure_values,
                env=config.runtime_sources.env,
            ),
        )
    except ValueError as exc:
        raise PipelineStageError(
            stage="config",
            detail=str(exc),
            hint=(
                "Set a supported provider (`google`, `openai`) and a valid language "
                "code in CLI, secure storage, environment, or config defaults."
            ),
        ) from exc
