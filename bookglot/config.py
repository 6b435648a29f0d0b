"""Configuration model and loaders for bookglot.

Responsibilities:
- Define runtime configuration as a typed dataclass.
- Provide deterministic precedence resolution for target language, provider,
  model and API key.
- Provide loader entry points for file- and environment-based configuration.
- Resolve the cache base directory once per process entry point.

Key types:
- `BookglotConfig`: normalized runtime settings.
- `ProviderRuntimeConfig`: resolved provider/model/language values.
- `RuntimeConfigSources`: optional value sources for precedence resolution.
- `ConfigLoader`: static construction helpers for `BookglotConfig`.
- `ConfigStore`: read-only settings view used by the pipeline and CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .parsing import (
    normalize_language_code,
    normalize_optional_string,
    parse_positive_number,
)


_DEFAULT_TARGET_LANGUAGE = "en"
_DEFAULT_PROVIDER = "google"
_DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"
_DEFAULT_CACHE_DIR_NAME = ".bookglot"
_SUPPORTED_PROVIDER_IDS = frozenset({"google", "openai"})
_SUPPORTED_LOG_LEVELS = frozenset(
    {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
)


def default_cache_dir() -> Path:
    """Return the default cache base directory in the user's home."""

    return Path.home() / _DEFAULT_CACHE_DIR_NAME


def resolve_cache_root(cache_dir: Path | None) -> Path:
    """Resolve the cache base directory to an absolute path."""

    return (cache_dir if cache_dir is not None else default_cache_dir()).expanduser().resolve()


@dataclass(frozen=True, slots=True)
class RuntimeConfigSources:
    """Source mappings used for deterministic runtime value precedence.

    Attributes:
        cli: Values explicitly provided by CLI arguments.
        secure: Values loaded from secure local credential storage.
        env: Values loaded from environment variables.
    """

    cli: Mapping[str, str] = field(default_factory=dict)
    secure: Mapping[str, str] = field(default_factory=dict)
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderRuntimeConfig:
    """Resolved runtime provider values for one invocation.

    Attributes:
        provider: Translation provider identifier.
        model: Model identifier (used by LLM-backed providers).
        target_language: Normalized target language code.
        api_key: Optional provider API key (resolved but never persisted).
    """

    provider: str
    model: str
    target_language: str
    api_key: str | None = None

    def as_log_metadata(self) -> dict[str, str]:
        """Return non-secret runtime metadata safe to log."""

        return {
            "provider": self.provider,
            "model": self.model,
            "target_language": self.target_language,
            "api_key": "set" if self.api_key else "missing",
        }


@dataclass(slots=True)
class BookglotConfig:
    """Runtime configuration for bookglot.

    Attributes:
        cache_dir: Cache base directory, defaulting to `~/.bookglot`.
        target_language: Target language code, defaulting to English (`en`).
        provider: Translation provider identifier (`google` or `openai`).
        model: Model identifier for LLM-backed providers.
        api_key: Optional API key for provider calls.
        max_batch_chars: Cumulative character limit per batch.
        max_batch_spans: Span count limit per batch.
        max_retries: Retries per batch after the first attempt.
        retry_backoff_base_seconds: First retry delay.
        retry_backoff_max_seconds: Upper bound for any retry delay.
        concurrency: Parallel chapters and parallel batches.
        request_timeout_seconds: HTTP timeout for provider calls.
        min_request_interval_seconds: Minimum spacing between provider requests.
        log_dir: Optional directory for the daily rolling log file.
        log_level: Minimum log level for console and file sinks.
        runtime_sources: Optional runtime source overrides injected by CLI.
    """

    cache_dir: Path = field(default_factory=default_cache_dir)
    target_language: str = _DEFAULT_TARGET_LANGUAGE
    provider: str = _DEFAULT_PROVIDER
    model: str = _DEFAULT_OPENAI_MODEL
    api_key: str | None = None
    max_batch_chars: int = 4500
    max_batch_spans: int = 100
    max_retries: int = 3
    retry_backoff_base_seconds: float = 0.5
    retry_backoff_max_seconds: float = 8.0
    concurrency: int = 4
    request_timeout_seconds: float = 30.0
    min_request_interval_seconds: float = 0.1
    log_dir: Path | None = None
    log_level: str = "INFO"
    runtime_sources: RuntimeConfigSources = field(default_factory=RuntimeConfigSources)

    def validate(self) -> None:
        """Validate configuration values before pipeline execution."""

        self._validate_provider_id(self.provider, "provider")
        self._require_non_empty(self.model, "model")
        normalize_language_code(self.target_language)
        for name in ("max_batch_chars", "max_batch_spans", "concurrency"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"`{name}` must be a positive integer.")
        if isinstance(self.max_retries, bool) or self.max_retries < 0:
            raise ValueError("`max_retries` must be a non-negative integer.")
        if self.retry_backoff_base_seconds < 0 or self.min_request_interval_seconds < 0:
            raise ValueError("Backoff and request interval values must not be negative.")
        if self.retry_backoff_max_seconds < self.retry_backoff_base_seconds:
            raise ValueError(
                "`retry_backoff_max_seconds` must be at least `retry_backoff_base_seconds`."
            )
        if self.request_timeout_seconds <= 0:
            raise ValueError("`request_timeout_seconds` must be a positive number.")
        if self.log_level.upper() not in _SUPPORTED_LOG_LEVELS:
            supported = ", ".join(sorted(_SUPPORTED_LOG_LEVELS))
            raise ValueError(f"Unsupported `log_level` value `{self.log_level}`; supported: {supported}.")

    def resolved_provider_runtime(
        self, sources: RuntimeConfigSources | None = None
    ) -> ProviderRuntimeConfig:
        """Resolve provider settings with deterministic source precedence.

        Precedence for each key is:
        `cli` > `secure` > `env` > config field default.
        """

        resolved_sources = sources if sources is not None else RuntimeConfigSources()

        provider = self._resolve_runtime_value(
            key="provider",
            env_key="BOOKGLOT_PROVIDER",
            default_value=self.provider,
            sources=resolved_sources,
        )
        model = self._resolve_runtime_value(
            key="model",
            env_key="BOOKGLOT_MODEL",
            default_value=self.model,
            sources=resolved_sources,
        )
        target_language = self._resolve_runtime_value(
            key="target_language",
            env_key="BOOKGLOT_TARGET_LANGUAGE",
            default_value=self.target_language,
            sources=resolved_sources,
        )
        api_key = self._resolve_optional_runtime_value(
            key="api_key",
            env_key="BOOKGLOT_API_KEY",
            default_value=self.api_key,
            sources=resolved_sources,
        )

        self._validate_provider_id(provider, "provider")
        self._require_non_empty(model, "model")
        return ProviderRuntimeConfig(
            provider=provider,
            model=model,
            target_language=normalize_language_code(target_language),
            api_key=api_key,
        )

    def _resolve_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str:
        """Resolve a required runtime value from sources in precedence order."""

        value = self._resolve_optional_runtime_value(key, env_key, default_value, sources)
        if value is None:
            raise ValueError(
                f"`{key}` could not be resolved from CLI, secure storage, env, or defaults."
            )
        return value

    def _resolve_optional_runtime_value(
        self,
        key: str,
        env_key: str,
        default_value: str | None,
        sources: RuntimeConfigSources,
    ) -> str | None:
        """Resolve an optional runtime value from sources in precedence order."""

        for mapping, lookup_key in (
            (sources.cli, key),
            (sources.secure, key),
            (sources.env, env_key),
        ):
            value = self._normalized_lookup(mapping, lookup_key)
            if value is not None:
                return value
        return normalize_optional_string(default_value)

    @staticmethod
    def _normalized_lookup(mapping: Mapping[str, str], key: str) -> str | None:
        """Return a stripped mapping value for a key or `None` when missing/blank."""

        if key not in mapping:
            return None
        return normalize_optional_string(mapping.get(key))

    @staticmethod
    def _validate_provider_id(provider_id: str, field_name: str) -> None:
        """Validate provider identifiers against supported providers."""

        if provider_id not in _SUPPORTED_PROVIDER_IDS:
            supported = ", ".join(sorted(_SUPPORTED_PROVIDER_IDS))
            raise ValueError(
                f"Unsupported `{field_name}` value `{provider_id}`; supported: {supported}."
            )

    @staticmethod
    def _require_non_empty(value: str, field_name: str) -> None:
        """Validate that string fields are not empty."""

        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"`{field_name}` must be a non-empty string.")


class ConfigStore:
    """Read-only settings view resolved once from config and runtime sources."""

    def __init__(self, config: BookglotConfig, sources: RuntimeConfigSources | None = None) -> None:
        """Resolve runtime values; an empty env source falls back to `os.environ`."""

        base_sources = sources if sources is not None else config.runtime_sources
        self._runtime = config.resolved_provider_runtime(
            RuntimeConfigSources(
                cli=base_sources.cli,
                secure=base_sources.secure,
                env=base_sources.env or os.environ,
            )
        )
        self._cache_root = resolve_cache_root(config.cache_dir)

    @property
    def runtime(self) -> ProviderRuntimeConfig:
        return self._runtime

    @property
    def cache_root(self) -> Path:
        """Return the absolute cache base directory."""

        return self._cache_root

    def get_target_language(self) -> str:
        """Return the resolved target language code."""

        return self._runtime.target_language

    def get_api_key(self) -> str | None:
        """Return the resolved API key, if any."""

        return self._runtime.api_key


class ConfigLoader:
    """Factory methods for creating `BookglotConfig` from external sources."""

    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "cache_dir",
            "target_language",
            "provider",
            "model",
            "api_key",
            "max_batch_chars",
            "max_batch_spans",
            "max_retries",
            "retry_backoff_base_seconds",
            "retry_backoff_max_seconds",
            "concurrency",
            "request_timeout_seconds",
            "min_request_interval_seconds",
            "log_dir",
            "log_level",
        }
    )
    _NUMERIC_FIELDS: dict[str, tuple[bool, bool]] = {
        "max_batch_chars": (True, False),
        "max_batch_spans": (True, False),
        "max_retries": (True, True),
        "retry_backoff_base_seconds": (False, True),
        "retry_backoff_max_seconds": (False, True),
        "concurrency": (True, False),
        "request_timeout_seconds": (False, False),
        "min_request_interval_seconds": (False, True),
    }
    _RUNTIME_ENV_KEYS = frozenset(
        {
            "BOOKGLOT_PROVIDER",
            "BOOKGLOT_MODEL",
            "BOOKGLOT_TARGET_LANGUAGE",
            "BOOKGLOT_API_KEY",
        }
    )

    @staticmethod
    def from_yaml(path: Path) -> BookglotConfig:
        """Create a validated config from a YAML file."""

        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ValueError(f"YAML config `{path}` could not be parsed: {exc}") from exc

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return ConfigLoader._build_config_from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_env(env: Mapping[str, str] | None = None) -> BookglotConfig:
        """Create a validated config from `BOOKGLOT_*` environment variables."""

        env_map: Mapping[str, str] = os.environ if env is None else env

        payload: dict[str, Any] = {}
        for key in ConfigLoader._SUPPORTED_YAML_KEYS:
            value = normalize_optional_string(env_map.get(f"BOOKGLOT_{key.upper()}"))
            if value is not None:
                payload[key] = value

        runtime_env = {
            key: value
            for key, value in env_map.items()
            if key in ConfigLoader._RUNTIME_ENV_KEYS
            and normalize_optional_string(value) is not None
        }
        config = ConfigLoader._build_config_from_mapping(payload, source_label="Environment")
        config.runtime_sources = RuntimeConfigSources(env=runtime_env)
        return config

    @staticmethod
    def _build_config_from_mapping(payload: Mapping[str, Any], source_label: str) -> BookglotConfig:
        """Build a validated config from a normalized mapping payload."""

        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

        config = BookglotConfig()
        cache_dir = ConfigLoader._optional_non_empty_string(payload, "cache_dir")
        if cache_dir is not None:
            config.cache_dir = Path(cache_dir)
        log_dir = ConfigLoader._optional_non_empty_string(payload, "log_dir")
        if log_dir is not None:
            config.log_dir = Path(log_dir)
        for key in ("target_language", "provider", "model", "api_key"):
            value = ConfigLoader._optional_non_empty_string(payload, key)
            if value is not None:
                setattr(config, key, value)
        log_level = ConfigLoader._optional_non_empty_string(payload, "log_level")
        if log_level is not None:
            config.log_level = log_level.upper()

        for key, (integer, allow_zero) in ConfigLoader._NUMERIC_FIELDS.items():
            if normalize_optional_string(payload.get(key)) is None:
                continue
            try:
                value = parse_positive_number(
                    payload[key], key, integer=integer, allow_zero=allow_zero
                )
            except ValueError as exc:
                raise ValueError(f"{source_label} field {exc}") from exc
            setattr(config, key, value)

        config.validate()
        return config

    @staticmethod
    def _optional_non_empty_string(payload: Mapping[str, Any], key: str) -> str | None:
        """Read an optional string field and normalize blank values to `None`."""

        if key not in payload:
            return None
        return normalize_optional_string(payload[key])
