"""Provider factory helpers for translation clients.

Responsibilities:
- Resolve provider identifiers to concrete Translation Client implementations.
- Keep orchestration independent from concrete client construction.
"""

from __future__ import annotations

from .config import BookglotConfig, ProviderRuntimeConfig
from .translation.client import GoogleTranslateClient, OpenAITranslateClient, TranslationClient
from .translation.rate_limiter import RateLimiter


class ProviderFactory:
    """Factory for provider-backed translation clients used by the pipeline."""

    @staticmethod
    def create_translation_client(
        provider_id: str,
        *,
        model: str,
        api_key: str | None = None,
        timeout_seconds: float = 30.0,
        min_request_interval_seconds: float = 0.1,
    ) -> TranslationClient:
        """Create a translation client for a configured provider identifier."""

        rate_limiter = RateLimiter(min_interval_seconds=min_request_interval_seconds)
        if provider_id == "google":
            return GoogleTranslateClient(
                api_key=api_key,
                timeout_seconds=timeout_seconds,
                rate_limiter=rate_limiter,
            )
        if provider_id == "openai":
            return OpenAITranslateClient(
                api_key=api_key,
                model=model,
                timeout_seconds=timeout_seconds,
                rate_limiter=rate_limiter,
            )
        raise ValueError(f"Unsupported translation provider `{provider_id}`.")

    @staticmethod
    def from_runtime(config: BookglotConfig, runtime: ProviderRuntimeConfig) -> TranslationClient:
        """Create the client selected by resolved runtime values."""

        return ProviderFactory.create_translation_client(
            runtime.provider,
            model=runtime.model,
            api_key=runtime.api_key,
            timeout_seconds=config.request_timeout_seconds,
            min_request_interval_seconds=config.min_request_interval_seconds,
        )
