"""Translation Client contract and HTTP provider implementations.

Responsibilities:
- Define the batch call contract used by the Translation Batcher.
- Send batch requests to Google Cloud Translation (v2) or OpenAI chat completions.
- Map HTTP/transport failures to `TransportFailure` with retry classification,
  and malformed per-item results to `ProviderItemError`.

Key types:
- `TranslationClient`: protocol for batch translation providers.
- `GoogleTranslateClient`, `OpenAITranslateClient`: requests-based clients.
"""

from __future__ import annotations

import json
import re
import socket
from typing import Any, Protocol, Sequence

import requests

from ..errors import ProviderItemError, TransportFailure
from .rate_limiter import RateLimiter


TranslationResultItem = str | ProviderItemError

_RETRYABLE_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})


class TranslationClient(Protocol):
    """Protocol for batch translation providers."""

    provider_id: str
    max_batch_size: int

    def translate(
        self, texts: Sequence[str], target_language: str
    ) -> list[TranslationResultItem]:
        """Translate `texts` and return results aligned by position.

        Raises:
            TransportFailure: When the request as a whole fails.
        """

    def require_credentials(self) -> None:
        """Raise `TransportFailure` when the provider has no usable credentials."""


class _HttpTranslationClient:
    """Shared HTTP settings and failure mapping for provider clients."""

    provider_id = "http"
    max_batch_size = 100
    _MAX_PROVIDER_MESSAGE_CHARS = 180

    def __init__(
        self,
        *,
        api_key: str | None,
        timeout_seconds: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize HTTP client settings."""

        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.timeout_seconds = timeout_seconds
        self.rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self.session = session if session is not None else requests.Session()

    def require_credentials(self) -> None:
        """Require API key presence before issuing provider requests.

        Raises:
            TransportFailure: With `failure_kind="invalid_api_key"` when no key is set.
        """

        if not self.api_key:
            raise TransportFailure(
                f"Missing {self.provider_id} API key. Set `BOOKGLOT_API_KEY`, use "
                "`--api-key`, or run `bookglot credentials --set-api-key`.",
                failure_kind="invalid_api_key",
                retryable=False,
            )

    def _post_json(
        self,
        url: str,
        *,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        """POST a JSON payload and return the decoded JSON response."""

        self.rate_limiter.acquire(f"{self.provider_id}:{url}")
        try:
            response = self.session.post(
                url,
                json=payload,
                headers=headers,
                params=params,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise self._http_error_to_failure(exc) from exc
        except (requests.Timeout, socket.timeout, TimeoutError) as exc:
            raise TransportFailure(
                f"{self.provider_id} request timed out.", failure_kind="timeout"
            ) from exc
        except requests.RequestException as exc:
            raise TransportFailure(
                f"{self.provider_id} request transport error: "
                f"{self._short_message(str(exc))}",
                failure_kind="transport",
            ) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise TransportFailure(
                f"{self.provider_id} returned invalid JSON payload.",
                failure_kind="malformed_response",
            ) from exc

    @classmethod
    def _redact_sensitive_tokens(cls, text: str) -> str:
        """Redact API-key-like tokens from provider error content."""

        redacted = re.sub(r"\bsk-[A-Za-z0-9_-]{8,}\b", "[redacted-key]", text)
        redacted = re.sub(r"\bAIza[A-Za-z0-9_-]{20,}\b", "[redacted-key]", redacted)
        redacted = re.sub(r"(?i)([?&]key=)[^&\s]+", r"\1[redacted-key]", redacted)
        return re.sub(
            r"(?i)bearer\s+[A-Za-z0-9._-]{12,}", "Bearer [redacted-token]", redacted
        )

    @classmethod
    def _short_message(cls, text: str) -> str:
        """Normalize, redact, and cap user-facing provider message length."""

        compact = " ".join(cls._redact_sensitive_tokens(text).split())
        if len(compact) <= cls._MAX_PROVIDER_MESSAGE_CHARS:
            return compact
        return f"{compact[: cls._MAX_PROVIDER_MESSAGE_CHARS - 1]}..."

    @classmethod
    def _extract_provider_message(cls, response: requests.Response | None) -> str:
        """Extract a concise error message from a provider error body."""

        if response is None:
            return ""
        try:
            body = bytes(response.content).decode("utf-8", errors="replace").strip()
        except (TypeError, ValueError):
            return ""
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return cls._short_message(body)
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            message = payload["error"].get("message")
            if isinstance(message, str) and message.strip():
                return cls._short_message(message)
        return cls._short_message(body)

    def _http_error_to_failure(self, exc: requests.HTTPError) -> TransportFailure:
        """Convert HTTP errors into transport failures with retry classification."""

        status_code = exc.response.status_code if exc.response is not None else 0
        message = self._extract_provider_message(exc.response)
        if status_code in {401, 403}:
            failure_kind = "invalid_api_key"
        elif status_code == 429:
            failure_kind = "rate_limited"
        elif status_code in {408, 504}:
            failure_kind = "timeout"
        else:
            failure_kind = "http_error"

        detail = f"{self.provider_id} request failed (HTTP {status_code})"
        detail = f"{detail}: {message}" if message else f"{detail}."
        return TransportFailure(
            detail,
            failure_kind=failure_kind,
            retryable=status_code in _RETRYABLE_STATUS_CODES,
            status_code=status_code,
        )


class GoogleTranslateClient(_HttpTranslationClient):
    """Google Cloud Translation v2 client (`format=text`)."""

    provider_id = "google"
    max_batch_size = 128
    endpoint = "https://translation.googleapis.com/language/translate/v2"

    def translate(
        self, texts: Sequence[str], target_language: str
    ) -> list[TranslationResultItem]:
        """Translate a batch of strings with one v2 request."""

        if not texts:
            return []
        self.require_credentials()
        payload = self._post_json(
            self.endpoint,
            payload={"q": list(texts), "target": target_language, "format": "text"},
            params={"key": self.api_key},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        translations = data.get("translations") if isinstance(data, dict) else None
        if not isinstance(translations, list):
            raise TransportFailure(
                "google response missing `data.translations` list.",
                failure_kind="malformed_response",
            )
        results: list[TranslationResultItem] = []
        for item_index, item in enumerate(translations):
            text = item.get("translatedText") if isinstance(item, dict) else None
            if isinstance(text, str) and text.strip():
                results.append(text)
            else:
                results.append(
                    ProviderItemError("google returned no translation.", item_index=item_index)
                )
        return results


class OpenAITranslateClient(_HttpTranslationClient):
    """OpenAI chat-completions client using a JSON-array batch protocol."""

    provider_id = "openai"
    max_batch_size = 50

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gpt-4.1-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 60.0,
        rate_limiter: RateLimiter | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize OpenAI model and endpoint settings."""

        super().__init__(
            api_key=api_key,
            timeout_seconds=timeout_seconds,
            rate_limiter=rate_limiter,
            session=session,
        )
        self.model = model
        self.base_url = base_url.rstrip("/")

    @staticmethod
    def system_prompt() -> str:
        """Return the system prompt for strict JSON-array translation."""

        return (
            "You are a precise translation assistant for ebook text. "
            "You receive a JSON array of strings and return only a JSON array of the "
            "same length whose items are the translations, in the same order. "
            "Do not merge, split, or omit items and add no commentary."
        )

    @staticmethod
    def user_prompt(texts: Sequence[str], target_language: str) -> str:
        """Return the user prompt carrying the source strings."""

        return (
            f"Translate every item into the language with code `{target_language}`, "
            "preserving meaning and tone.\n\n"
            f"{json.dumps(list(texts), ensure_ascii=False)}"
        )

    def translate(
        self, texts: Sequence[str], target_language: str
    ) -> list[TranslationResultItem]:
        """Translate a batch of strings with one chat-completions request."""

        if not texts:
            return []
        self.require_credentials()
        payload = self._post_json(
            f"{self.base_url}/chat/completions",
            payload={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": self.system_prompt()},
                    {"role": "user", "content": self.user_prompt(texts, target_language)},
                ],
                "temperature": 0.0,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return self._parse_items(self._message_text(payload))

    @staticmethod
    def _message_text(payload: Any) -> str:
        """Extract the first assistant message text from a chat-completions payload."""

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TransportFailure(
                "openai response missing `choices[0].message.content`.",
                failure_kind="malformed_response",
            ) from exc
        if not isinstance(content, str) or not content.strip():
            raise TransportFailure(
                "openai response message content is empty.",
                failure_kind="malformed_response",
            )
        return content

    @staticmethod
    def _parse_items(content: str) -> list[TranslationResultItem]:
        """Decode the JSON array answer, tolerating a fenced code block."""

        stripped = content.strip()
        fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", stripped, flags=re.DOTALL)
        if fenced is not None:
            stripped = fenced.group(1)
        try:
            items = json.loads(stripped)
        except json.JSONDecodeError as exc:
            raise TransportFailure(
                "openai answer is not a JSON array.", failure_kind="malformed_response"
            ) from exc
        if not isinstance(items, list):
            raise TransportFailure(
                "openai answer is not a JSON array.", failure_kind="malformed_response"
            )
        return [
            item
            if isinstance(item, str) and item.strip()
            else ProviderItemError("openai returned an empty or non-text item.", item_index=index)
            for index, item in enumerate(items)
        ]
