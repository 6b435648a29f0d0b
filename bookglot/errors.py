"""Domain exceptions for the translation-and-cache pipeline and CLI diagnostics.

Span- and batch-level failures (`TransportFailure`, `ProviderItemError`) are
absorbed by the batcher and recorded as degraded chapter state. Store-level and
document-structure failures (`CacheWriteFailure`, `MalformedDocument`,
`PositionMismatch`) propagate to the caller.
"""

from __future__ import annotations


class BookglotError(RuntimeError):
    """Base class for pipeline domain errors."""


class MalformedDocument(BookglotError):
    """Raised when source structure cannot be used for translation."""

    def __init__(self, detail: str, *, chapter_index: int | None = None) -> None:
        """Initialize a document-structure error with optional chapter scope."""

        super().__init__(detail)
        self.detail = detail
        self.chapter_index = chapter_index


class PositionMismatch(BookglotError):
    """Raised when a span position no longer resolves to a text leaf."""

    def __init__(self, detail: str, *, position: tuple[int, ...] = ()) -> None:
        """Initialize an invariant-violation error with the offending position."""

        super().__init__(detail)
        self.detail = detail
        self.position = position


class CacheWriteFailure(BookglotError):
    """Raised when the cache store cannot durably persist a record."""


class TransportFailure(BookglotError):
    """Raised by translation clients when a whole request fails."""

    def __init__(
        self,
        message: str,
        *,
        failure_kind: str = "transport",
        retryable: bool = True,
        status_code: int | None = None,
    ) -> None:
        """Initialize transport failure metadata for retry decisions."""

        super().__init__(message)
        self.failure_kind = failure_kind
        self.retryable = retryable
        self.status_code = status_code


class ProviderItemError(BookglotError):
    """Per-item provider failure returned in place of one translated string."""

    def __init__(self, message: str, *, item_index: int | None = None) -> None:
        """Initialize a per-item error aligned with its request position."""

        super().__init__(message)
        self.item_index = item_index


class PipelineStageError(RuntimeError):
    """Raised when a specific pipeline stage fails."""

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint
