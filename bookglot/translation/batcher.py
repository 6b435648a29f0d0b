"""Translation Batcher.

Responsibilities:
- Partition a chapter's spans into batches bounded by character and span counts.
- Submit batches through a `TranslationClient`, concurrently up to a limit.
- Retry transport failures with exponential backoff, then degrade the batch.
- Merge results back into spans by index alignment, isolating per-item errors.

Failure isolation is per span: a provider item error marks one span failed,
and an exhausted batch marks only that batch's spans failed. Batches rejected
for invalid credentials are reported on the outcome so callers can stop the run.
"""

from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
import threading
import time
from typing import Callable, Sequence

from ..errors import ProviderItemError, TransportFailure
from ..models.datatypes import TextSpan, TranslationBatch
from ..telemetry.logger import RunLogger
from .client import TranslationClient


_CREDENTIAL_FAILURE = "invalid_api_key"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded retry schedule for batch-level transport failures.

    Attributes:
        max_retries: Retries after the first attempt.
        backoff_base_seconds: Delay before the first retry.
        backoff_max_seconds: Upper bound for any single delay.
    """

    max_retries: int = 3
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 8.0

    def delay_for(self, retry_index: int) -> float:
        """Return the backoff delay before retry number `retry_index` (0-based)."""

        return min(self.backoff_base_seconds * (2**retry_index), self.backoff_max_seconds)


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Result of translating one chapter's spans.

    Attributes:
        spans: Spans in input order, resolved unless the run was cancelled.
        cancelled: Whether some batches were skipped due to cancellation.
        transport_failures: Number of batches that exhausted their retries.
        retry_count: Total retries performed across batches.
        credential_error: Message of the first batch rejected for invalid credentials.
    """

    spans: tuple[TextSpan, ...]
    cancelled: bool = False
    transport_failures: int = 0
    retry_count: int = 0
    credential_error: str | None = None

    @property
    def failed_span_count(self) -> int:
        """Return the number of spans that fall back to original text."""

        return sum(1 for span in self.spans if span.failed)


@dataclass(slots=True)
class _BatchResult:
    """Internal per-batch result before merging."""

    spans: list[TextSpan]
    submitted: bool = True
    exhausted: bool = False
    retries: int = 0
    failure: TransportFailure | None = None


def plan_batches(
    spans: Sequence[TextSpan], max_chars: int, max_spans: int
) -> list[TranslationBatch]:
    """Greedily partition spans in order under character and span limits.

    A single span longer than `max_chars` is placed alone in its own batch.
    """

    if max_chars <= 0 or max_spans <= 0:
        raise ValueError("Batch limits must be positive integers.")

    batches: list[TranslationBatch] = []
    current: list[TextSpan] = []
    current_chars = 0
    for span in spans:
        span_chars = len(span.request_text)
        if current and (
            current_chars + span_chars > max_chars or len(current) >= max_spans
        ):
            batches.append(TranslationBatch(batch_index=len(batches), spans=tuple(current)))
            current, current_chars = [], 0
        current.append(span)
        current_chars += span_chars
    if current:
        batches.append(TranslationBatch(batch_index=len(batches), spans=tuple(current)))
    return batches


class TranslationBatcher:
    """Translate spans through a client with batching, retries, and isolation."""

    def __init__(
        self,
        client: TranslationClient,
        *,
        max_batch_chars: int = 4500,
        max_batch_spans: int = 100,
        retry_policy: RetryPolicy | None = None,
        executor: Executor | None = None,
        concurrency: int = 1,
        sleeper: Callable[[float], None] = time.sleep,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize batch limits, retry policy, and the batch worker pool."""

        self.client = client
        self.max_batch_chars = max_batch_chars
        provider_limit = getattr(client, "max_batch_size", max_batch_spans) or max_batch_spans
        self.max_batch_spans = min(max_batch_spans, provider_limit)
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self._executor = executor
        self._concurrency = max(1, concurrency)
        self._sleeper = sleeper
        self._run_logger = run_logger

    def translate_spans(
        self,
        spans: Sequence[TextSpan],
        target_language: str,
        cancel_event: threading.Event | None = None,
    ) -> BatchOutcome:
        """Translate all spans and return resolved copies in input order."""

        batches = plan_batches(spans, self.max_batch_chars, self.max_batch_spans)
        if not batches:
            return BatchOutcome(spans=tuple(spans))

        if self._executor is not None:
            results = list(
                self._executor.map(
                    lambda batch: self._run_batch(batch, target_language, cancel_event),
                    batches,
                )
            )
        elif self._concurrency > 1 and len(batches) > 1:
            with ThreadPoolExecutor(
                max_workers=min(self._concurrency, len(batches)),
                thread_name_prefix="bookglot-batch",
            ) as executor:
                results = list(
                    executor.map(
                        lambda batch: self._run_batch(batch, target_language, cancel_event),
                        batches,
                    )
                )
        else:
            results = [self._run_batch(batch, target_language, cancel_event) for batch in batches]

        resolved = tuple(span for result in results for span in result.spans)
        credential_errors = [
            str(result.failure)
            for result in results
            if result.failure is not None and result.failure.failure_kind == _CREDENTIAL_FAILURE
        ]
        return BatchOutcome(
            spans=resolved,
            cancelled=any(not result.submitted for result in results),
            transport_failures=sum(1 for result in results if result.exhausted),
            retry_count=sum(result.retries for result in results),
            credential_error=credential_errors[0] if credential_errors else None,
        )

    def _run_batch(
        self,
        batch: TranslationBatch,
        target_language: str,
        cancel_event: threading.Event | None,
    ) -> _BatchResult:
        """Submit one batch with bounded retries and merge its results."""

        texts = [span.request_text for span in batch.spans]
        retries = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return _BatchResult(spans=list(batch.spans), submitted=False, retries=retries)
            try:
                items = self.client.translate(texts, target_language)
                if len(items) != len(texts):
                    raise TransportFailure(
                        f"Provider returned {len(items)} results for {len(texts)} texts.",
                        failure_kind="misaligned_response",
                    )
            except TransportFailure as exc:
                if exc.retryable and retries < self.retry_policy.max_retries:
                    delay = self.retry_policy.delay_for(retries)
                    retries += 1
                    self._log_retry(batch, exc, retries, delay)
                    self._sleeper(delay)
                    continue
                self._log_exhausted(batch, exc, retries)
                return _BatchResult(
                    spans=[replace(span, error=str(exc)) for span in batch.spans],
                    exhausted=True,
                    retries=retries,
                    failure=exc,
                )
            return _BatchResult(spans=self._merge(batch, items), retries=retries)

    @staticmethod
    def _merge(
        batch: TranslationBatch, items: Sequence[str | ProviderItemError]
    ) -> list[TextSpan]:
        """Attach results to spans by position within the batch."""

        merged: list[TextSpan] = []
        for span, item in zip(batch.spans, items):
            if isinstance(item, ProviderItemError):
                merged.append(replace(span, error=str(item)))
            else:
                merged.append(replace(span, translated_text=item))
        return merged

    def _log_retry(
        self, batch: TranslationBatch, exc: TransportFailure, attempt: int, delay: float
    ) -> None:
        """Emit a retry event for one batch."""

        if self._run_logger is None:
            return
        self._run_logger.log_event(
            "WARNING",
            "retry",
            "translate",
            batch=batch.batch_index,
            attempt=attempt,
            delay_seconds=f"{delay:.2f}",
            failure_kind=exc.failure_kind,
        )

    def _log_exhausted(
        self, batch: TranslationBatch, exc: TransportFailure, retries: int
    ) -> None:
        """Emit a degraded-batch event once retries are exhausted."""

        if self._run_logger is None:
            return
        self._run_logger.log_event(
            "ERROR",
            "batch_degraded",
            "translate",
            batch=batch.batch_index,
            spans=len(batch.spans),
            retries=retries,
            failure_kind=exc.failure_kind,
        )
