"""Pipeline Run state and runtime helpers for the orchestrator.

Responsibilities:
- Track per-open run state, chapter statuses, and cancellation.
- Map configuration, language and credential problems to stage-aware errors.
- Wrap named stages with start/complete/failure telemetry.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
import threading
from typing import TypeVar

from ..config import BookglotConfig
from ..errors import PipelineStageError, TransportFailure
from ..models.datatypes import ChapterStatus
from ..parsing import normalize_language_code
from ..telemetry.logger import RunLogger
from ..translation.client import TranslationClient

_StageResult = TypeVar("_StageResult")


class RunState(str, Enum):
    """Lifecycle state of one pipeline run."""

    CACHE_CHECK = "cache_check"
    TRANSLATING = "translating"
    PERSISTING = "persisting"
    SERVING = "serving"
    FAILED = "failed"


class PipelineRun:
    """Mutable state of one open-book run, safe to update from worker threads."""

    def __init__(self, book_identity: str, target_language: str, total_chapters: int) -> None:
        """Initialize every chapter as pending."""

        self.book_identity = book_identity
        self.target_language = target_language
        self.cancel_event = threading.Event()
        self._lock = threading.Lock()
        self._state = RunState.CACHE_CHECK
        self._statuses = {index: ChapterStatus.PENDING for index in range(total_chapters)}

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def set_state(self, state: RunState) -> None:
        """Move the run to a new lifecycle state."""

        with self._lock:
            self._state = state

    def mark(self, chapter_index: int, status: ChapterStatus) -> None:
        """Record the status of one chapter."""

        with self._lock:
            self._statuses[chapter_index] = status

    def statuses(self) -> dict[int, ChapterStatus]:
        """Return a snapshot of the chapter status map."""

        with self._lock:
            return dict(self._statuses)

    def cancel(self) -> None:
        """Request cancellation; no new batches are submitted afterwards."""

        self.cancel_event.set()


class PipelineRuntimeMixin:
    """Provide runtime/config helper methods for pipeline orchestration."""

    _config: BookglotConfig
    _run_logger: RunLogger | None

    def _validate_config(self, config: BookglotConfig) -> None:
        """Validate top-level configuration and map failures to stage-aware error."""

        try:
            config.validate()
        except ValueError as exc:
            raise PipelineStageError(
                stage="config",
                detail=str(exc),
                hint="Update the configuration file or BOOKGLOT_* variables and rerun.",
            ) from exc

    def _resolve_target_language(self, target_language: str | None) -> str:
        """Return the normalized target language, defaulting to the configured one."""

        try:
            return normalize_language_code(
                target_language if target_language is not None else self._config.target_language
            )
        except ValueError as exc:
            raise PipelineStageError(
                stage="config",
                detail=str(exc),
                hint="Use a language code such as `en`, `cs` or `pt-BR`.",
            ) from exc

    def _require_credentials(self, client: TranslationClient) -> None:
        """Fail the run before any cache write when the client cannot authenticate."""

        try:
            client.require_credentials()
        except TransportFailure as exc:
            raise PipelineStageError(
                stage="credentials",
                detail=str(exc),
                hint="Set `BOOKGLOT_API_KEY` or run `bookglot credentials --set-api-key`.",
            ) from exc

    def _log(self, level: str, event: str, stage: str, **context: object) -> None:
        """Emit one structured event when a run logger is configured."""

        if self._run_logger is not None:
            self._run_logger.log_event(level, event, stage, **context)

    def _run_stage(
        self,
        stage_name: str,
        action: Callable[[], _StageResult],
        **context: object,
    ) -> _StageResult:
        """Run one named stage and emit start/complete/failure telemetry events."""

        if self._run_logger is not None:
            self._run_logger.log_stage_start(stage_name, **context)
        try:
            result = action()
        except Exception as exc:
            if self._run_logger is not None:
                self._run_logger.log_stage_failure(stage_name, type(exc).__name__, **context)
            raise
        if self._run_logger is not None:
            self._run_logger.log_stage_complete(stage_name, **context)
        return result
