"""Pipeline orchestration for bookglot.

Responsibilities:
- Sequence cache check, extraction, batched translation, reassembly and
  commit for each chapter of an opened book.
- Serve finalized cache hits without any provider calls.
- Resume partial records and report chapters as they become ready.
- Expose cached-book maintenance operations.

Key types:
- `TranslationPipeline`: orchestration facade.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
import threading
import time
from typing import Callable

from ..cache.store import CacheStore, WriteHandle
from ..config import BookglotConfig
from ..errors import MalformedDocument, PipelineStageError
from ..io.epub_source import BookSource, EpubBookSource
from ..models.datatypes import (
    CachedBookEntry,
    CacheRecord,
    ChapterDocument,
    ChapterEvent,
    ChapterStatus,
    ParsedBook,
)
from ..telemetry.logger import RunLogger
from ..text.extractor import extract_spans
from ..text.reassembler import reassemble
from ..translation.batcher import RetryPolicy, TranslationBatcher
from ..translation.client import TranslationClient
from .runtime import PipelineRun, PipelineRuntimeMixin, RunState


class TranslationPipeline(PipelineRuntimeMixin):
    """Coordinate translation and caching for opened books."""

    def __init__(
        self,
        store: CacheStore,
        client: TranslationClient,
        book_source: BookSource | None = None,
        config: BookglotConfig | None = None,
        run_logger: RunLogger | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize collaborators and validate configuration."""

        self.store = store
        self.client = client
        self.book_source = book_source if book_source is not None else EpubBookSource()
        self._config = config if config is not None else BookglotConfig()
        self._run_logger = run_logger
        self._sleeper = sleeper
        self._validate_config(self._config)
        self._retry_policy = RetryPolicy(
            max_retries=self._config.max_retries,
            backoff_base_seconds=self._config.retry_backoff_base_seconds,
            backoff_max_seconds=self._config.retry_backoff_max_seconds,
        )
        self._active_runs: list[PipelineRun] = []
        self._runs_lock = threading.Lock()

    def cancel(self) -> None:
        """Cancel every active run; in-flight batches drain, nothing new starts."""

        with self._runs_lock:
            runs = list(self._active_runs)
        for run in runs:
            run.cancel()

    def open_book(self, data: bytes, target_language: str | None = None) -> Iterator[ChapterEvent]:
        """Open ePub bytes and yield one event per chapter as it becomes ready.

        A finalized cache record is served without provider calls. Otherwise the
        record is resumed, pending chapters are translated concurrently, and each
        chapter is reported after its commit. Closing the iterator cancels the run.

        Raises:
            MalformedDocument: If the container cannot be parsed.
            CacheWriteFailure: If a chapter cannot be persisted.
            PositionMismatch: If reassembly hits a structural invariant violation.
            PipelineStageError: With stage `credentials` when the provider rejects or
                lacks an API key; chapters committed earlier stay resumable.
        """

        language = self._resolve_target_language(target_language)
        book = self._run_stage("parse", lambda: self.book_source.parse(data))
        run = PipelineRun(book.identity, language, len(book.chapters))
        self._register(run)
        try:
            record = self._run_stage(
                "cache-check",
                lambda: self.store.lookup(book.identity, language),
                book=book.identity[:12],
                language=language,
            )
            if record is not None and record.is_complete:
                self._log("INFO", "cache_hit", "cache-check", book=book.identity[:12], language=language)
                run.set_state(RunState.SERVING)
                for chapter in book.chapters:
                    run.mark(chapter.index, ChapterStatus.CACHED)
                    yield self._cached_event(record, chapter)
                return

            self._require_credentials(self.client)
            handle = self.store.begin_write(book.identity, language, book)
            try:
                yield from self._translate_book(run, book, handle)
            finally:
                handle.close()
        except GeneratorExit:
            run.cancel()
            if run.state == RunState.TRANSLATING:
                self._log(
                    "WARNING", "cancelled", "translate", book=book.identity[:12], language=language
                )
            raise
        except Exception as exc:
            run.cancel()
            run.set_state(RunState.FAILED)
            self._log(
                "ERROR",
                "run_failed",
                "translate",
                book=book.identity[:12],
                language=language,
                error_type=type(exc).__name__,
            )
            raise
        finally:
            self._unregister(run)

    def _translate_book(
        self, run: PipelineRun, book: ParsedBook, handle: WriteHandle
    ) -> Iterator[ChapterEvent]:
        """Report committed chapters, translate pending ones, and finalize."""

        record = handle.record
        pending: list[ChapterDocument] = []
        for chapter in book.chapters:
            if record.completed[chapter.index]:
                run.mark(chapter.index, ChapterStatus.CACHED)
                yield self._cached_event(record, chapter)
            else:
                pending.append(chapter)

        if pending:
            run.set_state(RunState.TRANSLATING)
            self._log(
                "INFO",
                "start",
                "translate",
                book=book.identity[:12],
                chapters=len(pending),
                language=run.target_language,
            )
            yield from self._translate_chapters(run, handle, pending)
            self._log_run_summary(run)

        if run.cancelled:
            return
        if handle.record.pending_chapters():
            run.set_state(RunState.SERVING)
            self._log(
                "WARNING",
                "record_incomplete",
                "persist",
                book=book.identity[:12],
                pending=len(handle.record.pending_chapters()),
            )
            return
        run.set_state(RunState.PERSISTING)
        self._run_stage("finalize", lambda: self.store.finalize(handle), book=book.identity[:12])
        run.set_state(RunState.SERVING)

    def _translate_chapters(
        self, run: PipelineRun, handle: WriteHandle, chapters: list[ChapterDocument]
    ) -> Iterator[ChapterEvent]:
        """Run chapters on a chapter pool sharing one batch pool; yield per commit."""

        concurrency = self._config.concurrency
        chapter_pool = ThreadPoolExecutor(
            max_workers=min(concurrency, len(chapters)),
            thread_name_prefix="bookglot-chapter",
        )
        batch_pool = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="bookglot-batch")
        batcher = self._batcher(batch_pool)
        futures: list[Future[ChapterEvent | None]] = []
        try:
            futures = [
                chapter_pool.submit(self._process_chapter, run, handle, batcher, chapter)
                for chapter in chapters
            ]
            for future in as_completed(futures):
                event = future.result()
                if event is not None:
                    yield event
        finally:
            if any(not future.done() for future in futures):
                run.cancel()
            chapter_pool.shutdown(wait=True, cancel_futures=True)
            batch_pool.shutdown(wait=True)

    def _batcher(self, batch_pool: ThreadPoolExecutor) -> TranslationBatcher:
        """Create a batcher bound to the shared batch pool."""

        return TranslationBatcher(
            self.client,
            max_batch_chars=self._config.max_batch_chars,
            max_batch_spans=self._config.max_batch_spans,
            retry_policy=self._retry_policy,
            executor=batch_pool,
            sleeper=self._sleeper,
            run_logger=self._run_logger,
        )

    def _process_chapter(
        self,
        run: PipelineRun,
        handle: WriteHandle,
        batcher: TranslationBatcher,
        chapter: ChapterDocument,
    ) -> ChapterEvent | None:
        """Extract, translate, reassemble and commit one chapter.

        Returns `None` when the run was cancelled before the chapter finished.
        """

        if run.cancelled:
            return None
        run.mark(chapter.index, ChapterStatus.IN_FLIGHT)
        try:
            spans = extract_spans(chapter)
        except MalformedDocument as exc:
            run.mark(chapter.index, ChapterStatus.FAILED)
            self._log(
                "ERROR",
                "chapter_failed",
                "extract",
                book=run.book_identity[:12],
                chapter=chapter.index,
                error_type=type(exc).__name__,
            )
            return ChapterEvent(
                book_identity=run.book_identity,
                target_language=run.target_language,
                chapter_index=chapter.index,
                chapter_title=chapter.title,
                status=ChapterStatus.FAILED,
                detail=str(exc),
            )

        outcome = batcher.translate_spans(spans, run.target_language, run.cancel_event)
        if outcome.credential_error is not None:
            run.mark(chapter.index, ChapterStatus.FAILED)
            run.cancel()
            raise PipelineStageError(
                stage="credentials",
                detail=outcome.credential_error,
                hint="Check the API key, then reopen the book to resume untranslated chapters.",
            )
        if outcome.cancelled:
            run.mark(chapter.index, ChapterStatus.PENDING)
            return None

        document = reassemble(chapter, outcome.spans)
        failed = outcome.failed_span_count
        self.store.commit_chapter(
            handle,
            chapter.index,
            document,
            degraded=failed > 0,
            failed_span_count=failed,
        )
        status = ChapterStatus.DEGRADED if failed else ChapterStatus.DONE
        run.mark(chapter.index, status)
        self._log(
            "WARNING" if failed else "INFO",
            "chapter_degraded" if failed else "chapter_committed",
            "persist",
            book=run.book_identity[:12],
            chapter=chapter.index,
            spans=len(spans),
            failed_spans=failed,
            retries=outcome.retry_count,
        )
        return ChapterEvent(
            book_identity=run.book_identity,
            target_language=run.target_language,
            chapter_index=chapter.index,
            chapter_title=chapter.title,
            status=status,
            degraded=failed > 0,
            failed_span_count=failed,
        )

    def translate_chapter(
        self, book_identity: str, chapter_index: int, target_language: str | None = None
    ) -> ChapterEvent:
        """Re-translate one chapter from the cached source snapshot and commit it.

        Raises:
            PipelineStageError: If the book has no source snapshot, the index is unknown,
                or the provider has no usable credentials.
        """

        language = self._resolve_target_language(target_language)
        if not self.store.has_source(book_identity):
            raise PipelineStageError(
                stage="translate-chapter",
                detail=f"Book `{book_identity}` has no cached source snapshot.",
                hint="Open the ePub once with `bookglot open <book.epub>`.",
            )
        book = self.store.load_source_book(book_identity)
        if not 0 <= chapter_index < len(book.chapters):
            raise PipelineStageError(
                stage="translate-chapter",
                detail=(
                    f"Chapter index {chapter_index} is outside 0..{len(book.chapters) - 1} "
                    f"for book `{book_identity}`."
                ),
                hint="Run `bookglot list` to see cached books and their chapter counts.",
            )

        self._require_credentials(self.client)
        run = PipelineRun(book_identity, language, len(book.chapters))
        handle = self.store.begin_write(book_identity, language, book)
        try:
            self._register(run)
            run.set_state(RunState.TRANSLATING)
            with ThreadPoolExecutor(
                max_workers=self._config.concurrency, thread_name_prefix="bookglot-batch"
            ) as batch_pool:
                event = self._process_chapter(
                    run, handle, self._batcher(batch_pool), book.chapters[chapter_index]
                )
            if not handle.record.pending_chapters():
                run.set_state(RunState.PERSISTING)
                self.store.finalize(handle)
            run.set_state(RunState.SERVING)
        except Exception:
            run.set_state(RunState.FAILED)
            raise
        finally:
            handle.close()
            self._unregister(run)

        if event is None:
            raise PipelineStageError(
                stage="translate-chapter",
                detail=f"Translation of chapter {chapter_index} was cancelled.",
            )
        return event

    def list_cached_books(self) -> list[CachedBookEntry]:
        """List cached books, newest first."""

        return self.store.list_cached_books()

    def load_cached_chapter(
        self, book_identity: str, chapter_index: int, target_language: str | None = None
    ) -> str:
        """Return translated chapter XHTML from the cache without network access."""

        language = self._resolve_target_language(target_language)
        return self.store.load_chapter(book_identity, language, chapter_index)

    def delete_cached_book(self, book_identity: str) -> bool:
        """Delete a cached book in every language."""

        removed = self.store.delete_book(book_identity)
        self._log("INFO", "deleted" if removed else "missing", "cache", book=book_identity[:12])
        return removed

    def delete_all_cached_books(self) -> int:
        """Delete every cached book and return the count."""

        removed = self.store.delete_all()
        self._log("INFO", "deleted_all", "cache", books=removed)
        return removed

    @staticmethod
    def _cached_event(record: CacheRecord, chapter: ChapterDocument) -> ChapterEvent:
        """Build the event for a chapter already present in the cache."""

        return ChapterEvent(
            book_identity=record.book_identity,
            target_language=record.target_language,
            chapter_index=chapter.index,
            chapter_title=chapter.title,
            status=ChapterStatus.CACHED,
            degraded=record.degraded[chapter.index],
            failed_span_count=record.failed_span_counts[chapter.index],
        )

    def _log_run_summary(self, run: PipelineRun) -> None:
        """Log how many chapters ended in each status."""

        counts = Counter(status.value for status in run.statuses().values())
        self._log(
            "INFO",
            "run_summary",
            "translate",
            book=run.book_identity[:12],
            **dict(sorted(counts.items())),
        )

    def _register(self, run: PipelineRun) -> None:
        with self._runs_lock:
            self._active_runs.append(run)

    def _unregister(self, run: PipelineRun) -> None:
        with self._runs_lock:
            if run in self._active_runs:
                self._active_runs.remove(run)
