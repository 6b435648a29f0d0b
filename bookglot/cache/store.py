"""Cache Store for translated books.

Responsibilities:
- Persist translated chapters and per-record metadata under the book identity.
- Keep a source snapshot per book so chapters can be re-translated offline.
- Serialize writers per (book identity, target language) key, across threads and
  processes.
- Discover cached books from the directory layout alone.

On-disk layout below the cache root::

    books/<identity>/source/meta.json
    books/<identity>/source/chapters/0000.xhtml
    books/<identity>/<language>/meta.json
    books/<identity>/<language>/chapters/0000.xhtml

A chapter file is written before the metadata that marks it complete, and both
writes are atomic renames, so a crash between them leaves the chapter absent
rather than corrupted.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
import threading
from typing import Any, Callable, Iterator

import filelock

from ..errors import CacheWriteFailure, PipelineStageError
from ..io.markup import parse_chapter_xhtml, render_chapter
from ..io.storage import ArtifactStore
from ..models.datatypes import (
    BookMeta,
    CachedBookEntry,
    CacheRecord,
    ChapterDocument,
    ParsedBook,
)
from ..parsing import normalize_optional_string
from ..telemetry.logger import RunLogger


_SCHEMA_VERSION = 1
_SOURCE_DIR = "source"
_META_FILE = "meta.json"
_LOCK_FILE = ".lock"


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def chapter_file_name(index: int) -> str:
    """Return the file name used for a chapter index."""

    return f"{index:04d}.xhtml"


class WriteHandle:
    """Open writer for one cache record, holding the per-key writer locks."""

    def __init__(
        self,
        record: CacheRecord,
        key_lock: threading.Lock,
        file_lock: filelock.BaseFileLock | None = None,
    ) -> None:
        """Initialize the handle with the record state loaded at `begin_write`."""

        self._record = record
        self._key_lock = key_lock
        self._file_lock = file_lock
        self._commit_lock = threading.Lock()
        self._open = True

    @property
    def record(self) -> CacheRecord:
        """Return the latest committed record state."""

        return self._record

    @property
    def book_identity(self) -> str:
        """Return the book identity this handle writes."""

        return self._record.book_identity

    @property
    def target_language(self) -> str:
        """Return the target language this handle writes."""

        return self._record.target_language

    @property
    def is_open(self) -> bool:
        """Return whether commits are still accepted."""

        return self._open

    def close(self) -> None:
        """Release the writer lock; committed chapters stay on disk."""

        if self._open:
            self._open = False
            if self._file_lock is not None:
                self._file_lock.release()
            self._key_lock.release()

    def __enter__(self) -> "WriteHandle":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class CacheStore:
    """Filesystem cache of translated books keyed by book identity and language."""

    def __init__(
        self,
        root: Path,
        clock: Callable[[], str] = utc_timestamp,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize the store under an already-resolved cache root directory."""

        self.root = root
        self._artifacts = ArtifactStore(root / "books")
        self._clock = clock
        self._run_logger = run_logger
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @staticmethod
    def _record_dir(book_identity: str, target_language: str) -> Path:
        """Return the record directory relative to the books root."""

        return Path(book_identity) / target_language

    @staticmethod
    def _source_dir(book_identity: str) -> Path:
        """Return the source snapshot directory relative to the books root."""

        return Path(book_identity) / _SOURCE_DIR

    def _key_lock(self, book_identity: str, target_language: str) -> threading.Lock:
        """Return the in-process writer lock for one record key."""

        with self._registry_lock:
            return self._key_locks.setdefault((book_identity, target_language), threading.Lock())

    def _file_lock(self, book_identity: str, target_language: str) -> filelock.FileLock:
        """Return the cross-process writer lock stored inside the record directory."""

        record_dir = self._artifacts.root / self._record_dir(book_identity, target_language)
        try:
            record_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheWriteFailure(
                f"Failed to create cache directory for `{book_identity}`: {exc}"
            ) from exc
        return filelock.FileLock(str(record_dir / _LOCK_FILE))

    def _read_json(self, relative_path: Path) -> dict[str, Any] | None:
        """Read a metadata JSON object, returning `None` when absent."""

        if not self._artifacts.exists(relative_path):
            return None
        try:
            payload = self._artifacts.load_json(relative_path)
        except ValueError as exc:
            raise PipelineStageError(
                stage="cache-read",
                detail=f"Cache metadata is not valid JSON: {self._artifacts.root / relative_path}",
                hint="Delete the cached book with `bookglot delete <identity>` and reopen it.",
            ) from exc
        if not isinstance(payload, dict):
            raise PipelineStageError(
                stage="cache-read",
                detail=f"Cache metadata root must be an object: {self._artifacts.root / relative_path}",
                hint="Delete the cached book with `bookglot delete <identity>` and reopen it.",
            )
        return payload

    @staticmethod
    def _record_from_payload(payload: dict[str, Any]) -> CacheRecord:
        """Build a `CacheRecord` from a metadata payload."""

        chapters = sorted(payload.get("chapters", []), key=lambda item: int(item["index"]))
        return CacheRecord(
            book_identity=str(payload["book_identity"]),
            target_language=str(payload["target_language"]),
            title=str(payload.get("title", "")),
            author=str(payload.get("author", "")),
            source_language=str(payload.get("source_language", "")),
            total_chapters=int(payload["total_chapters"]),
            completed=tuple(bool(item.get("completed")) for item in chapters),
            degraded=tuple(bool(item.get("degraded")) for item in chapters),
            failed_span_counts=tuple(int(item.get("failed_span_count", 0)) for item in chapters),
            created_at=str(payload.get("created_at", "")),
            updated_at=str(payload.get("updated_at", "")),
            finalized=bool(payload.get("finalized", False)),
        )

    @staticmethod
    def _payload_from_record(record: CacheRecord) -> dict[str, object]:
        """Serialize a `CacheRecord` into its metadata payload."""

        return {
            "schema_version": _SCHEMA_VERSION,
            "book_identity": record.book_identity,
            "target_language": record.target_language,
            "title": record.title,
            "author": record.author,
            "source_language": record.source_language,
            "total_chapters": record.total_chapters,
            "chapters": [
                {
                    "index": index,
                    "completed": record.completed[index],
                    "degraded": record.degraded[index],
                    "failed_span_count": record.failed_span_counts[index],
                    "file": f"chapters/{chapter_file_name(index)}",
                }
                for index in range(record.total_chapters)
            ],
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "finalized": record.finalized,
        }

    def lookup(self, book_identity: str, target_language: str) -> CacheRecord | None:
        """Return the stored record for a key, or `None`. Never touches the network."""

        payload = self._read_json(self._record_dir(book_identity, target_language) / _META_FILE)
        if payload is None:
            return None
        try:
            return self._record_from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise PipelineStageError(
                stage="cache-read",
                detail=f"Cache metadata for `{book_identity}` ({target_language}) is incomplete.",
                hint="Delete the cached book with `bookglot delete <identity>` and reopen it.",
            ) from exc

    def begin_write(self, book_identity: str, target_language: str, book: ParsedBook) -> WriteHandle:
        """Open a writer for a record, resuming from an existing partial bitmap.

        Blocks while another run, in this process or another one, holds the
        writer for the same key.

        Raises:
            CacheWriteFailure: If the source snapshot or metadata cannot be written.
        """

        key_lock = self._key_lock(book_identity, target_language)
        key_lock.acquire()
        file_lock: filelock.FileLock | None = None
        try:
            file_lock = self._file_lock(book_identity, target_language)
            file_lock.acquire()
            self._ensure_source_snapshot(book)
            total = len(book.chapters)
            record = self.lookup(book_identity, target_language)
            if record is None or record.total_chapters != total:
                now = self._clock()
                record = CacheRecord(
                    book_identity=book_identity,
                    target_language=target_language,
                    title=book.meta.title,
                    author=book.meta.author,
                    source_language=book.meta.language,
                    total_chapters=total,
                    completed=(False,) * total,
                    degraded=(False,) * total,
                    failed_span_counts=(0,) * total,
                    created_at=now,
                    updated_at=now,
                )
                self._write_meta(record)
        except BaseException:
            if file_lock is not None and file_lock.is_locked:
                file_lock.release()
            key_lock.release()
            raise
        return WriteHandle(record, key_lock, file_lock)

    def commit_chapter(
        self,
        handle: WriteHandle,
        chapter_index: int,
        document: ChapterDocument,
        *,
        degraded: bool = False,
        failed_span_count: int = 0,
    ) -> CacheRecord:
        """Durably persist one chapter and mark it complete in the bitmap.

        Raises:
            CacheWriteFailure: If the handle is closed or the write fails.
        """

        if not handle.is_open:
            raise CacheWriteFailure(
                f"Write handle for `{handle.book_identity}` ({handle.target_language}) is closed."
            )
        if not 0 <= chapter_index < handle.record.total_chapters:
            raise CacheWriteFailure(
                f"Chapter index {chapter_index} is outside 0..{handle.record.total_chapters - 1}."
            )

        with handle._commit_lock:
            record_dir = self._record_dir(handle.book_identity, handle.target_language)
            try:
                self._artifacts.save_text(
                    record_dir / "chapters" / chapter_file_name(chapter_index),
                    render_chapter(document),
                )
            except OSError as exc:
                raise CacheWriteFailure(
                    f"Failed to write chapter {chapter_index} for `{handle.book_identity}`: {exc}"
                ) from exc

            current = self._current_record(handle)
            record = replace(
                current,
                completed=_set_flag(current.completed, chapter_index, True),
                degraded=_set_flag(current.degraded, chapter_index, degraded),
                failed_span_counts=_set_value(
                    current.failed_span_counts, chapter_index, failed_span_count
                ),
                updated_at=self._clock(),
                finalized=False,
            )
            self._write_meta(record)
            handle._record = record
            return record

    def _current_record(self, handle: WriteHandle) -> CacheRecord:
        """Return the on-disk record when it matches the handle's chapter count."""

        on_disk = self.lookup(handle.book_identity, handle.target_language)
        if on_disk is None or on_disk.total_chapters != handle.record.total_chapters:
            return handle.record
        return on_disk

    def finalize(self, handle: WriteHandle) -> CacheRecord:
        """Mark a record complete once every chapter is committed, then release it.

        Raises:
            CacheWriteFailure: If chapters are still pending or the write fails.
        """

        with handle._commit_lock:
            record = handle.record
            pending = record.pending_chapters()
            if pending:
                raise CacheWriteFailure(
                    f"Cannot finalize `{record.book_identity}` ({record.target_language}); "
                    f"pending chapters: {', '.join(str(index) for index in pending)}."
                )
            if not record.finalized:
                record = replace(record, finalized=True, updated_at=self._clock())
                self._write_meta(record)
                handle._record = record
        handle.close()
        return record

    def _write_meta(self, record: CacheRecord) -> None:
        """Atomically write a record's metadata."""

        path = self._record_dir(record.book_identity, record.target_language) / _META_FILE
        try:
            self._artifacts.save_json(path, self._payload_from_record(record))
        except OSError as exc:
            raise CacheWriteFailure(
                f"Failed to write cache metadata for `{record.book_identity}`: {exc}"
            ) from exc

    def _ensure_source_snapshot(self, book: ParsedBook) -> None:
        """Write the original chapters once per book; metadata is written last."""

        source_dir = self._source_dir(book.identity)
        if self._artifacts.exists(source_dir / _META_FILE):
            return
        try:
            for chapter in book.chapters:
                self._artifacts.save_text(
                    source_dir / "chapters" / chapter_file_name(chapter.index),
                    render_chapter(chapter),
                )
            self._artifacts.save_json(
                source_dir / _META_FILE,
                {
                    "schema_version": _SCHEMA_VERSION,
                    "book_identity": book.identity,
                    "title": book.meta.title,
                    "author": book.meta.author,
                    "language": book.meta.language,
                    "chapters": [
                        {
                            "index": chapter.index,
                            "title": chapter.title,
                            "href": chapter.href,
                            "file": f"chapters/{chapter_file_name(chapter.index)}",
                        }
                        for chapter in book.chapters
                    ],
                },
            )
        except OSError as exc:
            raise CacheWriteFailure(
                f"Failed to write source snapshot for `{book.identity}`: {exc}"
            ) from exc

    def has_source(self, book_identity: str) -> bool:
        """Return whether a source snapshot exists for a book."""

        return self._artifacts.exists(self._source_dir(book_identity) / _META_FILE)

    def load_source_book(self, book_identity: str) -> ParsedBook:
        """Rebuild a `ParsedBook` from the stored source snapshot."""

        payload = self._read_json(self._source_dir(book_identity) / _META_FILE)
        if payload is None:
            raise PipelineStageError(
                stage="cache-read",
                detail=f"No cached source snapshot for book `{book_identity}`.",
                hint="Open the ePub once with `bookglot open <book.epub>`.",
            )
        chapters = tuple(
            self._load_source_chapter_entry(book_identity, entry)
            for entry in sorted(payload.get("chapters", []), key=lambda item: int(item["index"]))
        )
        return ParsedBook(
            identity=book_identity,
            meta=BookMeta(
                title=str(payload.get("title", "")),
                author=str(payload.get("author", "")),
                language=str(payload.get("language", "")),
            ),
            chapters=chapters,
        )

    def load_source_chapter(self, book_identity: str, chapter_index: int) -> ChapterDocument:
        """Return one original chapter from the source snapshot."""

        payload = self._read_json(self._source_dir(book_identity) / _META_FILE)
        entries = [] if payload is None else payload.get("chapters", [])
        for entry in entries:
            if int(entry["index"]) == chapter_index:
                return self._load_source_chapter_entry(book_identity, entry)
        raise PipelineStageError(
            stage="cache-read",
            detail=f"No cached source chapter {chapter_index} for book `{book_identity}`.",
            hint="Run `bookglot list` to see cached books and their chapter counts.",
        )

    def _load_source_chapter_entry(
        self, book_identity: str, entry: dict[str, Any]
    ) -> ChapterDocument:
        """Parse one source snapshot chapter."""

        index = int(entry["index"])
        relative = self._source_dir(book_identity) / "chapters" / chapter_file_name(index)
        return parse_chapter_xhtml(
            self._artifacts.load_text(relative).encode("utf-8"),
            index=index,
            href=str(entry.get("href", "")),
            title=normalize_optional_string(entry.get("title")),
        )

    def load_chapter(self, book_identity: str, target_language: str, chapter_index: int) -> str:
        """Return committed translated chapter XHTML; offline only.

        Raises:
            PipelineStageError: If the chapter has not been committed.
        """

        record = self.lookup(book_identity, target_language)
        if (
            record is None
            or not 0 <= chapter_index < record.total_chapters
            or not record.completed[chapter_index]
        ):
            raise PipelineStageError(
                stage="cache-read",
                detail=(
                    f"Chapter {chapter_index} of `{book_identity}` ({target_language}) "
                    "is not in the cache."
                ),
                hint="Open the book again to translate missing chapters.",
            )
        return self._artifacts.load_text(
            self._record_dir(book_identity, target_language)
            / "chapters"
            / chapter_file_name(chapter_index)
        )

    def _iter_records(self) -> Iterator[CacheRecord]:
        """Yield every readable record below the books root, skipping corrupt ones."""

        books_root = self._artifacts.root
        if not books_root.is_dir():
            return
        for meta_path in sorted(books_root.glob(f"*/*/{_META_FILE}")):
            if meta_path.parent.name == _SOURCE_DIR:
                continue
            book_identity = meta_path.parent.parent.name
            try:
                record = self.lookup(book_identity, meta_path.parent.name)
            except PipelineStageError as exc:
                if self._run_logger is not None:
                    self._run_logger.log_event(
                        "WARNING",
                        "corrupt_record",
                        exc.stage,
                        book=book_identity[:12],
                        language=meta_path.parent.name,
                    )
                continue
            if record is not None:
                yield record

    def has_book(self, book_identity: str) -> bool:
        """Return whether a directory for the exact book identity exists."""

        if not book_identity or Path(book_identity).name != book_identity or book_identity == "..":
            return False
        return self._artifacts.exists(Path(book_identity))

    def list_cached_books(self) -> list[CachedBookEntry]:
        """List cached (book, language) records, newest first."""

        entries = [
            CachedBookEntry(
                book_identity=record.book_identity,
                title=record.title,
                target_language=record.target_language,
                timestamp=record.updated_at,
                complete=record.is_complete,
                total_chapters=record.total_chapters,
                degraded_chapters=sum(1 for flag in record.degraded if flag),
            )
            for record in self._iter_records()
        ]
        return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)

    def delete_book(self, book_identity: str) -> bool:
        """Delete every record and the source snapshot of a book."""

        return self._artifacts.remove_tree(Path(book_identity))

    def delete_all(self) -> int:
        """Delete every cached book and return how many were removed."""

        books_root = self._artifacts.root
        if not books_root.is_dir():
            return 0
        removed = 0
        for book_dir in sorted(path for path in books_root.iterdir() if path.is_dir()):
            if self.delete_book(book_dir.name):
                removed += 1
        return removed


def _set_flag(flags: tuple[bool, ...], index: int, value: bool) -> tuple[bool, ...]:
    """Return a copy of a bitmap with one flag set."""

    return flags[:index] + (value,) + flags[index + 1 :]


def _set_value(values: tuple[int, ...], index: int, value: int) -> tuple[int, ...]:
    """Return a copy of a count tuple with one value replaced."""

    return values[:index] + (value,) + values[index + 1 :]
