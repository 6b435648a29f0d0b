"""Core datatypes shared across bookglot modules.

Responsibilities:
- Represent immutable records exchanged between pipeline stages.
- Model chapter markup as a closed variant of `ElementNode` and `TextLeaf`.

Key types:
- `ElementNode`, `TextLeaf`, `ChapterDocument`, `BookMeta`, `ParsedBook`,
  `TextSpan`, `TranslationBatch`, `CacheRecord`, `CachedBookEntry`,
  and `ChapterEvent`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


Position = tuple[int, ...]


@dataclass(frozen=True, slots=True)
class TextLeaf:
    """Text content between markup boundaries."""

    text: str


@dataclass(frozen=True, slots=True)
class ElementNode:
    """One markup element.

    Attributes:
        tag: Qualified tag name as written in the source (`p`, `epub:switch`).
        attributes: Ordered `(qualified name, value)` pairs, namespace
            declarations included.
        children: Ordered child nodes.
    """

    tag: str
    attributes: tuple[tuple[str, str], ...] = ()
    children: tuple["Node", ...] = ()

    @property
    def local_name(self) -> str:
        """Return the tag name without namespace prefix, lowercased."""

        return self.tag.rsplit(":", 1)[-1].lower()

    def attribute(self, name: str) -> str | None:
        """Return an attribute value by qualified name."""

        for key, value in self.attributes:
            if key == name:
                return value
        return None


Node = ElementNode | TextLeaf


@dataclass(frozen=True, slots=True)
class ChapterDocument:
    """A chapter's markup tree.

    Attributes:
        index: 0-based chapter index in spine order.
        title: Chapter title or inferred label.
        href: Archive path of the chapter document.
        root: Root element of the chapter tree.
        preamble: XML declaration/doctype text rendered before the root.
    """

    index: int
    title: str
    href: str
    root: ElementNode
    preamble: str = ""


@dataclass(frozen=True, slots=True)
class BookMeta:
    """Metadata describing the source book."""

    title: str
    author: str
    language: str


@dataclass(frozen=True, slots=True)
class ParsedBook:
    """Book Source output: identity, metadata, and ordered chapter documents."""

    identity: str
    meta: BookMeta
    chapters: tuple[ChapterDocument, ...]


@dataclass(frozen=True, slots=True)
class TextSpan:
    """One translatable text leaf and its translation state.

    Attributes:
        chapter_index: 0-based chapter index.
        position: Child-index path from the chapter root to the text leaf.
        original_text: Leaf text exactly as in the source.
        translated_text: Provider translation, or `None` when unresolved/failed.
        error: Failure description when translation failed for this span.
    """

    chapter_index: int
    position: Position
    original_text: str
    translated_text: str | None = None
    error: str | None = None

    @property
    def request_text(self) -> str:
        """Return the text sent to the provider (whitespace padding removed)."""

        return self.original_text.strip()

    @property
    def failed(self) -> bool:
        """Return whether the span will fall back to its original text."""

        return self.error is not None


@dataclass(frozen=True, slots=True)
class TranslationBatch:
    """An ordered group of spans submitted together."""

    batch_index: int
    spans: tuple[TextSpan, ...]

    @property
    def char_count(self) -> int:
        """Return cumulative request character count."""

        return sum(len(span.request_text) for span in self.spans)


class ChapterStatus(str, Enum):
    """Per-chapter state within a pipeline run."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    DEGRADED = "degraded"
    FAILED = "failed"
    CACHED = "cached"


@dataclass(frozen=True, slots=True)
class CacheRecord:
    """Persisted translation state for one (book identity, target language) pair.

    Attributes:
        book_identity: Book fingerprint.
        target_language: Normalized target language code.
        title: Book title.
        author: Book author.
        source_language: Book language declared by the source.
        total_chapters: Number of chapters in the book.
        completed: Completion bitmap, one flag per chapter.
        degraded: Degraded bitmap, one flag per chapter.
        failed_span_counts: Failed span count per chapter.
        created_at: ISO-8601 UTC creation timestamp.
        updated_at: ISO-8601 UTC timestamp of the latest commit.
        finalized: Whether every chapter has been committed and finalized.
    """

    book_identity: str
    target_language: str
    title: str
    author: str
    source_language: str
    total_chapters: int
    completed: tuple[bool, ...]
    degraded: tuple[bool, ...]
    failed_span_counts: tuple[int, ...]
    created_at: str
    updated_at: str
    finalized: bool = False

    @property
    def is_complete(self) -> bool:
        """Return whether the record is fully reconstructable offline."""

        return self.finalized and all(self.completed)

    def pending_chapters(self) -> tuple[int, ...]:
        """Return chapter indices not yet committed."""

        return tuple(index for index, done in enumerate(self.completed) if not done)


@dataclass(frozen=True, slots=True)
class CachedBookEntry:
    """One row of the cached-book listing."""

    book_identity: str
    title: str
    target_language: str
    timestamp: str
    complete: bool
    total_chapters: int
    degraded_chapters: int = 0


@dataclass(frozen=True, slots=True)
class ChapterEvent:
    """Chapter-ready event reported to the caller after a commit or cache read.

    Attributes:
        degraded: Whether the chapter holds original-language fallback text,
            also for chapters served from the cache.
        detail: Failure description for `failed` chapters.
    """

    book_identity: str
    target_language: str
    chapter_index: int
    chapter_title: str
    status: ChapterStatus
    degraded: bool = False
    failed_span_count: int = 0
    detail: str = ""
