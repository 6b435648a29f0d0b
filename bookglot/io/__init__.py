"""Input/output components for bookglot.

This package contains the ePub Book Source, XHTML tree conversion, and the
atomic artifact storage used by the cache store.
"""

from .epub_source import BookSource, EpubBookSource, book_fingerprint
from .markup import parse_chapter_xhtml, render_chapter, render_node
from .storage import ArtifactStore

__all__ = [
    "ArtifactStore",
    "BookSource",
    "EpubBookSource",
    "book_fingerprint",
    "parse_chapter_xhtml",
    "render_chapter",
    "render_node",
]
