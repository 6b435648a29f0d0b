"""Shared typed data models for bookglot.

This package contains dataclasses used across pipeline modules to avoid
cross-module coupling and circular imports.
"""

from .datatypes import (
    BookMeta,
    CachedBookEntry,
    CacheRecord,
    ChapterDocument,
    ChapterEvent,
    ChapterStatus,
    ElementNode,
    Node,
    ParsedBook,
    Position,
    TextLeaf,
    TextSpan,
    TranslationBatch,
)

__all__ = [
    "BookMeta",
    "CachedBookEntry",
    "CacheRecord",
    "ChapterDocument",
    "ChapterEvent",
    "ChapterStatus",
    "ElementNode",
    "Node",
    "ParsedBook",
    "Position",
    "TextLeaf",
    "TextSpan",
    "TranslationBatch",
]
