"""Top-level package for bookglot.

This package translates the text of ePub books into a target language and
keeps the results in a local cache keyed by book content, so reopening a book
is instant and offline. The main orchestration entry point is
`TranslationPipeline`.
"""

from .pipeline import TranslationPipeline

__all__ = ["TranslationPipeline", "__version__"]

__version__ = "0.1.0"
