"""Chapter text extraction and reassembly.

This package walks chapter trees for translatable spans and rebuilds trees
with translated text in place.
"""

from .extractor import DEFAULT_SKIP_TAGS, extract_spans, is_translatable_element
from .reassembler import padded_translation, reassemble

__all__ = [
    "DEFAULT_SKIP_TAGS",
    "extract_spans",
    "is_translatable_element",
    "padded_translation",
    "reassemble",
]
