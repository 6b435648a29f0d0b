"""Text Unit Extractor.

Responsibilities:
- Walk a chapter tree in reading order and emit one `TextSpan` per visible
  text leaf.
- Skip subtrees that must not be translated (code, preformatted text, scripts,
  and elements marked `translate="no"`).

Inline markup is never merged into a span: text on each side of an `<em>` or
`<a>` boundary becomes a separate span so reinsertion cannot disturb markup.
"""

from __future__ import annotations

from ..errors import MalformedDocument
from ..models.datatypes import ChapterDocument, ElementNode, Position, TextLeaf, TextSpan


DEFAULT_SKIP_TAGS = frozenset(
    {"pre", "code", "kbd", "samp", "var", "script", "style", "math", "svg"}
)


def is_translatable_element(
    element: ElementNode, skip_tags: frozenset[str] = DEFAULT_SKIP_TAGS
) -> bool:
    """Return whether text inside `element` may be sent for translation."""

    if element.local_name in skip_tags:
        return False
    marker = element.attribute("translate")
    return marker is None or marker.strip().lower() != "no"


def extract_spans(
    document: ChapterDocument,
    skip_tags: frozenset[str] = DEFAULT_SKIP_TAGS,
) -> list[TextSpan]:
    """Return translatable spans of a chapter in document reading order.

    Raises:
        MalformedDocument: If the tree holds a node that is neither an element
            nor a text leaf.
    """

    spans: list[TextSpan] = []
    _visit(document.root, (), document.index, skip_tags, spans)
    return spans


def _visit(
    node: object,
    position: Position,
    chapter_index: int,
    skip_tags: frozenset[str],
    spans: list[TextSpan],
) -> None:
    """Depth-first visit over the closed node variant."""

    if isinstance(node, TextLeaf):
        if node.text.strip():
            spans.append(
                TextSpan(chapter_index=chapter_index, position=position, original_text=node.text)
            )
        return
    if not isinstance(node, ElementNode):
        raise MalformedDocument(
            f"Chapter {chapter_index} has an unsupported node at position {position}: "
            f"{type(node).__name__}.",
            chapter_index=chapter_index,
        )
    if not is_translatable_element(node, skip_tags):
        return
    for child_index, child in enumerate(node.children):
        _visit(child, position + (child_index,), chapter_index, skip_tags, spans)
