"""Document Reassembler.

Responsibilities:
- Reinsert translated span text into a structural copy of a chapter tree.
- Keep original text for spans that failed or were never translated.
- Share every untouched subtree with the source tree.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from ..errors import PositionMismatch
from ..models.datatypes import ChapterDocument, ElementNode, Node, Position, TextLeaf, TextSpan


def padded_translation(span: TextSpan) -> str | None:
    """Return the span translation wrapped in the original leading/trailing whitespace."""

    if span.translated_text is None:
        return None
    original = span.original_text
    leading = original[: len(original) - len(original.lstrip())]
    trailing = original[len(original.rstrip()) :]
    return f"{leading}{span.translated_text.strip()}{trailing}"


def _resolve_leaf(root: ElementNode, position: Position) -> TextLeaf:
    """Return the text leaf at `position` or raise `PositionMismatch`."""

    node: Node = root
    for depth, child_index in enumerate(position):
        if not isinstance(node, ElementNode) or not 0 <= child_index < len(node.children):
            raise PositionMismatch(
                f"Span position {position} does not resolve at depth {depth}.",
                position=position,
            )
        node = node.children[child_index]
    if not isinstance(node, TextLeaf):
        raise PositionMismatch(
            f"Span position {position} resolves to an element, not text.",
            position=position,
        )
    return node


def _rebuild(node: ElementNode, replacements: dict[Position, str], prefix: Position) -> ElementNode:
    """Return `node` with replaced leaves, rebuilding only the affected paths."""

    depth = len(prefix)
    touched = {position[depth] for position in replacements if position[:depth] == prefix}
    if not touched:
        return node

    children: list[Node] = list(node.children)
    for child_index in touched:
        child = children[child_index]
        child_position = prefix + (child_index,)
        if isinstance(child, TextLeaf):
            children[child_index] = TextLeaf(replacements[child_position])
        else:
            children[child_index] = _rebuild(child, replacements, child_position)
    return replace(node, children=tuple(children))


def reassemble(document: ChapterDocument, spans: Iterable[TextSpan]) -> ChapterDocument:
    """Return a new chapter document with translated text inserted.

    Raises:
        PositionMismatch: If a span belongs to another chapter or its position
            does not resolve to a text leaf of this document.
    """

    replacements: dict[Position, str] = {}
    for span in spans:
        if span.chapter_index != document.index:
            raise PositionMismatch(
                f"Span for chapter {span.chapter_index} passed to chapter {document.index}.",
                position=span.position,
            )
        leaf = _resolve_leaf(document.root, span.position)
        text = padded_translation(span)
        if text is not None and text != leaf.text:
            replacements[span.position] = text

    if not replacements:
        return document
    return replace(document, root=_rebuild(document.root, replacements, ()))
