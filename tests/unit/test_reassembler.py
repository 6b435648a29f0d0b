"""Unit tests for the Document Reassembler."""

from __future__ import annotations

from dataclasses import replace

import pytest

from bookglot.errors import PositionMismatch
from bookglot.io.markup import parse_chapter_xhtml, render_chapter
from bookglot.models.datatypes import ElementNode, TextSpan
from bookglot.text.extractor import extract_spans
from bookglot.text.reassembler import padded_translation, reassemble
from tests.epub_builder import chapter_xhtml


def _document():  # type: ignore[no-untyped-def]
    source = chapter_xhtml("Heading", "  Hello <em>dear</em> reader.  ", "Second paragraph.")
    return parse_chapter_xhtml(source.encode("utf-8"), index=1, href="ch1.xhtml")


def test_null_translation_round_trip_is_byte_identical() -> None:
    """Spans translated to their own text should reproduce the source exactly."""

    document = _document()
    spans = [
        replace(span, translated_text=span.request_text) for span in extract_spans(document)
    ]

    rebuilt = reassemble(document, spans)

    assert rebuilt == document
    assert render_chapter(rebuilt) == render_chapter(document)


def test_reassemble_replaces_text_and_preserves_markup_and_padding() -> None:
    """Translations should be padded like the original and leave tags untouched."""

    document = _document()
    spans = extract_spans(document)
    translated = [replace(span, translated_text=span.request_text.upper()) for span in spans]

    rendered = render_chapter(reassemble(document, translated))

    assert "<p>  HELLO <em>DEAR</em> READER.  </p>" in rendered
    assert "<title>HEADING</title>" in rendered
    assert rendered.startswith('<?xml version="1.0" encoding="utf-8"?>')


def test_reassemble_keeps_original_text_for_failed_spans_and_shares_subtrees() -> None:
    """Failed spans keep source text; untouched subtrees are shared by identity."""

    document = _document()
    spans = extract_spans(document)
    target = next(span for span in spans if span.original_text == "Second paragraph.")
    resolved = [
        replace(span, translated_text="Druhý odstavec.")
        if span is target
        else replace(span, error="provider failure")
        for span in spans
    ]

    rebuilt = reassemble(document, resolved)

    rendered = render_chapter(rebuilt)
    assert "<p>Druhý odstavec.</p>" in rendered
    assert "  Hello <em>dear</em> reader.  " in rendered
    head_before = document.root.children[0]
    head_after = rebuilt.root.children[0]
    assert isinstance(head_after, ElementNode)
    assert head_after is head_before


def test_reassemble_raises_for_unresolvable_positions() -> None:
    """A position that does not point at a text leaf is an invariant violation."""

    document = _document()

    with pytest.raises(PositionMismatch):
        reassemble(document, [TextSpan(1, (9, 9), "x", translated_text="y")])
    with pytest.raises(PositionMismatch):
        reassemble(document, [TextSpan(1, (0,), "x", translated_text="y")])


def test_reassemble_rejects_spans_from_another_chapter() -> None:
    """Spans must belong to the chapter being reassembled."""

    document = _document()
    span = replace(extract_spans(document)[0], chapter_index=7, translated_text="x")

    with pytest.raises(PositionMismatch, match="chapter 7"):
        reassemble(document, [span])


def test_padded_translation_restores_leading_and_trailing_whitespace() -> None:
    """Provider text is stripped and wrapped in the source padding."""

    span = TextSpan(0, (0,), "\n  Hi there ", translated_text=" Ahoj ")

    assert padded_translation(span) == "\n  Ahoj "
    assert padded_translation(TextSpan(0, (0,), "x")) is None
