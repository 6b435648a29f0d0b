"""Unit tests for the Text Unit Extractor."""

from __future__ import annotations

import pytest

from bookglot.errors import MalformedDocument
from bookglot.io.markup import parse_chapter_xhtml
from bookglot.models.datatypes import ChapterDocument, ElementNode, TextLeaf
from bookglot.text.extractor import extract_spans, is_translatable_element


def _chapter(body: str, index: int = 0) -> ChapterDocument:
    """Parse a chapter with the given body markup."""

    data = (
        '<html xmlns="http://www.w3.org/1999/xhtml"><body>' + body + "</body></html>"
    ).encode("utf-8")
    return parse_chapter_xhtml(data, index=index, href="c.xhtml", title="T")


def test_extract_spans_splits_at_inline_markup_boundaries() -> None:
    """Each text leaf between markup boundaries should become its own span."""

    document = _chapter("<p>Hello <em>brave</em> new <a href='#x'>world</a>.</p>")

    spans = extract_spans(document)

    assert [span.original_text for span in spans] == ["Hello ", "brave", " new ", "world", "."]
    assert [span.position for span in spans] == [
        (0, 0, 0),
        (0, 0, 1, 0),
        (0, 0, 2),
        (0, 0, 3, 0),
        (0, 0, 4),
    ]
    assert all(span.chapter_index == 0 for span in spans)
    assert spans[0].request_text == "Hello"


def test_extract_spans_skips_whitespace_and_non_translatable_subtrees() -> None:
    """Code, scripts and `translate="no"` subtrees should never be extracted."""

    document = _chapter(
        "<p>Keep</p>\n  <pre>x = 1</pre><p><code>call()</code> after</p>"
        "<div translate='no'><p>Brand</p></div><script>var a;</script>"
        "<p translate='yes'>Also</p>"
    )

    texts = [span.original_text for span in extract_spans(document)]

    assert texts == ["Keep", " after", "Also"]


def test_is_translatable_element_matches_local_name_case_insensitively() -> None:
    """Skip tags should match namespaced and upper-case tag names."""

    assert is_translatable_element(ElementNode(tag="p")) is True
    assert is_translatable_element(ElementNode(tag="m:MATH")) is False
    assert is_translatable_element(ElementNode(tag="span", attributes=(("translate", " NO "),))) is False


def test_extract_spans_rejects_unknown_node_kinds() -> None:
    """A node outside the closed variant should raise `MalformedDocument`."""

    root = ElementNode(tag="body", children=(TextLeaf("ok"), "raw string"))  # type: ignore[arg-type]
    document = ChapterDocument(index=4, title="Bad", href="bad.xhtml", root=root)

    with pytest.raises(MalformedDocument) as exc_info:
        extract_spans(document)

    assert exc_info.value.chapter_index == 4
