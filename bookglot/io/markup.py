"""XHTML conversion between lxml trees and the immutable chapter node tree.

Responsibilities:
- Parse chapter XHTML bytes into `ElementNode`/`TextLeaf` trees.
- Render node trees back to deterministic UTF-8 XHTML text.
- Infer chapter titles from document headings.

Comments and processing instructions are dropped on parse; entity references
are expanded to their characters so every text run becomes one `TextLeaf`.
"""

from __future__ import annotations

import html
from typing import Iterable

from lxml import etree

from ..errors import MalformedDocument
from ..models.datatypes import ChapterDocument, ElementNode, Node, TextLeaf


_XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"
_DEFAULT_XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
_TITLE_HEADING_TAGS = ("h1", "h2", "h3")
_VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)


def _parser() -> etree.XMLParser:
    """Create a tolerant XHTML parser that keeps entity references unresolved."""

    return etree.XMLParser(
        recover=True,
        remove_comments=True,
        remove_pis=True,
        resolve_entities=False,
        no_network=True,
        huge_tree=True,
    )


def _qualified_name(clark_name: str, nsmap: dict[str | None, str]) -> str:
    """Convert a Clark-notation name (`{uri}local`) into `prefix:local` form."""

    if not clark_name.startswith("{"):
        return clark_name
    uri, local = clark_name[1:].split("}", 1)
    if uri == _XML_NAMESPACE:
        return f"xml:{local}"
    for prefix, candidate in nsmap.items():
        if candidate == uri and prefix is not None:
            return f"{prefix}:{local}"
    return local


def _element_tag(element: etree._Element) -> str:
    """Return the element's qualified tag name as written in the source."""

    local = etree.QName(element).localname
    if element.prefix:
        return f"{element.prefix}:{local}"
    return local


def _namespace_declarations(
    element: etree._Element,
    parent_nsmap: dict[str | None, str],
) -> list[tuple[str, str]]:
    """Return `xmlns` attributes for namespaces first declared on this element."""

    declarations: list[tuple[str, str]] = []
    for prefix, uri in element.nsmap.items():
        if parent_nsmap.get(prefix) == uri:
            continue
        declarations.append(("xmlns" if prefix is None else f"xmlns:{prefix}", uri))
    return declarations


def _entity_text(entity: etree._Entity) -> str:
    """Expand an unresolved entity reference (`&nbsp;`) to its characters."""

    return html.unescape(f"&{entity.name};")


def _coalesce(children: Iterable[Node]) -> tuple[Node, ...]:
    """Merge adjacent text leaves and drop empty ones."""

    merged: list[Node] = []
    for child in children:
        if isinstance(child, TextLeaf):
            if not child.text:
                continue
            if merged and isinstance(merged[-1], TextLeaf):
                merged[-1] = TextLeaf(merged[-1].text + child.text)
                continue
        merged.append(child)
    return tuple(merged)


def element_to_node(
    element: etree._Element,
    parent_nsmap: dict[str | None, str] | None = None,
) -> ElementNode:
    """Convert an lxml element subtree into an immutable `ElementNode`."""

    nsmap = dict(element.nsmap)
    attributes = _namespace_declarations(element, parent_nsmap or {})
    attributes.extend(
        (_qualified_name(key, nsmap), value) for key, value in element.attrib.items()
    )

    children: list[Node] = []
    if element.text:
        children.append(TextLeaf(element.text))
    for child in element:
        if isinstance(child, etree._Entity):
            children.append(TextLeaf(_entity_text(child)))
        elif isinstance(child.tag, str):
            children.append(element_to_node(child, nsmap))
        if child.tail:
            children.append(TextLeaf(child.tail))

    return ElementNode(
        tag=_element_tag(element),
        attributes=tuple(attributes),
        children=_coalesce(children),
    )


def _preamble(tree: etree._ElementTree) -> str:
    """Build the XML declaration and doctype text rendered before the root."""

    doctype = tree.docinfo.doctype
    if doctype:
        return f"{_DEFAULT_XML_DECLARATION}\n{doctype}\n"
    return f"{_DEFAULT_XML_DECLARATION}\n"


def parse_chapter_xhtml(
    data: bytes,
    *,
    index: int,
    href: str,
    title: str | None = None,
) -> ChapterDocument:
    """Parse one chapter XHTML payload into a `ChapterDocument`.

    Raises:
        MalformedDocument: If the payload has no usable root element.
    """

    try:
        root_element = etree.fromstring(data, parser=_parser())
    except etree.XMLSyntaxError as exc:
        raise MalformedDocument(
            f"Chapter `{href}` is not parseable XHTML: {exc}", chapter_index=index
        ) from exc
    if root_element is None:
        raise MalformedDocument(f"Chapter `{href}` has no root element.", chapter_index=index)

    root = element_to_node(root_element)
    return ChapterDocument(
        index=index,
        title=title or infer_chapter_title(root) or f"Chapter {index + 1}",
        href=href,
        root=root,
        preamble=_preamble(root_element.getroottree()),
    )


def _iter_text(node: Node) -> Iterable[str]:
    """Yield text leaves of a subtree in reading order."""

    if isinstance(node, TextLeaf):
        yield node.text
        return
    for child in node.children:
        yield from _iter_text(child)


def _find_first(node: ElementNode, local_names: tuple[str, ...]) -> ElementNode | None:
    """Return the first descendant (pre-order) whose local name matches."""

    if node.local_name in local_names:
        return node
    for child in node.children:
        if isinstance(child, ElementNode):
            found = _find_first(child, local_names)
            if found is not None:
                return found
    return None


def infer_chapter_title(root: ElementNode) -> str | None:
    """Infer a chapter title from `<title>` or the first heading element."""

    for local_names in (("title",), _TITLE_HEADING_TAGS):
        element = _find_first(root, local_names)
        if element is None:
            continue
        text = " ".join("".join(_iter_text(element)).split())
        if text:
            return text
    return None


def _escape_text(text: str) -> str:
    """Escape character data for XHTML output."""

    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _escape_attribute(value: str) -> str:
    """Escape attribute values for double-quoted XHTML output."""

    return _escape_text(value).replace('"', "&quot;")


def _render_node(node: Node, parts: list[str]) -> None:
    """Append the serialized form of one node to `parts`."""

    if isinstance(node, TextLeaf):
        parts.append(_escape_text(node.text))
        return
    attributes = "".join(
        f' {name}="{_escape_attribute(value)}"' for name, value in node.attributes
    )
    if not node.children and node.local_name in _VOID_ELEMENTS:
        parts.append(f"<{node.tag}{attributes}/>")
        return
    parts.append(f"<{node.tag}{attributes}>")
    for child in node.children:
        _render_node(child, parts)
    parts.append(f"</{node.tag}>")


def render_node(node: Node) -> str:
    """Serialize a node subtree to XHTML text."""

    parts: list[str] = []
    _render_node(node, parts)
    return "".join(parts)


def render_chapter(document: ChapterDocument) -> str:
    """Serialize a chapter document, preamble included, to XHTML text."""

    return f"{document.preamble}{render_node(document.root)}"
