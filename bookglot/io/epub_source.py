"""ePub Book Source: turn raw ePub bytes into ordered chapter documents.

Responsibilities:
- Compute the content fingerprint used as Book Identity.
- Resolve the OPF package document through `META-INF/container.xml`.
- Read OPF metadata and spine order, parsing each XHTML spine item.
"""

from __future__ import annotations

from hashlib import sha256
import io
import posixpath
from typing import Protocol
from urllib.parse import unquote
import zipfile

from lxml import etree

from ..errors import MalformedDocument
from ..models.datatypes import BookMeta, ChapterDocument, ParsedBook
from .markup import parse_chapter_xhtml


NAMESPACES = {
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
}
_CHAPTER_MEDIA_TYPES = frozenset({"application/xhtml+xml", "text/html"})
_DEFAULT_TITLE = "Unknown Title"
_DEFAULT_AUTHOR = "Unknown Author"
_DEFAULT_LANGUAGE = "en"


class BookSource(Protocol):
    """Protocol for book container parsers."""

    def parse(self, data: bytes) -> ParsedBook:
        """Parse raw book bytes into identity, metadata, and chapter documents."""


def book_fingerprint(data: bytes) -> str:
    """Return the stable content fingerprint for raw book bytes."""

    return sha256(data).hexdigest()


class EpubBookSource:
    """Parse ePub archives held in memory."""

    def parse(self, data: bytes) -> ParsedBook:
        """Parse ePub bytes into a `ParsedBook`.

        Raises:
            MalformedDocument: If the archive, OPF, or any spine document is unusable.
        """

        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            raise MalformedDocument("Input is not a valid ePub (ZIP) archive.") from exc

        with archive:
            opf_path = self._find_opf_path(archive)
            opf_root = self._parse_xml(archive, opf_path)
            meta = self._read_meta(opf_root)
            chapters = tuple(
                self._read_chapter(archive, href, index)
                for index, href in enumerate(self._spine_hrefs(opf_root, opf_path))
            )

        if not chapters:
            raise MalformedDocument("ePub spine contains no XHTML chapter documents.")
        return ParsedBook(identity=book_fingerprint(data), meta=meta, chapters=chapters)

    @staticmethod
    def _read_member(archive: zipfile.ZipFile, path: str) -> bytes:
        """Read one archive member and map missing entries to `MalformedDocument`."""

        try:
            return archive.read(path)
        except KeyError as exc:
            raise MalformedDocument(f"ePub archive is missing `{path}`.") from exc

    def _parse_xml(self, archive: zipfile.ZipFile, path: str) -> etree._Element:
        """Parse an XML archive member without network or entity expansion."""

        parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=True)
        try:
            root = etree.fromstring(self._read_member(archive, path), parser=parser)
        except etree.XMLSyntaxError as exc:
            raise MalformedDocument(f"ePub member `{path}` is not valid XML: {exc}") from exc
        if root is None:
            raise MalformedDocument(f"ePub member `{path}` is empty.")
        return root

    def _find_opf_path(self, archive: zipfile.ZipFile) -> str:
        """Resolve the OPF package path from the container document."""

        container = self._parse_xml(archive, "META-INF/container.xml")
        rootfile = container.find(".//container:rootfile", namespaces=NAMESPACES)
        full_path = rootfile.get("full-path") if rootfile is not None else None
        if not full_path:
            raise MalformedDocument("ePub container.xml does not declare a rootfile.")
        return full_path

    @staticmethod
    def _metadata_text(opf_root: etree._Element, name: str, default: str) -> str:
        """Read one Dublin Core metadata value with a default."""

        element = opf_root.find(f".//opf:metadata/dc:{name}", namespaces=NAMESPACES)
        if element is None or not element.text or not element.text.strip():
            return default
        return element.text.strip()

    def _read_meta(self, opf_root: etree._Element) -> BookMeta:
        """Read title, author, and language from OPF metadata."""

        return BookMeta(
            title=self._metadata_text(opf_root, "title", _DEFAULT_TITLE),
            author=self._metadata_text(opf_root, "creator", _DEFAULT_AUTHOR),
            language=self._metadata_text(opf_root, "language", _DEFAULT_LANGUAGE),
        )

    @staticmethod
    def _spine_hrefs(opf_root: etree._Element, opf_path: str) -> list[str]:
        """Return archive paths of XHTML spine items in reading order."""

        manifest = opf_root.find(".//opf:manifest", namespaces=NAMESPACES)
        spine = opf_root.find(".//opf:spine", namespaces=NAMESPACES)
        if manifest is None or spine is None:
            raise MalformedDocument("ePub package document has no manifest or spine.")

        id_to_href = {
            item.get("id"): item.get("href")
            for item in manifest.findall("opf:item", namespaces=NAMESPACES)
            if item.get("id")
            and item.get("href")
            and item.get("media-type") in _CHAPTER_MEDIA_TYPES
        }
        opf_dir = posixpath.dirname(opf_path)
        hrefs: list[str] = []
        for itemref in spine.findall("opf:itemref", namespaces=NAMESPACES):
            href = id_to_href.get(itemref.get("idref"))
            if href is None:
                continue
            hrefs.append(posixpath.normpath(posixpath.join(opf_dir, unquote(href))))
        return hrefs

    def _read_chapter(self, archive: zipfile.ZipFile, href: str, index: int) -> ChapterDocument:
        """Parse one spine item into a chapter document."""

        return parse_chapter_xhtml(self._read_member(archive, href), index=index, href=href)
