from __future__ import annotations

import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from .errors import StructureError
from .gaiji import GAIJI_FILENAME, GlyphTable, load_glyph_file
from .images import ImageCatalog

CONTAINER_PATH = "META-INF/container.xml"
XHTML_MEDIA_TYPE = "application/xhtml+xml"


@dataclass
class Book:
    source: Path
    documents: list[str]
    images: ImageCatalog
    glyphs: GlyphTable = field(default_factory=GlyphTable)


def open_epub(path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path, "r")
    except FileNotFoundError as exc:
        raise StructureError(f"Input path not found: {path}") from exc
    except (zipfile.BadZipFile, OSError) as exc:
        raise StructureError(f"Not a readable EPUB archive: {path} ({exc})") from exc


def _zip_read_text(zf: zipfile.ZipFile, name: str) -> str:
    raw = _zip_read_bytes(zf, name)
    for enc in ("utf-8", "utf-16", "cp932", "shift_jis", "euc_jp"):
        try:
            return raw.decode(enc)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="ignore")


def _zip_read_bytes(zf: zipfile.ZipFile, name: str) -> bytes:
    try:
        with zf.open(name, "r") as handle:
            return handle.read()
    except KeyError as exc:
        raise StructureError(f"{name} is missing from the EPUB") from exc


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _parse_xml(zf: zipfile.ZipFile, name: str) -> ET.Element:
    text = _zip_read_text(zf, name)
    try:
        return ET.fromstring(text.lstrip("\ufeff"))
    except ET.ParseError as exc:
        raise StructureError(f"{name} is not well-formed XML: {exc}") from exc


def _resolve_relative_path(base_file: str, href: str) -> str:
    base = str(PurePosixPath(base_file).parent)
    if base not in ("", ".", "/"):
        combined = PurePosixPath(base) / href
    else:
        combined = PurePosixPath(href)
    return str(combined.as_posix())


def read_document(zf: zipfile.ZipFile, name: str) -> str:
    return _zip_read_text(zf, name)


def read_member(zf: zipfile.ZipFile, name: str) -> bytes:
    return _zip_read_bytes(zf, name)


def find_package_path(zf: zipfile.ZipFile) -> str:
    # META-INF/container.xml -> rootfiles/rootfile@full-path
    root = _parse_xml(zf, CONTAINER_PATH)
    for elem in root.iter():
        if _strip_tag(elem.tag) != "rootfile":
            continue
        full_path = _get_attr(elem, "full-path")
        if full_path:
            return full_path
    raise StructureError(f"{CONTAINER_PATH} does not declare a rootfile full-path")


def document_paths(zf: zipfile.ZipFile) -> list[str]:
    """XHTML documents in manifest declaration order, as archive member names.

    The spine is deliberately ignored: declaration order is the reading order.
    """
    package_path = find_package_path(zf)
    root = _parse_xml(zf, package_path)
    paths: list[str] = []
    for elem in root.iter():
        if _strip_tag(elem.tag) != "item":
            continue
        if _get_attr(elem, "media-type") != XHTML_MEDIA_TYPE:
            continue
        href = _get_attr(elem, "href")
        if not href:
            continue
        paths.append(_resolve_relative_path(package_path, href))
    if not paths:
        raise StructureError(f"{package_path} lists no {XHTML_MEDIA_TYPE} items")
    return paths


def image_catalog(zf: zipfile.ZipFile) -> ImageCatalog:
    return ImageCatalog.from_members((info.filename, info.file_size) for info in zf.infolist())


def glyph_table(zf: zipfile.ZipFile) -> GlyphTable:
    try:
        zf.getinfo(GAIJI_FILENAME)
    except KeyError:
        return GlyphTable()
    return GlyphTable.from_json(_zip_read_text(zf, GAIJI_FILENAME))


def load_book(path: Path, *, gaiji_path: Path | None = None) -> Book:
    with open_epub(path) as zf:
        documents = document_paths(zf)
        images = image_catalog(zf)
        glyphs = glyph_table(zf)
    if gaiji_path is not None:
        glyphs = glyphs.merged(load_glyph_file(gaiji_path))
    return Book(source=path, documents=documents, images=images, glyphs=glyphs)


__all__ = [
    "Book",
    "CONTAINER_PATH",
    "XHTML_MEDIA_TYPE",
    "open_epub",
    "read_document",
    "read_member",
    "find_package_path",
    "document_paths",
    "image_catalog",
    "glyph_table",
    "load_book",
]
