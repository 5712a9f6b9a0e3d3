from __future__ import annotations

import re
import warnings
from dataclasses import dataclass, field
from html.entities import html5
from typing import Iterable, Iterator, Mapping

from bs4 import BeautifulSoup, FeatureNotFound, NavigableString, Tag, XMLParsedAsHTMLWarning  # type: ignore
from bs4.element import CData, PreformattedString

from .errors import MarkupError, UnresolvedGlyphError, UnresolvedImageError
from .gaiji import GlyphTable
from .images import ImageCatalog
from .model import FLAG_BOLD, FLAG_LARGE, ImageParagraph, Paragraph, Ruby, TextParagraph, utf16_len

GAIJI_CLASS = "gaiji"
_FONT_SIZE_PREFIX = "font-1"
_FONT_EM_UNIT = "font-1em"


# ---------- structural events ----------


@dataclass(frozen=True)
class StartTag:
    name: str
    attrs: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EndTag:
    name: str


@dataclass(frozen=True)
class Text:
    data: str


MarkupEvent = StartTag | EndTag | Text


def _local_name(name: str) -> str:
    return name.rsplit(":", 1)[-1]


def _attr_text(value: object) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(part) for part in value)
    return str(value)


_XML_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})
_NAMED_ENTITY_PATTERN = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")


def _escape_xml_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def _replace_named_entity(match: re.Match[str]) -> str:
    name = match.group(1)
    if name in _XML_ENTITIES:
        return match.group(0)
    replacement = html5.get(f"{name};")
    if replacement is None:
        # Unknown entities are kept as literal text.
        return _escape_xml_text(match.group(0))
    return _escape_xml_text(replacement)


def _resolve_html_entities(markup: str) -> str:
    """
    Rewrite HTML named entities (``&nbsp;``, ``&hellip;``...) for the XML builder.

    lxml recovers from an undeclared entity by discarding every entity
    reference that follows it in the document, ``&amp;`` included.
    """
    return _NAMED_ENTITY_PATTERN.sub(_replace_named_entity, markup)


def _soup_from_markup(markup: str) -> BeautifulSoup:
    stripped = markup.lstrip()
    lower_head = stripped[:200].lower()
    xmlish = stripped.startswith("<?xml") or ("<html" in lower_head and "xmlns" in lower_head)

    if xmlish:
        try:
            return BeautifulSoup(_resolve_html_entities(markup), "lxml-xml", multi_valued_attributes=None)
        except FeatureNotFound:
            pass

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
        return BeautifulSoup(markup, "html.parser", multi_valued_attributes=None)


def iter_events(markup: str) -> Iterator[MarkupEvent]:
    """
    Flatten one document into start/end/text events in document order.

    Unclosed elements are closed by the tree builder, so every StartTag is
    matched by an EndTag. Comments, doctypes and processing instructions are
    dropped.
    """
    soup = _soup_from_markup(markup)
    stack: list[Iterator[object]] = [iter(soup.children)]
    open_names: list[str] = []
    while stack:
        try:
            node = next(stack[-1])
        except StopIteration:
            stack.pop()
            if open_names:
                yield EndTag(open_names.pop())
            continue
        if isinstance(node, Tag):
            name = _local_name(node.name)
            attrs: dict[str, str] = {}
            for key, value in node.attrs.items():
                attrs.setdefault(_local_name(str(key)), _attr_text(value))
            yield StartTag(name, attrs)
            open_names.append(name)
            stack.append(iter(node.children))
        elif isinstance(node, CData):
            raise MarkupError(f"unhandled CDATA section: {str(node)[:40]!r}")
        elif isinstance(node, PreformattedString):
            continue
        elif isinstance(node, NavigableString):
            yield Text(str(node))


# ---------- paragraph state machine ----------


@dataclass(frozen=True)
class Idle:
    pass


@dataclass
class InText:
    flags: int
    parts: list[str] = field(default_factory=list)
    units: int = 0
    ruby: list[Ruby] = field(default_factory=list)

    def append(self, text: str) -> None:
        if not text:
            return
        self.parts.append(text)
        self.units += utf16_len(text)

    def to_paragraph(self) -> TextParagraph:
        return TextParagraph(text="".join(self.parts), ruby=self.ruby, flags=self.flags)


@dataclass(frozen=True)
class InImage:
    index: int


ParagraphState = Idle | InText | InImage


@dataclass(frozen=True)
class NoRuby:
    pass


@dataclass(frozen=True)
class RubyPending:
    start: int


@dataclass
class RubyReading:
    start: int
    parts: list[str] = field(default_factory=list)


RubyState = NoRuby | RubyPending | RubyReading


def derive_flags(class_value: str | None) -> int:
    """Map a paragraph's class attribute to bold/large flags."""
    if not class_value:
        return 0
    flags = 0
    for name in class_value.split(" "):
        if name == "bold":
            flags |= FLAG_BOLD
            continue
        if name.startswith(_FONT_SIZE_PREFIX):
            # e.g. font-110per or font-1em30; a bare font-1em is normal size
            if name.endswith("per") or len(name) > len(_FONT_EM_UNIT):
                flags |= FLAG_LARGE
    return flags


class ParagraphScanner:
    """
    Turns a stream of markup events into Paragraphs.

    The scanner is a product of two small state machines: the paragraph
    state (idle, collecting text, holding an illustration) and the ruby state
    (no ruby, a base run awaiting its reading, inside a reading). Feed events
    with :meth:`feed` and collect the result with :meth:`finish`.
    """

    def __init__(self, glyphs: GlyphTable | None = None, images: ImageCatalog | None = None) -> None:
        self.glyphs = glyphs if glyphs is not None else GlyphTable()
        self.images = images if images is not None else ImageCatalog()
        self.paragraph_state: ParagraphState = Idle()
        self.ruby_state: RubyState = NoRuby()
        self.paragraphs: list[Paragraph] = []
        self._rp_depth = 0

    def feed(self, event: MarkupEvent) -> None:
        if isinstance(event, StartTag):
            self._start(event)
        elif isinstance(event, EndTag):
            self._end(event)
        else:
            self._text(event.data)

    def feed_all(self, events: Iterable[MarkupEvent]) -> "ParagraphScanner":
        for event in events:
            self.feed(event)
        return self

    def finish(self) -> list[Paragraph]:
        # Image-only sections and a trailing unclosed <p> end up here.
        self._flush()
        return self.paragraphs

    def _flush(self) -> None:
        state = self.paragraph_state
        if isinstance(state, InText):
            self.paragraphs.append(state.to_paragraph())
        elif isinstance(state, InImage):
            self.paragraphs.append(ImageParagraph(state.index))
        self.paragraph_state = Idle()
        self.ruby_state = NoRuby()
        self._rp_depth = 0

    def _start(self, event: StartTag) -> None:
        if isinstance(self.ruby_state, RubyReading):
            # Markup nested in a reading contributes text only.
            return
        name = event.name
        if name == "p":
            self._flush()
            self.paragraph_state = InText(flags=derive_flags(event.attrs.get("class")))
        elif name in ("ruby", "rb"):
            if isinstance(self.paragraph_state, InText):
                self.ruby_state = RubyPending(self.paragraph_state.units)
        elif name == "rt":
            if isinstance(self.ruby_state, RubyPending):
                self.ruby_state = RubyReading(self.ruby_state.start)
        elif name == "rp":
            self._rp_depth += 1
        elif name == "img":
            self._img(event)
        elif name == "image":
            # <image> inside <svg>
            href = event.attrs.get("href")
            if not href:
                raise MarkupError(f"<image> without href near paragraph {len(self.paragraphs)}")
            self._illustration(href, tag="image")

    def _end(self, event: EndTag) -> None:
        name = event.name
        ruby_state = self.ruby_state
        if isinstance(ruby_state, RubyReading):
            if name == "rt":
                self._close_reading(ruby_state)
            elif name == "ruby":
                self.ruby_state = NoRuby()
            return
        if name == "p":
            self._flush()
        elif name == "ruby":
            self.ruby_state = NoRuby()
        elif name == "rp":
            self._rp_depth = max(0, self._rp_depth - 1)

    def _text(self, data: str) -> None:
        ruby_state = self.ruby_state
        if isinstance(ruby_state, RubyReading):
            ruby_state.parts.append(data)
            return
        if self._rp_depth:
            return
        if isinstance(self.paragraph_state, InText):
            self.paragraph_state.append(data)

    def _close_reading(self, reading: RubyReading) -> None:
        state = self.paragraph_state
        if not isinstance(state, InText):
            self.ruby_state = NoRuby()
            return
        state.ruby.append(
            Ruby(
                start_offset=reading.start,
                length=state.units - reading.start,
                reading="".join(reading.parts),
            )
        )
        # Several <rt> in one <ruby> each cover the text added since the previous one.
        self.ruby_state = RubyPending(state.units)

    def _img(self, event: StartTag) -> None:
        src = event.attrs.get("src", "")
        if not src:
            raise MarkupError(f"unhandled <img> without src near paragraph {len(self.paragraphs)}: {dict(event.attrs)}")
        if event.attrs.get("class") == GAIJI_CLASS:
            replacement = self.glyphs.lookup(src)
            if replacement is None:
                raise UnresolvedGlyphError(f"failed to find gaiji mapping for {src!r}")
            # Gaiji inside ruby bases are not expected.
            if isinstance(self.paragraph_state, InText):
                self.paragraph_state.append(replacement)
            return
        self._illustration(src, tag="img")

    def _illustration(self, reference: str, *, tag: str) -> None:
        index = self.images.index_of(reference)
        if index is None:
            raise UnresolvedImageError(f"<{tag}> doesn't point to a valid image: {reference!r}")
        self.paragraph_state = InImage(index)
        self.ruby_state = NoRuby()


def parse_document(
    markup: str,
    glyphs: GlyphTable | None = None,
    images: ImageCatalog | None = None,
) -> list[Paragraph]:
    """Parse one XHTML document into Paragraphs."""
    scanner = ParagraphScanner(glyphs, images)
    return scanner.feed_all(iter_events(markup)).finish()


__all__ = [
    "StartTag",
    "EndTag",
    "Text",
    "MarkupEvent",
    "iter_events",
    "Idle",
    "InText",
    "InImage",
    "NoRuby",
    "RubyPending",
    "RubyReading",
    "derive_flags",
    "ParagraphScanner",
    "parse_document",
]
