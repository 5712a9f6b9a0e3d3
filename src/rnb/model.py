from __future__ import annotations

from dataclasses import dataclass, field

FLAG_BOLD = 1 << 0
FLAG_LARGE = 1 << 1


def utf16_len(text: str) -> int:
    """Return the number of UTF-16 code units needed to store ``text``."""
    # Characters outside the BMP take a surrogate pair.
    return len(text) + sum(1 for ch in text if ord(ch) > 0xFFFF)


def final_segment(reference: str) -> str:
    """Strip any directory prefix from an archive path or markup reference."""
    return reference.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class Ruby:
    # Offsets and lengths are counted in UTF-16 code units of the owning text.
    start_offset: int
    length: int
    reading: str

    def shifted(self, delta: int) -> "Ruby":
        return Ruby(self.start_offset + delta, self.length, self.reading)


@dataclass
class TextParagraph:
    text: str
    ruby: list[Ruby] = field(default_factory=list)
    flags: int = 0

    @property
    def units(self) -> int:
        return utf16_len(self.text)


@dataclass(frozen=True)
class ImageParagraph:
    index: int


Paragraph = TextParagraph | ImageParagraph


@dataclass
class TextBlock:
    text: str
    ruby: list[Ruby] = field(default_factory=list)
    flags: int = 0

    @property
    def bold(self) -> bool:
        return bool(self.flags & FLAG_BOLD)

    @property
    def large(self) -> bool:
        return bool(self.flags & FLAG_LARGE)


@dataclass(frozen=True)
class ImageBlock:
    index: int


Block = TextBlock | ImageBlock


__all__ = [
    "FLAG_BOLD",
    "FLAG_LARGE",
    "utf16_len",
    "final_segment",
    "Ruby",
    "TextParagraph",
    "ImageParagraph",
    "Paragraph",
    "TextBlock",
    "ImageBlock",
    "Block",
]
