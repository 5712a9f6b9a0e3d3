from __future__ import annotations

from typing import Iterable

from .model import Block, ImageBlock, ImageParagraph, Paragraph, TextBlock, TextParagraph, utf16_len

# Caps for merged runs only; a single paragraph may exceed them.
MAX_MERGED_TEXT_UNITS = 127
MAX_MERGED_RUBY_SPANS = 127
SEPARATOR = "\n"


class _PendingText:
    def __init__(self, paragraph: TextParagraph) -> None:
        self.parts = [paragraph.text]
        self.units = utf16_len(paragraph.text)
        self.ruby = list(paragraph.ruby)
        self.flags = paragraph.flags

    def fits(self, paragraph: TextParagraph) -> bool:
        return (
            self.units + utf16_len(paragraph.text) <= MAX_MERGED_TEXT_UNITS
            and len(self.ruby) + len(paragraph.ruby) <= MAX_MERGED_RUBY_SPANS
        )

    def extend(self, paragraph: TextParagraph) -> None:
        self.parts.append(SEPARATOR)
        self.units += utf16_len(SEPARATOR)
        offset = self.units
        self.parts.append(paragraph.text)
        self.units += utf16_len(paragraph.text)
        self.ruby.extend(span.shifted(offset) for span in paragraph.ruby)

    def to_block(self) -> TextBlock:
        return TextBlock(text="".join(self.parts), ruby=self.ruby, flags=self.flags)


def merge_paragraphs(paragraphs: Iterable[Paragraph]) -> list[Block]:
    """
    Greedily pack adjacent unformatted paragraphs into blocks.

    Images and formatted paragraphs always stand alone; runs of plain
    paragraphs are joined with newlines until the next one would push the
    text or ruby count past the merge caps.
    """
    blocks: list[Block] = []
    pending: _PendingText | None = None

    def flush() -> None:
        nonlocal pending
        if pending is not None:
            blocks.append(pending.to_block())
            pending = None

    for paragraph in paragraphs:
        if isinstance(paragraph, ImageParagraph):
            flush()
            blocks.append(ImageBlock(paragraph.index))
            continue

        # Adjacent paragraphs with identical formatting could be merged too,
        # but they are rare enough to leave alone.
        if paragraph.flags != 0:
            flush()
            blocks.append(TextBlock(text=paragraph.text, ruby=list(paragraph.ruby), flags=paragraph.flags))
            continue

        if pending is None:
            pending = _PendingText(paragraph)
        elif pending.fits(paragraph):
            pending.extend(paragraph)
        else:
            flush()
            pending = _PendingText(paragraph)

    flush()
    return blocks


__all__ = ["MAX_MERGED_TEXT_UNITS", "MAX_MERGED_RUBY_SPANS", "merge_paragraphs"]
