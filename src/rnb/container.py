"""
Binary layout of an .rnb container.

All integers are little-endian.

- u16 number of blocks
- u8 number of images, then per image: u32 offset into the image data
  region, u32 size in bytes
- blocks, each starting with a u16 prefix:
  - bit 15 set: image block, the low bits hold the image index and nothing
    else follows
  - otherwise bits 13-14 carry the formatting flags (bold, large) and bits
    0-12 the byte length of the UTF-16LE text that follows. Unless that
    length is zero the text is followed by a u8 ruby count and, per span, a
    u16 start offset, a u8 length, a u8 reading byte length and the
    UTF-16LE reading.
- image data, each image at the offset recorded in the table
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterator, Sequence

from .errors import CapacityError, ContainerFormatError, EncodingError
from .images import ImageCatalog, image_offsets
from .model import FLAG_BOLD, FLAG_LARGE, Block, ImageBlock, Ruby, TextBlock

CONTAINER_SUFFIX = ".rnb"

IMAGE_TAG = 1 << 15
FLAG_SHIFT = 13
MAX_FLAGS = 1 << 2
MAX_TEXT_BYTES = 1 << FLAG_SHIFT
MAX_BLOCKS = 0xFFFF
MAX_RUBY_SPANS = 0xFF
MAX_IMAGE_INDEX = 0xFF
_TEXT_LENGTH_MASK = MAX_TEXT_BYTES - 1

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_IMAGE_META = struct.Struct("<II")
_RUBY_HEAD = struct.Struct("<HBB")


def _utf16le(text: str) -> bytes:
    return text.encode("utf-16-le", errors="surrogatepass")


def _preview(text: str, width: int = 60) -> str:
    return text if len(text) <= width else text[: width - 1] + "…"


def _encode_ruby(buf: bytearray, index: int, ruby: Sequence[Ruby]) -> None:
    if len(ruby) > MAX_RUBY_SPANS:
        raise CapacityError(f"block {index} has {len(ruby)} ruby spans; at most {MAX_RUBY_SPANS} fit")
    buf += _U8.pack(len(ruby))
    for span in ruby:
        reading = _utf16le(span.reading)
        if not 0 <= span.start_offset <= 0xFFFF:
            raise CapacityError(f"block {index} ruby {span.reading!r} starts at {span.start_offset}, past u16")
        if not 0 <= span.length <= 0xFF:
            raise CapacityError(f"block {index} ruby {span.reading!r} covers {span.length} units, past u8")
        if len(reading) > 0xFF:
            raise CapacityError(f"block {index} ruby reading {span.reading!r} is {len(reading)} bytes, past u8")
        buf += _RUBY_HEAD.pack(span.start_offset, span.length, len(reading))
        buf += reading


def _encode_text_block(buf: bytearray, index: int, block: TextBlock) -> None:
    data = _utf16le(block.text)
    if len(data) >= MAX_TEXT_BYTES:
        raise CapacityError(
            f"block {index} text is too long to encode ({len(data)} bytes): `{_preview(block.text)}`"
        )
    if not 0 <= block.flags < MAX_FLAGS:
        # Higher bits would collide with the image tag.
        raise EncodingError(f"invalid paragraph flags in block {index}: {block.flags}")

    buf += _U16.pack(len(data) | block.flags << FLAG_SHIFT)
    if not data:
        if block.ruby:
            raise EncodingError(f"block {index} has ruby spans but no text")
        return
    buf += data
    _encode_ruby(buf, index, block.ruby)


def _encode_image_block(buf: bytearray, index: int, block: ImageBlock) -> None:
    if not 0 <= block.index <= MAX_IMAGE_INDEX:
        raise EncodingError(f"block {index} refers to image {block.index}, outside the image index range")
    buf += _U16.pack(IMAGE_TAG | block.index)


def encode_header(blocks: Sequence[Block], images: ImageCatalog) -> bytes:
    """Encode everything that precedes the image data region."""
    if len(blocks) > MAX_BLOCKS:
        raise CapacityError(f"{len(blocks)} blocks do not fit the u16 block count")

    buf = bytearray()
    buf += _U16.pack(len(blocks))

    offsets = image_offsets(images.sizes)
    buf += _U8.pack(len(offsets))
    for offset, entry in zip(offsets, images):
        buf += _IMAGE_META.pack(offset, entry.size)

    for index, block in enumerate(blocks):
        if isinstance(block, ImageBlock):
            _encode_image_block(buf, index, block)
        else:
            _encode_text_block(buf, index, block)
    return bytes(buf)


@dataclass(frozen=True)
class ImageRecord:
    offset: int
    size: int


@dataclass
class DecodedContainer:
    blocks: list[Block]
    images: list[ImageRecord]
    # Absolute position of the image data region.
    data_start: int

    def image_bytes(self, data: bytes, index: int) -> bytes:
        record = self.images[index]
        start = self.data_start + record.offset
        chunk = data[start : start + record.size]
        if len(chunk) != record.size:
            raise ContainerFormatError(
                f"image {index} is truncated: expected {record.size} bytes, found {len(chunk)}"
            )
        return chunk


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, size: int, what: str) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise ContainerFormatError(f"container truncated while reading {what} at byte {self.pos}")
        chunk = self.data[self.pos : end]
        self.pos = end
        return chunk

    def unpack(self, fmt: struct.Struct, what: str) -> tuple[int, ...]:
        return fmt.unpack(self.take(fmt.size, what))

    def text(self, size: int, what: str) -> str:
        if size % 2:
            raise ContainerFormatError(f"{what} has an odd byte length ({size})")
        raw = self.take(size, what)
        try:
            return raw.decode("utf-16-le")
        except UnicodeDecodeError as exc:
            raise ContainerFormatError(f"{what} is not valid UTF-16LE: {exc}") from exc


def decode_container(data: bytes) -> DecodedContainer:
    reader = _Reader(data)
    (num_blocks,) = reader.unpack(_U16, "block count")
    (num_images,) = reader.unpack(_U8, "image count")
    images = [ImageRecord(*reader.unpack(_IMAGE_META, f"image {i} metadata")) for i in range(num_images)]

    blocks: list[Block] = []
    for index in range(num_blocks):
        (prefix,) = reader.unpack(_U16, f"block {index} prefix")
        if prefix & IMAGE_TAG:
            blocks.append(ImageBlock(prefix & ~IMAGE_TAG))
            continue
        flags = prefix >> FLAG_SHIFT
        text = reader.text(prefix & _TEXT_LENGTH_MASK, f"block {index} text")
        ruby: list[Ruby] = []
        if text:
            (num_ruby,) = reader.unpack(_U8, f"block {index} ruby count")
            for span_index in range(num_ruby):
                what = f"block {index} ruby {span_index}"
                start, length, reading_len = reader.unpack(_RUBY_HEAD, what)
                ruby.append(Ruby(start, length, reader.text(reading_len, what)))
        blocks.append(TextBlock(text=text, ruby=ruby, flags=flags))

    return DecodedContainer(blocks=blocks, images=images, data_start=reader.pos)


def describe_container(decoded: DecodedContainer) -> Iterator[str]:
    """Human-readable listing of a decoded container."""
    yield str(len(decoded.blocks))
    for index, block in enumerate(decoded.blocks):
        if isinstance(block, ImageBlock):
            yield f"image {block.index}"
            continue
        bold = bool(block.flags & FLAG_BOLD)
        large = bool(block.flags & FLAG_LARGE)
        if not block.text:
            yield f"zero length paragraph: idx={index}, bold={bold}, is_large={large}"
            continue
        yield f"paragraph meta: idx={index}, bold={bold}, is_large={large}"
        yield block.text
        for span_index, span in enumerate(block.ruby):
            yield (
                f"ruby meta: idx={span_index}, start_offset={span.start_offset}, "
                f"num_chars_in_paragraph={span.length}"
            )
            yield span.reading
    yield f"images: {len(decoded.images)}"
    for index, record in enumerate(decoded.images):
        yield f"image meta: idx={index}, offset={record.offset}, size={record.size}"


__all__ = [
    "CONTAINER_SUFFIX",
    "IMAGE_TAG",
    "MAX_TEXT_BYTES",
    "MAX_BLOCKS",
    "ImageRecord",
    "DecodedContainer",
    "encode_header",
    "decode_container",
    "describe_container",
]
