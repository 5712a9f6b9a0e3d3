from __future__ import annotations

import struct

import pytest

from rnb.container import (
    IMAGE_TAG,
    MAX_BLOCKS,
    decode_container,
    describe_container,
    encode_header,
)
from rnb.errors import CapacityError, ContainerFormatError, EncodingError
from rnb.images import ImageCatalog, ImageEntry, image_offsets, transfer_order
from rnb.model import FLAG_BOLD, FLAG_LARGE, ImageBlock, Ruby, TextBlock


def _catalog(*sizes: int) -> ImageCatalog:
    return ImageCatalog(
        tuple(ImageEntry(name=f"{i}.png", size=size, locator=f"OEBPS/{i}.png") for i, size in enumerate(sizes))
    )


def test_ruby_block_round_trip() -> None:
    block = TextBlock(text="開会宣言", ruby=[Ruby(start_offset=0, length=2, reading="かい")])
    data = encode_header([block], ImageCatalog())
    decoded = decode_container(data)
    assert decoded.blocks == [block]
    assert decoded.images == []
    assert decoded.data_start == len(data)


def test_text_block_byte_layout() -> None:
    block = TextBlock(text="開会宣言", ruby=[Ruby(0, 2, "かい")], flags=FLAG_BOLD)
    data = encode_header([block], ImageCatalog())
    expected = (
        struct.pack("<H", 1)
        + struct.pack("<B", 0)
        + struct.pack("<H", 8 | FLAG_BOLD << 13)
        + "開会宣言".encode("utf-16-le")
        + struct.pack("<B", 1)
        + struct.pack("<HBB", 0, 2, 4)
        + "かい".encode("utf-16-le")
    )
    assert data == expected


def test_image_table_and_image_block() -> None:
    catalog = _catalog(100, 50, 200)
    data = encode_header([ImageBlock(2), TextBlock(text="a")], catalog)
    assert data[:3] == struct.pack("<HB", 2, 3)
    table = [struct.unpack_from("<II", data, 3 + 8 * i) for i in range(3)]
    assert table == [(0, 100), (100, 50), (150, 200)]
    (prefix,) = struct.unpack_from("<H", data, 3 + 24)
    assert prefix == IMAGE_TAG | 2

    decoded = decode_container(data)
    assert decoded.blocks == [ImageBlock(2), TextBlock(text="a")]
    assert [(record.offset, record.size) for record in decoded.images] == table


def test_image_offsets_are_prefix_sums() -> None:
    assert image_offsets([100, 50, 200]) == [0, 100, 150]
    assert image_offsets([]) == []


def test_transfer_order_is_largest_first() -> None:
    assert transfer_order([100, 50, 200]) == [2, 0, 1]


def test_zero_length_block_has_no_ruby_section() -> None:
    data = encode_header([TextBlock(text="", flags=FLAG_LARGE), TextBlock(text="x")], ImageCatalog())
    decoded = decode_container(data)
    assert decoded.blocks == [TextBlock(text="", flags=FLAG_LARGE), TextBlock(text="x")]
    # count + image count + empty prefix + ("x" prefix, 2 text bytes, ruby count)
    assert len(data) == 2 + 1 + 2 + 2 + 2 + 1


def test_surrogate_pairs_are_encoded_as_two_units() -> None:
    block = TextBlock(text="𠮟る", ruby=[Ruby(0, 3, "しかる")])
    data = encode_header([block], ImageCatalog())
    (prefix,) = struct.unpack_from("<H", data, 3)
    assert prefix == 6
    assert decode_container(data).blocks == [block]


def test_text_too_long_is_capacity_error() -> None:
    block = TextBlock(text="あ" * 4096)
    with pytest.raises(CapacityError, match="block 0 text is too long"):
        encode_header([block], ImageCatalog())


def test_longest_text_fits() -> None:
    block = TextBlock(text="あ" * 4095)
    assert decode_container(encode_header([block], ImageCatalog())).blocks == [block]


def test_invalid_flags_are_encoding_error() -> None:
    with pytest.raises(EncodingError):
        encode_header([TextBlock(text="a", flags=4)], ImageCatalog())


def test_image_index_out_of_range_is_encoding_error() -> None:
    with pytest.raises(EncodingError):
        encode_header([ImageBlock(256)], ImageCatalog())


def test_too_many_blocks_is_capacity_error() -> None:
    blocks = [ImageBlock(0)] * (MAX_BLOCKS + 1)
    with pytest.raises(CapacityError):
        encode_header(blocks, _catalog(1))


def test_ruby_fields_are_bounded() -> None:
    with pytest.raises(CapacityError):
        encode_header([TextBlock(text="a", ruby=[Ruby(0, 256, "x")])], ImageCatalog())
    with pytest.raises(CapacityError):
        encode_header([TextBlock(text="a", ruby=[Ruby(70000, 1, "x")])], ImageCatalog())
    with pytest.raises(CapacityError):
        encode_header([TextBlock(text="a", ruby=[Ruby(0, 1, "x" * 128)])], ImageCatalog())
    with pytest.raises(CapacityError):
        encode_header([TextBlock(text="a", ruby=[Ruby(0, 1, "x")] * 256)], ImageCatalog())


def test_catalog_size_is_limited() -> None:
    with pytest.raises(CapacityError):
        _catalog(*([1] * 256))
    assert len(_catalog(*([1] * 255))) == 255


def test_truncated_container_is_rejected() -> None:
    data = encode_header([TextBlock(text="abc", ruby=[Ruby(0, 1, "x")])], ImageCatalog())
    with pytest.raises(ContainerFormatError):
        decode_container(data[:-1])


def test_describe_container() -> None:
    data = encode_header(
        [TextBlock(text="開会", ruby=[Ruby(0, 2, "かいかい")], flags=FLAG_BOLD), ImageBlock(0)],
        _catalog(10),
    )
    lines = list(describe_container(decode_container(data)))
    assert lines == [
        "2",
        "paragraph meta: idx=0, bold=True, is_large=False",
        "開会",
        "ruby meta: idx=0, start_offset=0, num_chars_in_paragraph=2",
        "かいかい",
        "image 0",
        "images: 1",
        "image meta: idx=0, offset=0, size=10",
    ]
