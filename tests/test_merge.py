from __future__ import annotations

from rnb.merge import MAX_MERGED_RUBY_SPANS, MAX_MERGED_TEXT_UNITS, merge_paragraphs
from rnb.model import FLAG_BOLD, FLAG_LARGE, ImageBlock, ImageParagraph, Ruby, TextBlock, TextParagraph


def test_merge_single() -> None:
    result = merge_paragraphs([TextParagraph(text="a")])
    assert result == [TextBlock(text="a")]


def test_merge_two() -> None:
    result = merge_paragraphs([TextParagraph(text="a"), TextParagraph(text="b")])
    assert result == [TextBlock(text="a\nb")]


def test_merge_shifts_ruby_offsets() -> None:
    first = TextParagraph(text="漢字です", ruby=[Ruby(0, 2, "かんじ")])
    second = TextParagraph(text="仮名と漢字", ruby=[Ruby(0, 2, "かな"), Ruby(3, 2, "かんじ")])
    (block,) = merge_paragraphs([first, second])
    assert block.text == "漢字です\n仮名と漢字"
    la = len(first.text)
    assert block.ruby == [
        Ruby(0, 2, "かんじ"),
        Ruby(la + 1, 2, "かな"),
        Ruby(la + 1 + 3, 2, "かんじ"),
    ]
    for span in block.ruby:
        assert block.text[span.start_offset : span.start_offset + span.length] in {"漢字", "仮名"}


def test_formatted_paragraphs_are_never_merged() -> None:
    paragraphs = [
        TextParagraph(text="見出し", flags=FLAG_BOLD, ruby=[Ruby(0, 2, "みだ")]),
        TextParagraph(text="大きい", flags=FLAG_LARGE, ruby=[Ruby(0, 1, "おお")]),
        TextParagraph(text="両方", flags=FLAG_BOLD | FLAG_LARGE),
    ]
    blocks = merge_paragraphs(paragraphs)
    assert len(blocks) == 3
    for paragraph, block in zip(paragraphs, blocks):
        assert isinstance(block, TextBlock)
        assert block.text == paragraph.text
        assert block.flags == paragraph.flags
        assert block.ruby == paragraph.ruby


def test_formatted_paragraph_flushes_pending_run() -> None:
    blocks = merge_paragraphs(
        [
            TextParagraph(text="a"),
            TextParagraph(text="b"),
            TextParagraph(text="title", flags=FLAG_BOLD),
            TextParagraph(text="c"),
        ]
    )
    assert blocks == [
        TextBlock(text="a\nb"),
        TextBlock(text="title", flags=FLAG_BOLD),
        TextBlock(text="c"),
    ]


def test_image_flushes_pending_run() -> None:
    blocks = merge_paragraphs([TextParagraph(text="a"), ImageParagraph(3), TextParagraph(text="b")])
    assert blocks == [TextBlock(text="a"), ImageBlock(3), TextBlock(text="b")]


def test_long_paragraphs_are_not_merged() -> None:
    first = TextParagraph(text="あ" * 100)
    second = TextParagraph(text="い" * 28)
    blocks = merge_paragraphs([first, second])
    assert blocks == [TextBlock(text=first.text), TextBlock(text=second.text)]


def test_merge_at_text_cap() -> None:
    first = TextParagraph(text="あ" * 100)
    second = TextParagraph(text="い" * (MAX_MERGED_TEXT_UNITS - 100))
    (block,) = merge_paragraphs([first, second])
    assert block.text == first.text + "\n" + second.text


def test_surrogate_pairs_count_toward_text_cap() -> None:
    first = TextParagraph(text="𠮟" * 60)
    second = TextParagraph(text="a" * 8)
    # 120 + 8 code units exceeds the cap even though there are only 68 characters.
    assert len(merge_paragraphs([first, second])) == 2


def test_ruby_count_cap_starts_new_block() -> None:
    spans = [Ruby(0, 1, "a")] * 100
    first = TextParagraph(text="x", ruby=list(spans))
    second = TextParagraph(text="y", ruby=list(spans[: MAX_MERGED_RUBY_SPANS - 99]))
    blocks = merge_paragraphs([first, second])
    assert len(blocks) == 2
    assert len(blocks[0].ruby) == 100


def test_pending_run_keeps_growing_until_cap() -> None:
    paragraphs = [TextParagraph(text="あ" * 30) for _ in range(5)]
    blocks = merge_paragraphs(paragraphs)
    # 30 + 1 + 30 + 1 + 30 + 1 + 30 = 123 fits; a fifth would push past the cap.
    assert [len(block.text) for block in blocks] == [123, 30]


def test_empty_input() -> None:
    assert merge_paragraphs([]) == []
