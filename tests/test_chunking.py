from __future__ import annotations

import string

from strata.chunking import chunk, looks_like_markdown


def _unbroken(n: int) -> str:
    letters = string.ascii_lowercase
    return "".join(letters[i % 26] for i in range(n))


def test_plain_text_without_breaks_uses_hard_windows():
    text = _unbroken(1200)
    pieces = chunk(text, max_size=500, overlap=50)

    assert len(pieces) == 3
    assert pieces[0] == text[0:500]
    assert pieces[1] == text[450:950]
    assert pieces[2] == text[900:1200]
    assert pieces[1].startswith(pieces[0][-50:])
    assert pieces[2].startswith(pieces[1][-50:])


def test_overlap_is_exact_when_cut_lands_on_whitespace():
    text = ("word " * 240)[:1200]
    pieces = chunk(text, max_size=500, overlap=50)

    assert len(pieces) == 3
    for prev, cur in zip(pieces, pieces[1:]):
        assert cur.startswith(prev[-50:])
    assert all(len(p) <= 500 for p in pieces)
    assert pieces[0].startswith("word")
    assert pieces[-1].endswith("word")


def test_sentence_break_preferred_when_far_enough_into_window():
    text = "a" * 400 + ". " + "b" * 300
    pieces = chunk(text, max_size=500, overlap=50)

    assert pieces[0] == "a" * 400 + "."
    assert pieces[-1].endswith("b" * 300)


def test_break_too_close_to_window_start_is_ignored():
    text = "a" * 100 + ". " + "b" * 700
    pieces = chunk(text, max_size=500, overlap=50)

    assert len(pieces[0]) == 500


def test_cjk_sentence_punctuation_is_a_break():
    text = "好" * 300 + "。" + "多" * 400
    pieces = chunk(text, max_size=500, overlap=50)

    assert pieces[0].endswith("。")
    assert len(pieces[0]) == 301


def test_short_and_empty_input():
    assert chunk("") == []
    assert chunk("   \n\t ") == []
    assert chunk("tiny") == []
    assert chunk("just long enough") == ["just long enough"]
    assert chunk("tiny", min_length=1) == ["tiny"]


def test_every_chunk_respects_size_bounds():
    sentence = "The quick brown fox jumps over the lazy dog near the river bank. "
    text = sentence * 80 + "\n\n" + _unbroken(900)
    for max_size, overlap in [(100, 10), (250, 40), (500, 50), (550, 70)]:
        pieces = chunk(text, max_size=max_size, overlap=overlap)
        assert pieces
        for p in pieces:
            assert 10 <= len(p) <= max_size + overlap


def test_markdown_sections_stay_whole_when_small():
    doc = (
        "# Title\n\nIntro paragraph here.\n\n"
        "## Setup\n\nInstall the package and run it.\n"
    )
    pieces = chunk(doc, max_size=500, overlap=50, structured=True)

    assert pieces == [
        "# Title\n\nIntro paragraph here.",
        "## Setup\n\nInstall the package and run it.",
    ]


def test_long_markdown_section_splits_on_paragraphs_with_overlap():
    paragraphs = [(c * 199) + "." for c in "pqrs"]
    doc = "# Title\n\nIntro paragraph here.\n\n## Part\n\n" + "\n\n".join(paragraphs)
    pieces = chunk(doc, max_size=500, overlap=50, structured=True)

    assert pieces[0] == "# Title\n\nIntro paragraph here."
    assert len(pieces) == 3
    assert pieces[1].startswith("## Part")
    assert paragraphs[1] in pieces[1]
    assert pieces[2].startswith(pieces[1][-50:])
    assert pieces[2].endswith(paragraphs[3])
    for p in pieces:
        assert len(p) <= 550


def test_oversized_markdown_paragraph_falls_back_to_plain_split():
    body = _unbroken(1200)
    doc = "## Field notes\n\n" + body
    pieces = chunk(doc, max_size=500, overlap=50, structured=True)

    assert pieces == ["## Field notes", body[0:500], body[450:950], body[900:1200]]


def test_looks_like_markdown():
    assert looks_like_markdown("notes.md")
    assert looks_like_markdown("README.MARKDOWN")
    assert not looks_like_markdown("notes.txt")
    assert not looks_like_markdown("")
