import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storybot.services.chunking import chunk_text, label_parts


def test_empty_text_yields_no_chunks():
    assert chunk_text("") == []


def test_short_text_is_returned_unchanged():
    text = "  A short reply.\n\nWith two lines.  "

    chunks = chunk_text(text, 4000)

    assert chunks == [text]
    assert chunks[0].oversized is False


def test_lines_are_packed_without_being_split():
    line = "a" * 30
    text = "\n".join([line] * 10)

    chunks = chunk_text(text, 100)

    assert [len(chunk.split("\n")) for chunk in chunks] == [3, 3, 3, 1]
    assert all(len(chunk) <= 100 for chunk in chunks)
    assert all(part == line for chunk in chunks for part in chunk.split("\n"))


def test_long_line_falls_back_to_sentence_boundaries():
    sentences = [f"Sentence number {index:02d} is here." for index in range(20)]
    line = " ".join(sentences)

    chunks = chunk_text(line, 100)

    assert len(chunks) == 7
    assert all(len(chunk) <= 100 for chunk in chunks)
    assert all(chunk.endswith(".") for chunk in chunks)
    assert " ".join(chunks) == line


def test_unsplittable_sentence_is_flagged_oversized():
    giant = "y" * 150
    text = f"Short start.\n{giant}\nShort end."

    chunks = chunk_text(text, 100)

    assert chunks == ["Short start.", giant, "Short end."]
    assert [chunk.oversized for chunk in chunks] == [False, True, False]


def test_chunk_order_preserves_text_order():
    paragraphs = [f"Paragraph {index} " + "word " * 15 for index in range(12)]
    text = "\n".join(paragraphs)

    chunks = chunk_text(text, 250)

    joined = "\n".join(chunks)
    positions = [joined.index(f"Paragraph {index} ") for index in range(12)]
    assert positions == sorted(positions)


def test_invalid_max_length_is_rejected():
    with pytest.raises(ValueError):
        chunk_text("anything", 0)


def test_label_parts_only_numbers_multiple_chunks():
    assert label_parts(["only"]) == ["only"]
    assert label_parts(["first", "second"]) == [
        "📄 Part 1/2\n\nfirst",
        "📄 Part 2/2\n\nsecond",
    ]
