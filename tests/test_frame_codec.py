"""Unit tests for the plain and color frame encodings."""

from __future__ import annotations

import struct

import pytest

from domain.ascii_art import Frame, FrameDecodeError
from domain.frame_codec import (
    COLOR_MAGIC,
    HEADER_STRUCT,
    ROW_STRUCT,
    RUN_STRUCT,
    decode_color,
    decode_frame,
    decode_plain,
    encode_color,
    encode_frame,
    encode_plain,
    frame_extension,
)

RED = (255, 0, 0)
BLUE = (0, 0, 255)


def colored_frame() -> Frame:
    """Build a 4 x 2 frame with mixed runs and a blank cell."""
    return Frame(
        rows=("aab ", "cccc"),
        colors=((RED, RED, BLUE, None), (BLUE, BLUE, BLUE, BLUE)),
    )


def row_run_counts(data: bytes, height: int) -> list[int]:
    """Read the run count of every row of a color payload."""
    offset = HEADER_STRUCT.size
    counts = []
    for _ in range(height):
        (run_count,) = ROW_STRUCT.unpack_from(data, offset)
        counts.append(run_count)
        offset += ROW_STRUCT.size + run_count * RUN_STRUCT.size
    return counts


def test_plain_round_trip() -> None:
    """Plain text encoding decodes back to the same frame."""
    frame = Frame(rows=("ab.", " @:"))
    text_value = encode_plain(frame)
    assert text_value == "ab.\n @:\n"
    assert decode_plain(text_value) == frame


def test_plain_decode_tolerates_crlf_and_missing_final_newline() -> None:
    """Carriage returns and a missing final newline are accepted."""
    assert decode_plain("ab\r\ncd") == Frame(rows=("ab", "cd"))


def test_plain_decode_rejects_ragged_rows() -> None:
    """Rows of different widths fail to decode."""
    with pytest.raises(FrameDecodeError) as excinfo:
        decode_plain("abc\nab\n")
    assert "row 1" in str(excinfo.value)


def test_plain_decode_rejects_empty_input() -> None:
    """An empty payload is not a frame."""
    with pytest.raises(FrameDecodeError):
        decode_plain("")


def test_color_round_trip() -> None:
    """Color encoding preserves characters and colors exactly."""
    frame = colored_frame()
    assert decode_color(encode_color(frame)) == frame


def test_color_runs_merge_consecutive_cells() -> None:
    """Adjacent cells sharing character and color share one run."""
    frame = colored_frame()
    assert row_run_counts(encode_color(frame), frame.height) == [3, 1]


def test_single_color_frame_has_one_run_per_row() -> None:
    """A uniform 3 x 2 frame encodes one run per row."""
    frame = Frame(rows=("###", "###"), colors=((RED,) * 3, (RED,) * 3))
    data = encode_color(frame)
    assert row_run_counts(data, 2) == [1, 1]
    assert decode_color(data) == frame


def test_color_encoding_of_colorless_frame_round_trips() -> None:
    """A frame without colors stays colorless through the color form."""
    frame = Frame(rows=("ab", "ba"))
    decoded = decode_color(encode_color(frame))
    assert decoded == frame
    assert decoded.colors is None


def test_encode_frame_selects_form() -> None:
    """Frames with colors use the color form, others plain UTF-8."""
    plain = Frame(rows=("ab",))
    assert encode_frame(plain) == b"ab\n"
    assert frame_extension(plain) == ".txt"
    assert encode_frame(colored_frame()).startswith(COLOR_MAGIC)
    assert frame_extension(colored_frame()) == ".cframe"


def test_decode_frame_sniffs_form() -> None:
    """decode_frame accepts either form."""
    assert decode_frame(b"xy\nyx\n") == Frame(rows=("xy", "yx"))
    assert decode_frame(encode_color(colored_frame())) == colored_frame()


def test_non_ascii_plain_round_trip() -> None:
    """Plain frames are UTF-8 and keep multi-byte characters."""
    frame = Frame(rows=("░▒▓",))
    assert decode_frame(encode_frame(frame)) == frame


def test_invalid_utf8_rejected() -> None:
    """Plain payloads must be valid UTF-8."""
    with pytest.raises(FrameDecodeError):
        decode_frame(b"ab\xff\n")


def test_color_decode_rejects_bad_magic_and_version() -> None:
    """Header fields are validated."""
    data = bytearray(encode_color(colored_frame()))
    with pytest.raises(FrameDecodeError):
        decode_color(b"XXXX" + bytes(data[4:]))
    data[4] = 9
    with pytest.raises(FrameDecodeError):
        decode_color(bytes(data))


def test_color_decode_rejects_truncation_and_trailing_bytes() -> None:
    """Short or over-long payloads fail."""
    data = encode_color(colored_frame())
    with pytest.raises(FrameDecodeError):
        decode_color(data[:-1])
    with pytest.raises(FrameDecodeError):
        decode_color(data + b"\x00")
    with pytest.raises(FrameDecodeError):
        decode_color(data[:5])


def test_color_decode_rejects_zero_length_run() -> None:
    """Runs must cover at least one cell."""
    data = (
        HEADER_STRUCT.pack(COLOR_MAGIC, 1, 1, 1, 1)
        + ROW_STRUCT.pack(2)
        + RUN_STRUCT.pack(0, ord("a"), 0, 0, 0, 0)
        + RUN_STRUCT.pack(1, ord("a"), 0, 0, 0, 0)
    )
    with pytest.raises(FrameDecodeError) as excinfo:
        decode_color(data)
    assert "zero-length" in str(excinfo.value)


def test_color_decode_rejects_width_mismatch() -> None:
    """Runs must sum to the declared width."""
    data = (
        HEADER_STRUCT.pack(COLOR_MAGIC, 1, 1, 3, 1)
        + ROW_STRUCT.pack(1)
        + RUN_STRUCT.pack(2, ord("a"), 1, 1, 2, 3)
    )
    with pytest.raises(FrameDecodeError):
        decode_color(data)


def test_color_decode_rejects_invalid_code_point_and_flag() -> None:
    """Newlines and unknown color flags are rejected."""
    newline_run = (
        HEADER_STRUCT.pack(COLOR_MAGIC, 1, 1, 1, 1)
        + ROW_STRUCT.pack(1)
        + RUN_STRUCT.pack(1, 0x0A, 0, 0, 0, 0)
    )
    with pytest.raises(FrameDecodeError):
        decode_color(newline_run)
    bad_flag = (
        HEADER_STRUCT.pack(COLOR_MAGIC, 1, 1, 1, 1)
        + ROW_STRUCT.pack(1)
        + RUN_STRUCT.pack(1, ord("a"), 2, 0, 0, 0)
    )
    with pytest.raises(FrameDecodeError):
        decode_color(bad_flag)


def test_header_is_big_endian() -> None:
    """Width and height are stored big-endian after magic, version and flags."""
    data = encode_color(Frame(rows=("ab",), colors=((RED, RED),)))
    assert data[:4] == COLOR_MAGIC
    assert struct.unpack(">II", data[6:14]) == (2, 1)
