"""Plain-text and run-length color encodings for character frames."""

from __future__ import annotations

import struct
from typing import List, Tuple

from domain.ascii_art import (
    RGB,
    DimensionMismatchError,
    Frame,
    FrameDecodeError,
)

PLAIN_EXTENSION = ".txt"
COLOR_EXTENSION = ".cframe"
COLOR_MAGIC = b"CFRM"
COLOR_FORMAT_VERSION = 1
HEADER_STRUCT = struct.Struct(">4sBBII")
COLOR_GRID_FLAG = 0x01
ROW_STRUCT = struct.Struct(">I")
RUN_STRUCT = struct.Struct(">IIBBBB")
MAX_CODE_POINT = 0x10FFFF


def encode_plain(frame: Frame) -> str:
    """Encode a frame as newline-terminated text rows."""
    return "".join(f"{row}\n" for row in frame.rows)


def decode_plain(text_value: str) -> Frame:
    """Decode newline-terminated text rows into a frame."""
    if not text_value:
        raise FrameDecodeError("plain frame is empty")
    body = text_value[:-1] if text_value.endswith("\n") else text_value
    lines = [line[:-1] if line.endswith("\r") else line for line in body.split("\n")]
    expected_width = len(lines[0])
    if expected_width == 0:
        raise FrameDecodeError("row 0 is empty")
    for row_index, line in enumerate(lines):
        if len(line) != expected_width:
            raise FrameDecodeError(
                f"row {row_index} has {len(line)} columns, expected {expected_width}"
            )
    return Frame(rows=tuple(lines))


def build_runs(
    row: str, color_row: Tuple[RGB | None, ...]
) -> List[Tuple[int, str, RGB | None]]:
    """Merge consecutive cells sharing character and color into runs."""
    runs: List[Tuple[int, str, RGB | None]] = []
    for character, color in zip(row, color_row):
        if runs and runs[-1][1] == character and runs[-1][2] == color:
            count, _, _ = runs[-1]
            runs[-1] = (count + 1, character, color)
        else:
            runs.append((1, character, color))
    return runs


def encode_color(frame: Frame) -> bytes:
    """Encode a frame as a run-length color frame."""
    colors = frame.colors
    flags = COLOR_GRID_FLAG
    if colors is None:
        flags = 0
        colors = tuple((None,) * frame.width for _ in range(frame.height))
    chunks = [
        HEADER_STRUCT.pack(
            COLOR_MAGIC, COLOR_FORMAT_VERSION, flags, frame.width, frame.height
        )
    ]
    for row, color_row in zip(frame.rows, colors):
        runs = build_runs(row, color_row)
        chunks.append(ROW_STRUCT.pack(len(runs)))
        for count, character, color in runs:
            if color is None:
                chunks.append(RUN_STRUCT.pack(count, ord(character), 0, 0, 0, 0))
            else:
                red, green, blue = color
                chunks.append(
                    RUN_STRUCT.pack(count, ord(character), 1, red, green, blue)
                )
    return b"".join(chunks)


def decode_color(data: bytes) -> Frame:
    """Decode a run-length color frame."""
    if len(data) < HEADER_STRUCT.size:
        raise FrameDecodeError("color frame is shorter than its header")
    magic, version, flags, width, height = HEADER_STRUCT.unpack_from(data, 0)
    if magic != COLOR_MAGIC:
        raise FrameDecodeError(f"color frame has bad magic {magic!r}")
    if version != COLOR_FORMAT_VERSION:
        raise FrameDecodeError(f"unsupported color frame version {version}")
    if flags & ~COLOR_GRID_FLAG:
        raise FrameDecodeError(f"color frame has unknown header flags {flags:#x}")
    if width == 0 or height == 0:
        raise FrameDecodeError(f"color frame declares empty grid {width}x{height}")

    offset = HEADER_STRUCT.size
    rows: list[str] = []
    colors: list[Tuple[RGB | None, ...]] = []
    for row_index in range(height):
        if offset + ROW_STRUCT.size > len(data):
            raise FrameDecodeError(
                f"color frame has {row_index} rows, expected {height}"
            )
        (run_count,) = ROW_STRUCT.unpack_from(data, offset)
        offset += ROW_STRUCT.size
        if offset + run_count * RUN_STRUCT.size > len(data):
            raise FrameDecodeError(f"row {row_index} is truncated")
        characters: list[str] = []
        color_row: list[RGB | None] = []
        for _ in range(run_count):
            count, code_point, has_color, red, green, blue = RUN_STRUCT.unpack_from(
                data, offset
            )
            offset += RUN_STRUCT.size
            if count == 0:
                raise FrameDecodeError(f"row {row_index} has a zero-length run")
            if (
                code_point > MAX_CODE_POINT
                or code_point in (0x0A, 0x0D)
                or 0xD800 <= code_point <= 0xDFFF
            ):
                raise FrameDecodeError(
                    f"row {row_index} has invalid character code {code_point}"
                )
            if has_color not in (0, 1):
                raise FrameDecodeError(
                    f"row {row_index} has invalid color flag {has_color}"
                )
            if len(characters) + count > width:
                raise FrameDecodeError(
                    f"row {row_index} runs exceed {width} columns"
                )
            color = (red, green, blue) if has_color else None
            characters.extend(chr(code_point) * count)
            color_row.extend((color,) * count)
        if len(characters) != width:
            raise FrameDecodeError(
                f"row {row_index} has {len(characters)} columns, expected {width}"
            )
        rows.append("".join(characters))
        colors.append(tuple(color_row))
    if offset != len(data):
        raise FrameDecodeError(
            f"color frame has {len(data) - offset} trailing bytes after {height} rows"
        )
    try:
        if not flags & COLOR_GRID_FLAG:
            return Frame(rows=tuple(rows))
        return Frame(rows=tuple(rows), colors=tuple(colors))
    except DimensionMismatchError as exc:
        raise FrameDecodeError(str(exc)) from exc


def is_color_payload(data: bytes) -> bool:
    """Return True when the payload is a color frame."""
    return data[: len(COLOR_MAGIC)] == COLOR_MAGIC


def encode_frame(frame: Frame) -> bytes:
    """Encode a frame in color form when it carries colors, plain form otherwise."""
    if frame.has_color:
        return encode_color(frame)
    return encode_plain(frame).encode("utf-8")


def decode_frame(data: bytes) -> Frame:
    """Decode either frame form."""
    if is_color_payload(data):
        return decode_color(data)
    try:
        text_value = data.decode("utf-8", errors="strict")
    except UnicodeDecodeError as exc:
        raise FrameDecodeError(
            f"plain frame is not valid UTF-8 at byte offset {exc.start}"
        ) from exc
    return decode_plain(text_value)


def frame_extension(frame: Frame) -> str:
    """Return the file extension matching the frame's encoding."""
    return COLOR_EXTENSION if frame.has_color else PLAIN_EXTENSION
