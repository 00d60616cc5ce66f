"""Unit tests for frame and directory trimming."""

from __future__ import annotations

from pathlib import Path

import pytest

from domain.ascii_art import DimensionMismatchError, Frame, FrameValidationError
from domain.frame_codec import decode_color, encode_color
from service.frame_store import load_sequence, read_frame, write_frame, write_sequence
from service.trim import TrimResult, trim_directory, trim_frame, trim_sequence

GREEN = (0, 255, 0)


def grid_frame() -> Frame:
    """Build a 4 x 3 frame with distinct characters."""
    return Frame(rows=("abcd", "efgh", "ijkl"))


def test_zero_trim_is_identity() -> None:
    """Trimming nothing returns an equal frame."""
    assert trim_frame(grid_frame()) == grid_frame()


def test_trim_removes_edges() -> None:
    """Rows and columns are removed from each side."""
    trimmed = trim_frame(grid_frame(), left=1, right=1, top=1, bottom=0)
    assert trimmed.rows == ("fg", "jk")


def test_successive_trims_compose() -> None:
    """Trimming a then b from an edge equals trimming a + b."""
    frame = grid_frame()
    assert trim_frame(trim_frame(frame, left=1), left=2) == trim_frame(frame, left=3)
    assert trim_frame(trim_frame(frame, top=1), top=1) == trim_frame(frame, top=2)


def test_trim_keeps_colors_aligned() -> None:
    """Color cells are trimmed with their characters."""
    frame = Frame(
        rows=("ab", "cd"),
        colors=((GREEN, None), (None, (1, 2, 3))),
    )
    trimmed = trim_frame(frame, left=1, top=1)
    assert trimmed.rows == ("d",)
    assert trimmed.colors == (((1, 2, 3),),)


@pytest.mark.parametrize(
    "sides",
    [
        {"left": 2, "right": 2},
        {"top": 3},
        {"left": -1},
    ],
)
def test_invalid_trims_rejected(sides: dict) -> None:
    """Trims that empty the grid or use negative counts fail."""
    with pytest.raises(DimensionMismatchError):
        trim_frame(grid_frame(), **sides)


def test_trim_sequence_requires_equal_dimensions() -> None:
    """Sequences with mixed sizes are rejected."""
    with pytest.raises(DimensionMismatchError):
        trim_sequence([grid_frame(), Frame(rows=("ab",))], left=1)
    assert trim_sequence([grid_frame()], top=2) == [Frame(rows=("ijkl",))]


def test_trim_directory_to_output(tmp_path: Path) -> None:
    """A new output directory receives trimmed frames with the same indices."""
    source_dir = tmp_path / "frames"
    write_sequence(source_dir, [grid_frame(), grid_frame()], first_index=5)
    output_dir = tmp_path / "trimmed"

    result = trim_directory(source_dir, left=1, right=1, output_dir=output_dir)

    assert result == TrimResult(
        frame_count=2, width=2, height=3, total_bytes=2 * len(b"bc\nfg\njk\n")
    )
    assert load_sequence(output_dir).indices == (5, 6)
    assert read_frame(source_dir / "frame_0005.txt") == grid_frame()


def test_trim_directory_in_place_keeps_both_forms(tmp_path: Path) -> None:
    """Plain and color files are each rewritten in their own form."""
    color_frame = Frame(rows=("ab", "cd"), colors=((GREEN,) * 2, (GREEN,) * 2))
    write_frame(tmp_path, 1, Frame(rows=("ab", "cd")))
    write_frame(tmp_path, 1, color_frame)

    result = trim_directory(tmp_path, right=1, in_place=True)

    assert result.frame_count == 2
    assert read_frame(tmp_path / "frame_0001.txt") == Frame(rows=("a", "c"))
    color_bytes = (tmp_path / "frame_0001.cframe").read_bytes()
    assert decode_color(color_bytes) == trim_frame(color_frame, right=1)
    assert color_bytes == encode_color(trim_frame(color_frame, right=1))


def test_trim_directory_requires_explicit_target(tmp_path: Path) -> None:
    """Exactly one of output_dir or in_place must be chosen."""
    write_sequence(tmp_path, [grid_frame()])
    with pytest.raises(FrameValidationError):
        trim_directory(tmp_path, left=1)
    with pytest.raises(FrameValidationError):
        trim_directory(tmp_path, left=1, output_dir=tmp_path / "out", in_place=True)


def test_trim_directory_rejects_oversized_trim(tmp_path: Path) -> None:
    """Trim bounds are checked against the frame size."""
    write_sequence(tmp_path, [grid_frame()])
    with pytest.raises(DimensionMismatchError):
        trim_directory(tmp_path, top=2, bottom=1, in_place=True)
