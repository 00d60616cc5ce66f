"""Trimming of character frames and frame directories."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import List, Sequence

from domain.ascii_art import (
    INVALID_OPTIONS_CODE,
    DimensionMismatchError,
    Frame,
    FrameValidationError,
)
from service.frame_store import (
    FRAME_EXTENSIONS,
    check_dimensions,
    encode_for_extension,
    list_frame_files,
    read_frame,
)

LOGGER = logging.getLogger("ascii_frames")


@dataclass(frozen=True)
class TrimResult:
    """Summary of a directory trim."""

    frame_count: int
    width: int
    height: int
    total_bytes: int


def check_trim(width: int, height: int, left: int, right: int, top: int, bottom: int) -> None:
    """Raise DimensionMismatchError unless the trim leaves a non-empty grid."""
    if min(left, right, top, bottom) < 0:
        raise DimensionMismatchError("trim counts must be non-negative")
    if left + right >= width:
        raise DimensionMismatchError(
            f"trim columns ({left} left + {right} right = {left + right}) "
            f"must be less than frame width ({width})"
        )
    if top + bottom >= height:
        raise DimensionMismatchError(
            f"trim rows ({top} top + {bottom} bottom = {top + bottom}) "
            f"must be less than frame height ({height})"
        )


def trim_frame(
    frame: Frame, left: int = 0, right: int = 0, top: int = 0, bottom: int = 0
) -> Frame:
    """Remove columns and rows from the edges of a frame."""
    check_trim(frame.width, frame.height, left, right, top, bottom)
    column_stop = frame.width - right
    row_stop = frame.height - bottom
    rows = tuple(row[left:column_stop] for row in frame.rows[top:row_stop])
    if frame.colors is None:
        return Frame(rows=rows)
    colors = tuple(
        color_row[left:column_stop] for color_row in frame.colors[top:row_stop]
    )
    return Frame(rows=rows, colors=colors)


def trim_sequence(
    frames: Sequence[Frame],
    left: int = 0,
    right: int = 0,
    top: int = 0,
    bottom: int = 0,
) -> List[Frame]:
    """Apply the same trim to every frame."""
    check_dimensions(frames, [f"frame {position}" for position in range(len(frames))])
    return [trim_frame(frame, left, right, top, bottom) for frame in frames]


def trim_directory(
    source_dir: Path,
    left: int = 0,
    right: int = 0,
    top: int = 0,
    bottom: int = 0,
    output_dir: Path | None = None,
    in_place: bool = False,
) -> TrimResult:
    """Trim every frame file of a directory, keeping indices and forms.

    Either ``output_dir`` or ``in_place=True`` must be given, not both.
    """
    if in_place == (output_dir is not None):
        raise FrameValidationError(
            INVALID_OPTIONS_CODE,
            "choose exactly one of output_dir or in_place for trimming",
        )
    target_dir = source_dir if output_dir is None else output_dir

    frame_files = [
        frame_file
        for extension in FRAME_EXTENSIONS
        for frame_file in list_frame_files(source_dir, extension)
    ]
    if not frame_files:
        raise FrameValidationError(
            INVALID_OPTIONS_CODE, f"no frame_* files found in {source_dir}"
        )
    frames = [read_frame(frame_file.path) for frame_file in frame_files]
    check_dimensions(frames, [str(frame_file.path) for frame_file in frame_files])
    trimmed = [trim_frame(frame, left, right, top, bottom) for frame in frames]

    target_dir.mkdir(parents=True, exist_ok=True)
    total_bytes = 0
    for frame_file, frame in zip(frame_files, trimmed):
        payload = encode_for_extension(frame, frame_file.path.suffix)
        (target_dir / frame_file.path.name).write_bytes(payload)
        total_bytes += len(payload)

    result = TrimResult(
        frame_count=len(trimmed),
        width=trimmed[0].width,
        height=trimmed[0].height,
        total_bytes=total_bytes,
    )
    LOGGER.info(
        "ascii_frames.trim.done: %d files, %dx%d, %d bytes -> %s",
        result.frame_count,
        result.width,
        result.height,
        result.total_bytes,
        target_dir,
    )
    return result
