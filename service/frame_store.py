"""On-disk frame sequences: naming, listing, loading and writing."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import re
from typing import List, Sequence, Tuple

from domain.ascii_art import (
    INPUT_PATH_CODE,
    DimensionMismatchError,
    Frame,
    FrameDecodeError,
    FrameValidationError,
    IndexGapError,
)
from domain.frame_codec import (
    COLOR_EXTENSION,
    PLAIN_EXTENSION,
    decode_frame,
    encode_color,
    encode_frame,
    encode_plain,
    frame_extension,
)

LOGGER = logging.getLogger("ascii_frames")

FRAME_PREFIX = "frame_"
FRAME_NAME_PATTERN = re.compile(r"^frame_(\d+)(\.txt|\.cframe)$")
DETAILS_FILE_NAME = "details.md"
FRAME_EXTENSIONS = (PLAIN_EXTENSION, COLOR_EXTENSION)


@dataclass(frozen=True)
class FrameFile:
    """A frame file and the index parsed from its name."""

    index: int
    path: Path


@dataclass(frozen=True)
class FrameSequence:
    """Frames loaded from disk in index order."""

    indices: Tuple[int, ...]
    frames: Tuple[Frame, ...]
    extension: str

    @property
    def width(self) -> int:
        return self.frames[0].width

    @property
    def height(self) -> int:
        return self.frames[0].height


def frame_file_name(index: int, extension: str) -> str:
    """Return the canonical frame file name for an index."""
    if index < 0:
        raise IndexGapError(f"frame index must be non-negative, got {index}")
    return f"{FRAME_PREFIX}{index:04d}{extension}"


def parse_frame_index(file_name: str) -> int | None:
    """Return the frame index of a frame file name, or None."""
    match = FRAME_NAME_PATTERN.fullmatch(file_name)
    if not match:
        return None
    return int(match.group(1))


def prefers_color(directory: Path) -> bool:
    """Return True when the directory holds any color-form frames."""
    return any(directory.glob(f"{FRAME_PREFIX}*{COLOR_EXTENSION}"))


def list_frame_files(directory: Path, extension: str | None = None) -> List[FrameFile]:
    """List frame files of one form in index order.

    Without an explicit extension, color frames are used when present.
    """
    if not directory.is_dir():
        raise FrameValidationError(
            INPUT_PATH_CODE, f"frame directory does not exist: {directory}"
        )
    if extension is None:
        extension = COLOR_EXTENSION if prefers_color(directory) else PLAIN_EXTENSION
    frame_files: List[FrameFile] = []
    for entry_name in os.listdir(directory):
        if not entry_name.endswith(extension):
            continue
        index_value = parse_frame_index(entry_name)
        if index_value is None:
            continue
        frame_files.append(FrameFile(index=index_value, path=directory / entry_name))
    frame_files.sort(key=lambda frame_file: frame_file.index)
    return frame_files


def check_contiguous(frame_files: Sequence[FrameFile], directory: Path) -> None:
    """Raise IndexGapError when indices skip or repeat."""
    for previous, current in zip(frame_files, frame_files[1:]):
        if current.index == previous.index:
            raise IndexGapError(
                f"duplicate frame index {current.index} in {directory}"
            )
        if current.index != previous.index + 1:
            raise IndexGapError(
                f"frame index {previous.index + 1} missing in {directory} "
                f"(found {previous.index} then {current.index})"
            )


def read_frame(path: Path) -> Frame:
    """Read and decode one frame file."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise FrameDecodeError(f"failed to read frame {path}: {exc}") from exc
    try:
        return decode_frame(data)
    except FrameDecodeError as exc:
        raise FrameDecodeError(f"{path}: {exc}") from exc


def encode_for_extension(frame: Frame, extension: str) -> bytes:
    """Encode a frame in the form its file extension names."""
    if extension == COLOR_EXTENSION:
        return encode_color(frame)
    return encode_plain(frame).encode("utf-8")


def write_encoded_frame(
    directory: Path, index: int, extension: str, payload: bytes
) -> Path:
    """Write already encoded frame bytes under their canonical name."""
    target_path = directory / frame_file_name(index, extension)
    target_path.write_bytes(payload)
    return target_path


def write_frame(
    directory: Path, index: int, frame: Frame, extension: str | None = None
) -> Path:
    """Encode a frame and write it under its canonical name.

    Without an explicit extension the frame is written in its own form.
    """
    if extension is None:
        return write_encoded_frame(
            directory, index, frame_extension(frame), encode_frame(frame)
        )
    return write_encoded_frame(
        directory, index, extension, encode_for_extension(frame, extension)
    )


def check_dimensions(frames: Sequence[Frame], labels: Sequence[str]) -> None:
    """Raise DimensionMismatchError when frames do not share W x H."""
    if not frames:
        return
    width, height = frames[0].width, frames[0].height
    for frame, label in zip(frames, labels):
        if frame.width != width or frame.height != height:
            raise DimensionMismatchError(
                f"{label} is {frame.width}x{frame.height}, expected {width}x{height}"
            )


def load_sequence(
    directory: Path, extension: str | None = None, require_contiguous: bool = True
) -> FrameSequence:
    """Load every frame of a directory, checking indices and dimensions."""
    frame_files = list_frame_files(directory, extension)
    if not frame_files:
        raise FrameValidationError(
            INPUT_PATH_CODE, f"no frame_* files found in {directory}"
        )
    if require_contiguous:
        check_contiguous(frame_files, directory)
    frames = tuple(read_frame(frame_file.path) for frame_file in frame_files)
    check_dimensions(frames, [str(frame_file.path) for frame_file in frame_files])
    LOGGER.debug(
        "ascii_frames.frames.loaded: %d frames from %s", len(frames), directory
    )
    return FrameSequence(
        indices=tuple(frame_file.index for frame_file in frame_files),
        frames=frames,
        extension=frame_files[0].path.suffix,
    )


def write_sequence(
    directory: Path,
    frames: Sequence[Frame],
    first_index: int = 1,
    extension: str | None = None,
) -> List[Path]:
    """Write frames with contiguous indices starting at first_index."""
    directory.mkdir(parents=True, exist_ok=True)
    return [
        write_frame(directory, first_index + offset, frame, extension)
        for offset, frame in enumerate(frames)
    ]


def remove_frame_files(directory: Path, extensions: Sequence[str] = FRAME_EXTENSIONS) -> int:
    """Delete frame files of the given forms and return how many were removed."""
    removed = 0
    for extension in extensions:
        for frame_file in list_frame_files(directory, extension):
            frame_file.path.unlink()
            removed += 1
    return removed


def write_details(
    directory: Path,
    version: str,
    frame_count: int,
    luminance: int,
    font_ratio: float,
    columns: int | None,
    fps: int | None,
) -> Path:
    """Write the generation summary next to the frames."""
    lines = [
        f"Version: {version}",
        f"Frames: {frame_count}",
        f"Luminance: {luminance}",
        f"Font Ratio: {font_ratio}",
        f"Columns: {columns if columns is not None else 'source'}",
    ]
    if fps is not None:
        lines.append(f"FPS: {fps}")
    details_path = directory / DETAILS_FILE_NAME
    details_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return details_path
