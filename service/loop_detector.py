"""Loop detection over frame sequences, plus loop export and repetition."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from domain.ascii_art import (
    INPUT_PATH_CODE,
    INVALID_OPTIONS_CODE,
    Frame,
    FrameValidationError,
)
from domain.frame_codec import encode_frame
from service.frame_store import (
    FRAME_EXTENSIONS,
    FrameSequence,
    list_frame_files,
    load_sequence,
    remove_frame_files,
    write_sequence,
)

LOGGER = logging.getLogger("ascii_frames")

FINGERPRINT_DIGEST_SIZE = 16


@dataclass(frozen=True)
class LoopMatch:
    """A periodic region: frames[offset:end] repeat with the given period."""

    offset: int
    period: int
    end: int
    repeats: int


def frame_fingerprint(frame: Frame) -> bytes:
    """Return a short digest of the encoded frame."""
    return hashlib.blake2b(
        encode_frame(frame), digest_size=FINGERPRINT_DIGEST_SIZE
    ).digest()


def match_run_lengths(fingerprints: Sequence[bytes], period: int) -> List[int]:
    """For each i, count consecutive j >= i with fingerprint[j] == fingerprint[j + period]."""
    count = len(fingerprints) - period
    runs = [0] * (count + 1)
    for position in range(count - 1, -1, -1):
        if fingerprints[position] == fingerprints[position + period]:
            runs[position] = runs[position + 1] + 1
    return runs[:count]


def verified_run(frames: Sequence[Frame], offset: int, period: int, limit: int) -> int:
    """Compare frames structurally and return the confirmed run length."""
    for step in range(limit):
        if frames[offset + step] != frames[offset + step + period]:
            return step
    return limit


def detect_loop(
    frames: Sequence[Frame], min_period: int = 1, min_repeats: int = 2
) -> LoopMatch | None:
    """Find the shortest period and earliest offset of a repeating region.

    The region covers at least ``min_repeats`` full periods and extends up
    to the first frame that breaks the repetition. Returns None when no
    region qualifies.
    """
    if min_period < 1:
        raise FrameValidationError(INVALID_OPTIONS_CODE, "min_period must be >= 1")
    if min_repeats < 2:
        raise FrameValidationError(INVALID_OPTIONS_CODE, "min_repeats must be >= 2")

    fingerprints = [frame_fingerprint(frame) for frame in frames]
    frame_count = len(frames)
    for period in range(min_period, frame_count // min_repeats + 1):
        required = period * (min_repeats - 1)
        runs = match_run_lengths(fingerprints, period)
        for offset, run_length in enumerate(runs):
            if run_length < required:
                continue
            confirmed = verified_run(frames, offset, period, run_length)
            if confirmed < required:
                LOGGER.debug(
                    "ascii_frames.loop.fingerprint_collision: offset %d period %d",
                    offset,
                    period,
                )
                continue
            end = offset + confirmed + period
            match = LoopMatch(
                offset=offset,
                period=period,
                end=end,
                repeats=(end - offset) // period,
            )
            LOGGER.debug("ascii_frames.loop.found: %s", match)
            return match
    return None


def find_repeated_frames(
    frames: Sequence[Frame], indices: Sequence[int] | None = None
) -> List[Tuple[int, int]]:
    """List (start, end) positions of identical frames that are not neighbors.

    ``indices`` are the frame numbers used to decide adjacency; positions are
    used when omitted.
    """
    frame_numbers = list(indices) if indices is not None else list(range(len(frames)))
    if len(frame_numbers) != len(frames):
        raise FrameValidationError(
            INVALID_OPTIONS_CODE, "indices must match the number of frames"
        )
    positions_by_fingerprint: Dict[bytes, List[int]] = defaultdict(list)
    for position, frame in enumerate(frames):
        positions_by_fingerprint[frame_fingerprint(frame)].append(position)

    candidates = set()
    for positions in positions_by_fingerprint.values():
        for first, start in enumerate(positions):
            for end in positions[first + 1 :]:
                if frame_numbers[end] <= frame_numbers[start] + 1:
                    continue
                if frames[start] == frames[end]:
                    candidates.add((start, end))
    return sorted(candidates)


def check_segment(frame_count: int, start: int, end: int) -> None:
    """Validate an inclusive segment of positions."""
    if start < 0 or end >= frame_count or start >= end:
        raise FrameValidationError(
            INVALID_OPTIONS_CODE,
            f"loop segment {start}..{end} is invalid for {frame_count} frames",
        )


def loop_segment(frames: Sequence[Frame], start: int, end: int) -> List[Frame]:
    """Return frames start..end inclusive."""
    check_segment(len(frames), start, end)
    return list(frames[start : end + 1])


def repeat_segment(frames: Sequence[Frame], start: int, end: int) -> List[Frame]:
    """Return the frames with start..end duplicated right after end."""
    check_segment(len(frames), start, end)
    return (
        list(frames[: end + 1])
        + list(frames[start : end + 1])
        + list(frames[end + 1 :])
    )


def position_of(sequence: FrameSequence, frame_index: int) -> int:
    """Return the position of a frame number within a loaded sequence."""
    try:
        return sequence.indices.index(frame_index)
    except ValueError as exc:
        raise FrameValidationError(
            INVALID_OPTIONS_CODE, f"frame {frame_index} is not in the sequence"
        ) from exc


def default_loop_directory(source_dir: Path, start_index: int, end_index: int) -> Path:
    """Return the sibling directory used for an exported loop."""
    return source_dir.with_name(f"{source_dir.name}_loop_{start_index}_{end_index}")


def export_loop(
    source_dir: Path,
    start_index: int,
    end_index: int,
    output_dir: Path | None = None,
) -> Path:
    """Copy frames start..end inclusive into a new directory numbered from 1."""
    sequence = load_sequence(source_dir, require_contiguous=False)
    segment = loop_segment(
        sequence.frames,
        position_of(sequence, start_index),
        position_of(sequence, end_index),
    )
    target_dir = output_dir or default_loop_directory(source_dir, start_index, end_index)
    write_sequence(target_dir, segment, extension=sequence.extension)
    LOGGER.info(
        "ascii_frames.loop.exported: frames %d..%d -> %s",
        start_index,
        end_index,
        target_dir,
    )
    return target_dir


def repeat_loop(source_dir: Path, start_index: int, end_index: int) -> int:
    """Rewrite a frame directory with start..end repeated after end.

    Plain and color files are each rewritten in their own form so that both
    stay numbered alike.
    """
    rewritten: List[Tuple[str, List[Frame]]] = []
    for extension in FRAME_EXTENSIONS:
        if not list_frame_files(source_dir, extension):
            continue
        sequence = load_sequence(source_dir, extension, require_contiguous=False)
        rewritten.append(
            (
                extension,
                repeat_segment(
                    sequence.frames,
                    position_of(sequence, start_index),
                    position_of(sequence, end_index),
                ),
            )
        )
    if not rewritten:
        raise FrameValidationError(
            INPUT_PATH_CODE, f"no frame_* files found in {source_dir}"
        )
    for extension, frames in rewritten:
        remove_frame_files(source_dir, (extension,))
        write_sequence(source_dir, frames, extension=extension)
    frame_count = len(rewritten[0][1])
    LOGGER.info(
        "ascii_frames.loop.repeated: frames %d..%d, %d frames total",
        start_index,
        end_index,
        frame_count,
    )
    return frame_count
