"""Parallel pixel-frame to character-frame conversion."""

from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import tempfile
from typing import Callable, Dict, List, Protocol, Sequence, Tuple

import numpy as np
from PIL import Image

from domain.ascii_art import (
    INPUT_PATH_CODE,
    ConversionOptions,
    DimensionMismatchError,
    Frame,
    FrameDecodeError,
    FrameValidationError,
    compute_target_size,
    map_pixels,
)
from domain.frame_codec import encode_frame, frame_extension
from service.frame_store import write_encoded_frame
from service.media_tools import FfmpegToolkit, MediaToolkit

LOGGER = logging.getLogger("ascii_frames")

FRAME_FAILED_CODE = "ascii_frames.convert.frame_failed"
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")
AUDIO_SIDE_FILE_NAME = "audio.mka"
MAX_DEFAULT_WORKERS = 8
PENDING_PER_WORKER = 4

ProgressCallback = Callable[[int, int], None]


class FrameConversionError(RuntimeError):
    """Strict-mode conversion failure of one frame."""

    def __init__(self, index: int, cause: Exception) -> None:
        super().__init__(f"frame {index}: {cause}")
        self.code = FRAME_FAILED_CODE
        self.index = index
        self.cause = cause


class PixelSource(Protocol):
    """A frame index and a way to obtain its RGB pixels."""

    index: int

    def read_pixels(self) -> np.ndarray:
        ...


class FrameSink(Protocol):
    """Destination for converted frames, keyed by frame index."""

    def write(self, index: int, frame: Frame, encoded: bytes) -> Path | None:
        ...


@dataclass(frozen=True, eq=False)
class ArrayPixelSource:
    """Pixels already held in memory as an H x W x 3 array."""

    index: int
    pixels: np.ndarray

    def read_pixels(self) -> np.ndarray:
        return self.pixels


@dataclass(frozen=True)
class ImagePixelSource:
    """An image file decoded and resized on demand."""

    index: int
    path: Path
    columns: int | None
    font_ratio: float

    def read_pixels(self) -> np.ndarray:
        return load_image_pixels(self.path, self.columns, self.font_ratio)


@dataclass(frozen=True)
class DirectoryFrameSink:
    """Writes each frame to frame_NNNN.txt or frame_NNNN.cframe."""

    directory: Path

    def write(self, index: int, frame: Frame, encoded: bytes) -> Path:
        return write_encoded_frame(
            self.directory, index, frame_extension(frame), encoded
        )


@dataclass(frozen=True)
class FrameResult:
    """Outcome of converting one source frame.

    With a sink, only the output path is kept; the frame itself is dropped
    once written.
    """

    index: int
    frame: Frame | None = None
    encoded: bytes | None = None
    output_path: Path | None = None
    error: FrameValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ConversionReport:
    """Per-index results in input order."""

    results: Tuple[FrameResult, ...] = field(default_factory=tuple)

    @property
    def frames(self) -> Tuple[Frame, ...]:
        return tuple(result.frame for result in self.results if result.frame is not None)

    @property
    def errors(self) -> Tuple[FrameResult, ...]:
        return tuple(result for result in self.results if result.error is not None)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.ok)


def default_worker_count() -> int:
    """Return the default worker pool size."""
    return max(1, min(MAX_DEFAULT_WORKERS, os.cpu_count() or 1))


def load_image_pixels(path: Path, columns: int | None, font_ratio: float) -> np.ndarray:
    """Decode an image file and resize it to the character grid size."""
    try:
        with Image.open(path) as image:
            rgb_image = image.convert("RGB")
    except FileNotFoundError as exc:
        raise FrameDecodeError(f"image not found: {path}") from exc
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise FrameDecodeError(f"failed to decode image {path}: {exc}") from exc
    target_size = compute_target_size(
        rgb_image.width, rgb_image.height, columns, font_ratio
    )
    if target_size != rgb_image.size:
        rgb_image = rgb_image.resize(target_size, Image.Resampling.LANCZOS)
    return np.asarray(rgb_image, dtype=np.uint8)


def convert_source(
    source: PixelSource, options: ConversionOptions, with_color: bool
) -> FrameResult:
    """Convert and encode one source; validation failures become a per-frame error."""
    try:
        frame = map_pixels(source.read_pixels(), options, with_color)
    except FrameValidationError as exc:
        return FrameResult(index=source.index, error=exc)
    return FrameResult(index=source.index, frame=frame, encoded=encode_frame(frame))


def accept_result(
    result: FrameResult,
    expected_size: Tuple[int, int],
    sink: FrameSink | None,
) -> FrameResult:
    """Check a converted frame against the sequence size and hand it to the sink."""
    frame = result.frame
    if frame is None:
        return result
    if (frame.width, frame.height) != expected_size:
        error = DimensionMismatchError(
            f"frame {result.index} is {frame.width}x{frame.height}, "
            f"expected {expected_size[0]}x{expected_size[1]}"
        )
        return FrameResult(index=result.index, error=error)
    if sink is None:
        return result
    output_path = sink.write(result.index, frame, result.encoded or encode_frame(frame))
    return FrameResult(index=result.index, output_path=output_path)


def convert_frames(
    sources: Sequence[PixelSource],
    options: ConversionOptions,
    with_color: bool = False,
    sink: FrameSink | None = None,
    max_workers: int | None = None,
    strict: bool = False,
    progress: ProgressCallback | None = None,
) -> ConversionReport:
    """Convert every source on a bounded worker pool, keeping input order.

    Workers only convert and encode. Results are then checked in input order
    against the size of the first successful frame, and only matching frames
    reach the sink. At most ``PENDING_PER_WORKER`` sources per worker are
    dispatched ahead of the oldest unchecked one, so a strict-mode failure
    leaves the rest of the queue unstarted.
    """
    seen_indices: set[int] = set()
    for source in sources:
        if source.index in seen_indices:
            raise FrameValidationError(
                INPUT_PATH_CODE, f"duplicate source frame index {source.index}"
            )
        seen_indices.add(source.index)

    total = len(sources)
    workers = max_workers or default_worker_count()
    window = workers * PENDING_PER_WORKER
    LOGGER.debug("ascii_frames.convert.start: %d frames, %d workers", total, workers)

    results: List[FrameResult] = []
    finished: Dict[int, FrameResult] = {}
    pending: Dict[Future[FrameResult], int] = {}
    expected_size: Tuple[int, int] | None = None
    next_slot = 0
    executor = ThreadPoolExecutor(max_workers=workers)
    try:
        while len(results) < total:
            while next_slot < total and next_slot - len(results) < window:
                future = executor.submit(
                    convert_source, sources[next_slot], options, with_color
                )
                pending[future] = next_slot
                next_slot += 1
            done, _ = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                finished[pending.pop(future)] = future.result()
            while len(results) in finished:
                result = finished.pop(len(results))
                if expected_size is None and result.frame is not None:
                    expected_size = (result.frame.width, result.frame.height)
                if expected_size is not None:
                    result = accept_result(result, expected_size, sink)
                results.append(result)
                if result.error is not None:
                    LOGGER.warning(
                        "%s: frame %d: %s", FRAME_FAILED_CODE, result.index, result.error
                    )
                    if strict:
                        raise FrameConversionError(result.index, result.error)
                if progress is not None:
                    progress(len(results), total)
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
    return ConversionReport(results=tuple(results))


def preprocess_images(
    image_paths: Sequence[Path],
    work_dir: Path,
    toolkit: MediaToolkit,
    preprocess_filter: str,
) -> List[Path]:
    """Run each still image through the ffmpeg filter chain into work_dir."""
    return [
        toolkit.preprocess_image(
            str(image_path),
            str(work_dir / f"{position:04d}_{image_path.stem}.png"),
            preprocess_filter,
        )
        for position, image_path in enumerate(image_paths, start=1)
    ]


def convert_image_file(
    path: Path,
    options: ConversionOptions,
    with_color: bool = False,
    toolkit: MediaToolkit | None = None,
    preprocess_filter: str | None = None,
) -> Frame:
    """Convert a single image file to a frame."""
    if not preprocess_filter:
        pixels = load_image_pixels(path, options.columns, options.font_ratio)
        return map_pixels(pixels, options, with_color)
    with tempfile.TemporaryDirectory(prefix="ascii_frames_") as work_dir:
        (filtered_path,) = preprocess_images(
            [path], Path(work_dir), toolkit or FfmpegToolkit(), preprocess_filter
        )
        pixels = load_image_pixels(filtered_path, options.columns, options.font_ratio)
    return map_pixels(pixels, options, with_color)


def list_image_files(directory: Path) -> List[Path]:
    """List image files of a directory in name order."""
    if not directory.is_dir():
        raise FrameValidationError(
            INPUT_PATH_CODE, f"input directory does not exist: {directory}"
        )
    return sorted(
        entry
        for entry in directory.iterdir()
        if entry.is_file() and entry.suffix.lower() in IMAGE_EXTENSIONS
    )


def convert_directory(
    input_dir: Path,
    output_dir: Path,
    options: ConversionOptions,
    with_color: bool = False,
    max_workers: int | None = None,
    strict: bool = False,
    progress: ProgressCallback | None = None,
    toolkit: MediaToolkit | None = None,
    preprocess_filter: str | None = None,
) -> ConversionReport:
    """Convert every image of a directory into indexed frame files."""
    image_files = list_image_files(input_dir)
    if not image_files:
        raise FrameValidationError(
            INPUT_PATH_CODE, f"no .png/.jpg/.jpeg images found in {input_dir}"
        )
    output_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix="ascii_frames_") as work_dir:
        if preprocess_filter:
            image_files = preprocess_images(
                image_files, Path(work_dir), toolkit or FfmpegToolkit(), preprocess_filter
            )
        sources = [
            ImagePixelSource(
                index=index_value,
                path=image_path,
                columns=options.columns,
                font_ratio=options.font_ratio,
            )
            for index_value, image_path in enumerate(image_files, start=1)
        ]
        return convert_frames(
            sources,
            options,
            with_color=with_color,
            sink=DirectoryFrameSink(output_dir),
            max_workers=max_workers,
            strict=strict,
            progress=progress,
        )


def convert_video(
    video_path: Path,
    output_dir: Path,
    options: ConversionOptions,
    toolkit: MediaToolkit,
    fps: int,
    start: str | None = None,
    end: str | None = None,
    preprocess_filter: str | None = None,
    with_color: bool = False,
    keep_images: bool = False,
    extract_audio: bool = False,
    max_workers: int | None = None,
    strict: bool = False,
    progress: ProgressCallback | None = None,
) -> ConversionReport:
    """Extract frames from a video and convert them."""
    columns = options.columns
    if columns is None:
        columns = toolkit.probe(str(video_path)).width
    output_dir.mkdir(parents=True, exist_ok=True)
    image_paths = toolkit.extract_frames(
        str(video_path),
        str(output_dir),
        fps,
        columns,
        start,
        end,
        preprocess_filter,
    )
    sources = [
        ImagePixelSource(
            index=index_value,
            path=Path(image_path),
            columns=None,
            font_ratio=options.font_ratio,
        )
        for index_value, image_path in enumerate(image_paths, start=1)
    ]
    report = convert_frames(
        sources,
        options,
        with_color=with_color,
        sink=DirectoryFrameSink(output_dir),
        max_workers=max_workers,
        strict=strict,
        progress=progress,
    )
    if extract_audio:
        toolkit.extract_audio(str(video_path), str(output_dir / AUDIO_SIDE_FILE_NAME))
    if not keep_images:
        for image_path in image_paths:
            Path(image_path).unlink(missing_ok=True)
    return report
