"""Domain types, validation and the pixel-to-character mapping for ascii_frames."""

from __future__ import annotations

from dataclasses import dataclass
import functools
import math
import re
from typing import Tuple

import numpy as np

INVALID_OPTIONS_CODE = "ascii_frames.input.invalid_options"
INVALID_PALETTE_CODE = "ascii_frames.input.invalid_palette"
INVALID_CONFIG_CODE = "ascii_frames.input.invalid_config"
INVALID_TIME_CODE = "ascii_frames.input.invalid_time"
INVALID_PRESET_CODE = "ascii_frames.input.invalid_preprocess"
INPUT_PATH_CODE = "ascii_frames.input.path_error"
FRAME_DECODE_CODE = "ascii_frames.frame.decode_error"
DIMENSION_MISMATCH_CODE = "ascii_frames.frame.dimension_mismatch"
INDEX_GAP_CODE = "ascii_frames.frame.index_gap"
INVALID_COLOR_CODE = "ascii_frames.frame.invalid_color"

DEFAULT_PALETTE = (
    " .'`^,:;Il!i><~+_-?][}{1)(|/tfjrxnuvczXYUJCLQ0OZmwqpdbkhao*#MW&8%B@$"
)
DEFAULT_COLUMNS = 400
DEFAULT_FONT_RATIO = 0.7
DEFAULT_LUMINANCE_THRESHOLD = 20
DEFAULT_FPS = 30
DEFAULT_FONT_SIZE_PX = 14.0
DEFAULT_QUALITY_FACTOR = 20
DEFAULT_FOREGROUND_RGB = (235, 235, 235)
DEFAULT_BACKGROUND_RGB = (0, 0, 0)
BLANK_CHARACTER = " "
MAX_QUALITY_FACTOR = 51

LUMA_RED = 2126
LUMA_GREEN = 7152
LUMA_BLUE = 722
LUMA_SCALE = 10000

TIMESTAMP_PATTERN = re.compile(r"^\d+(?:\.\d+)?(?::\d+(?:\.\d+)?){0,2}$")

RGB = Tuple[int, int, int]


class FrameValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class FrameDecodeError(FrameValidationError):
    """Malformed source pixel data or malformed encoded frame."""

    def __init__(self, message: str) -> None:
        super().__init__(FRAME_DECODE_CODE, message)


class DimensionMismatchError(FrameValidationError):
    """Inconsistent frame dimensions or an out-of-bounds grid request."""

    def __init__(self, message: str) -> None:
        super().__init__(DIMENSION_MISMATCH_CODE, message)


class IndexGapError(FrameValidationError):
    """A frame sequence is missing an expected index."""

    def __init__(self, message: str) -> None:
        super().__init__(INDEX_GAP_CODE, message)


def validate_palette(palette: str) -> None:
    """Validate a darkest-to-lightest palette string."""
    if not palette:
        raise FrameValidationError(INVALID_PALETTE_CODE, "palette must not be empty")
    if len(set(palette)) != len(palette):
        raise FrameValidationError(
            INVALID_PALETTE_CODE, f"palette characters must be distinct: {palette!r}"
        )
    for character in palette:
        if character in "\r\n" or not character.isprintable():
            raise FrameValidationError(
                INVALID_PALETTE_CODE,
                f"palette contains a non-printable character: {character!r}",
            )


def validate_rgb(value: Tuple[int, ...], label: str) -> None:
    """Validate an RGB triple."""
    if len(value) != 3:
        raise FrameValidationError(INVALID_OPTIONS_CODE, f"{label} must have 3 channels")
    for channel in value:
        if channel < 0 or channel > 255:
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, f"{label} channel out of range: {channel}"
            )


@dataclass(frozen=True)
class ConversionOptions:
    """Immutable settings for pixel-to-character conversion."""

    columns: int | None = DEFAULT_COLUMNS
    font_ratio: float = DEFAULT_FONT_RATIO
    luminance_threshold: int = DEFAULT_LUMINANCE_THRESHOLD
    palette: str = DEFAULT_PALETTE

    def __post_init__(self) -> None:
        if self.columns is not None and self.columns <= 0:
            raise FrameValidationError(INVALID_OPTIONS_CODE, "columns must be positive")
        if not self.font_ratio > 0 or not math.isfinite(self.font_ratio):
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, "font_ratio must be a positive number"
            )
        if self.luminance_threshold < 0 or self.luminance_threshold > 255:
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, "luminance_threshold must be within [0, 255]"
            )
        validate_palette(self.palette)


@dataclass(frozen=True)
class VideoRenderOptions:
    """Immutable settings for rendering character frames back to pixels."""

    output_target: str
    font_size_px: float = DEFAULT_FONT_SIZE_PX
    quality_factor: int = DEFAULT_QUALITY_FACTOR
    mux_audio: bool = False
    fps: int = DEFAULT_FPS
    font_ratio: float = DEFAULT_FONT_RATIO
    foreground_rgb: RGB = DEFAULT_FOREGROUND_RGB
    background_rgb: RGB = DEFAULT_BACKGROUND_RGB
    font_path: str | None = None
    audio_track: str | None = None

    def __post_init__(self) -> None:
        if not self.output_target.strip():
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, "output_target must be non-empty"
            )
        if not self.font_size_px > 0 or not math.isfinite(self.font_size_px):
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, "font_size_px must be positive"
            )
        if self.quality_factor < 0 or self.quality_factor > MAX_QUALITY_FACTOR:
            raise FrameValidationError(
                INVALID_OPTIONS_CODE,
                f"quality_factor must be within [0, {MAX_QUALITY_FACTOR}]",
            )
        if self.fps <= 0:
            raise FrameValidationError(INVALID_OPTIONS_CODE, "fps must be positive")
        if not self.font_ratio > 0 or not math.isfinite(self.font_ratio):
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, "font_ratio must be a positive number"
            )
        validate_rgb(self.foreground_rgb, "foreground_rgb")
        validate_rgb(self.background_rgb, "background_rgb")
        if self.mux_audio and not self.audio_track:
            raise FrameValidationError(
                INVALID_OPTIONS_CODE, "mux_audio requires an audio_track"
            )


@dataclass(frozen=True)
class Cell:
    """One grid position: a display character and an optional color."""

    character: str
    color: RGB | None = None


BLANK_CELL = Cell(BLANK_CHARACTER, None)


def check_cell_colors(color_row: Tuple[RGB | None, ...], row_index: int) -> None:
    """Raise unless every stored color of a row is an (r, g, b) tuple of 0..255."""
    try:
        distinct_colors = set(color_row)
    except TypeError as exc:
        raise FrameValidationError(
            INVALID_COLOR_CODE, f"color row {row_index} holds a non-tuple color"
        ) from exc
    distinct_colors.discard(None)
    for color in distinct_colors:
        if (
            not isinstance(color, tuple)
            or len(color) != 3
            or not all(
                isinstance(channel, int) and 0 <= channel <= 255 for channel in color
            )
        ):
            raise FrameValidationError(
                INVALID_COLOR_CODE,
                f"color row {row_index} holds {color!r}, expected (r, g, b) in 0..255",
            )


@dataclass(frozen=True)
class Frame:
    """Immutable W x H character grid with optional per-cell colors."""

    rows: Tuple[str, ...]
    colors: Tuple[Tuple[RGB | None, ...], ...] | None = None

    def __post_init__(self) -> None:
        if not self.rows:
            raise DimensionMismatchError("frame must have at least one row")
        width = len(self.rows[0])
        if width == 0:
            raise DimensionMismatchError("frame must have at least one column")
        for row_index, row in enumerate(self.rows):
            if len(row) != width:
                raise DimensionMismatchError(
                    f"row {row_index} has {len(row)} columns, expected {width}"
                )
            if "\n" in row or "\r" in row:
                raise DimensionMismatchError(f"row {row_index} contains a line break")
        if self.colors is None:
            return
        if len(self.colors) != len(self.rows):
            raise DimensionMismatchError(
                f"color grid has {len(self.colors)} rows, expected {len(self.rows)}"
            )
        for row_index, color_row in enumerate(self.colors):
            if len(color_row) != width:
                raise DimensionMismatchError(
                    f"color row {row_index} has {len(color_row)} columns, "
                    f"expected {width}"
                )
            check_cell_colors(color_row, row_index)

    @property
    def width(self) -> int:
        return len(self.rows[0])

    @property
    def height(self) -> int:
        return len(self.rows)

    @property
    def has_color(self) -> bool:
        return self.colors is not None

    def cell(self, x: int, y: int) -> Cell:
        """Return the cell at column x, row y."""
        character = self.rows[y][x]
        color = self.colors[y][x] if self.colors is not None else None
        return Cell(character, color)

    @classmethod
    def from_cells(cls, grid: Tuple[Tuple[Cell, ...], ...]) -> "Frame":
        """Build a frame from a grid of cells."""
        rows = tuple("".join(cell.character for cell in row) for row in grid)
        if all(cell.color is None for row in grid for cell in row):
            return cls(rows=rows)
        colors = tuple(tuple(cell.color for cell in row) for row in grid)
        return cls(rows=rows, colors=colors)


def luminance(red: int, green: int, blue: int) -> int:
    """Return the integer-truncated Rec. 709 luminance of a pixel."""
    return (LUMA_RED * red + LUMA_GREEN * green + LUMA_BLUE * blue) // LUMA_SCALE


def palette_index(luma: int, threshold: int, palette_size: int) -> int:
    """Map a non-blank luminance onto a palette index."""
    value_range = max(1, 255 - threshold)
    effective = luma - threshold
    index_value = effective * (palette_size - 1) // value_range
    return min(max(index_value, 0), palette_size - 1)


@functools.lru_cache(maxsize=64)
def luminance_table(threshold: int, palette: str) -> Tuple[Cell, ...]:
    """Return one shared no-color cell per luminance value 0..255."""
    return tuple(
        BLANK_CELL
        if luma < threshold
        else Cell(palette[palette_index(luma, threshold, len(palette))])
        for luma in range(256)
    )


@functools.lru_cache(maxsize=64)
def luminance_characters(threshold: int, palette: str) -> np.ndarray:
    """Return the character for every luminance value as a numpy array."""
    table = luminance_table(threshold, palette)
    return np.array([cell.character for cell in table], dtype="<U1")


def map_pixel(
    red: int,
    green: int,
    blue: int,
    options: ConversionOptions,
    with_color: bool = False,
) -> Cell:
    """Map one pixel to a cell."""
    cell = luminance_table(options.luminance_threshold, options.palette)[
        luminance(red, green, blue)
    ]
    if not with_color or cell is BLANK_CELL:
        return cell
    return Cell(cell.character, (red, green, blue))


def map_pixels(
    pixels: np.ndarray, options: ConversionOptions, with_color: bool = False
) -> Frame:
    """Map an H x W x 3 RGB array to a frame."""
    if pixels.ndim != 3 or pixels.shape[2] < 3:
        raise FrameDecodeError(f"expected an H x W x 3 pixel array, got {pixels.shape}")
    height, width = pixels.shape[0], pixels.shape[1]
    if height == 0 or width == 0:
        raise FrameDecodeError("pixel array is empty")
    channels = pixels[:, :, :3].astype(np.uint32)
    lumas = (
        LUMA_RED * channels[:, :, 0]
        + LUMA_GREEN * channels[:, :, 1]
        + LUMA_BLUE * channels[:, :, 2]
    ) // LUMA_SCALE
    characters = luminance_characters(options.luminance_threshold, options.palette)[
        lumas
    ]
    rows = tuple("".join(row) for row in characters.tolist())
    if not with_color:
        return Frame(rows=rows)

    blank_mask = (lumas < options.luminance_threshold).tolist()
    rgb_rows = channels.tolist()
    colors = tuple(
        tuple(
            None if blank else (pixel[0], pixel[1], pixel[2])
            for pixel, blank in zip(rgb_row, blank_row)
        )
        for rgb_row, blank_row in zip(rgb_rows, blank_mask)
    )
    return Frame(rows=rows, colors=colors)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positive values."""
    return int(math.floor(value + 0.5))


def compute_target_size(
    source_width: int, source_height: int, columns: int | None, font_ratio: float
) -> Tuple[int, int]:
    """Compute the character grid size for a source image."""
    if source_width <= 0 or source_height <= 0:
        raise FrameDecodeError(
            f"source dimensions must be positive, got {source_width}x{source_height}"
        )
    if columns is None:
        return source_width, max(1, round_half_up(source_height * font_ratio))
    target_height = round_half_up(source_height / source_width * columns * font_ratio)
    return columns, max(1, target_height)


def parse_timestamp(value: str) -> float:
    """Parse '83.5', '01:23.5' or '00:01:23.456' into seconds."""
    normalized = value.strip()
    if not TIMESTAMP_PATTERN.fullmatch(normalized):
        raise FrameValidationError(INVALID_TIME_CODE, f"invalid timestamp: {value!r}")
    seconds = 0.0
    for position, part in enumerate(reversed(normalized.split(":"))):
        seconds += float(part) * (60**position)
    return seconds


def resolve_time_range(
    start: str | None, end: str | None
) -> Tuple[float | None, float | None]:
    """Parse an optional start/end pair and check that end follows start."""
    start_seconds = parse_timestamp(start) if start and start.strip() else None
    end_seconds = parse_timestamp(end) if end and end.strip() else None
    if start_seconds == 0:
        start_seconds = None
    if end_seconds is not None and end_seconds <= (start_seconds or 0.0):
        raise FrameValidationError(
            INVALID_TIME_CODE,
            f"end time {end!r} must be after start time {start or '0'!r}",
        )
    return start_seconds, end_seconds


@dataclass(frozen=True)
class PreprocessPreset:
    """Named ffmpeg filter chain applied before frame extraction."""

    name: str
    description: str
    filter: str


PREPROCESS_PRESETS: Tuple[PreprocessPreset, ...] = (
    PreprocessPreset(
        "contours",
        "Grayscale edge-detection with strong contrast (good for outlines).",
        "format=gray,edgedetect=mode=colormix:high=0.2:low=0.05,"
        "eq=contrast=2.5:brightness=-0.1",
    ),
    PreprocessPreset(
        "contours-soft",
        "Softer contour extraction with less aggressive edges.",
        "format=gray,edgedetect=mode=colormix:high=0.12:low=0.03,"
        "eq=contrast=2.0:brightness=-0.05",
    ),
    PreprocessPreset(
        "contours-strong",
        "Very sharp contour extraction for bold linework.",
        "format=gray,edgedetect=mode=colormix:high=0.35:low=0.08,"
        "eq=contrast=3.2:brightness=-0.12",
    ),
    PreprocessPreset(
        "bw-contrast",
        "Simple grayscale + contrast boost for clean monochrome output.",
        "format=gray,eq=contrast=2.2:brightness=-0.08",
    ),
    PreprocessPreset(
        "noir-detail",
        "Grayscale sharpened look that emphasizes texture.",
        "format=gray,unsharp=5:5:1.0:5:5:0.0,eq=contrast=1.8:brightness=-0.04",
    ),
    PreprocessPreset(
        "vivid",
        "Boost color saturation/contrast and sharpen.",
        "eq=saturation=1.8:contrast=1.2:brightness=0.02,unsharp=5:5:0.8:5:5:0.0",
    ),
    PreprocessPreset(
        "warm-pop",
        "Warmer color balance with moderate saturation boost.",
        "colorbalance=rs=0.06:gs=0.02:bs=-0.04,eq=saturation=1.35:contrast=1.12",
    ),
    PreprocessPreset(
        "cool-pop",
        "Cooler color balance with moderate saturation boost.",
        "colorbalance=rs=-0.04:gs=0.02:bs=0.07,eq=saturation=1.28:contrast=1.10",
    ),
    PreprocessPreset(
        "soft-glow",
        "Gentle blur and color lift for smoother gradients.",
        "gblur=sigma=1.0,eq=saturation=1.15:contrast=1.08:brightness=0.02",
    ),
)


def resolve_preprocess_filter(
    preprocess: str | None, preset_name: str | None
) -> str | None:
    """Resolve an explicit filter or a preset name into a filter expression."""
    if preprocess is not None:
        stripped = preprocess.strip()
        if not stripped:
            raise FrameValidationError(INVALID_PRESET_CODE, "preprocess cannot be empty")
        return stripped
    if preset_name is None:
        return None
    normalized = preset_name.strip().lower()
    for preset in PREPROCESS_PRESETS:
        if preset.name == normalized:
            return preset.filter
    available = ", ".join(preset.name for preset in PREPROCESS_PRESETS)
    raise FrameValidationError(
        INVALID_PRESET_CODE,
        f"unknown preprocessing preset {preset_name!r}; available: {available}",
    )


def build_extraction_filter(
    columns: int, fps: int, preprocess_filter: str | None
) -> str:
    """Build the ffmpeg -vf chain used for frame extraction."""
    base = f"scale={columns}:-2,fps={fps}"
    if preprocess_filter:
        trimmed = preprocess_filter.strip().rstrip(",")
        if trimmed:
            return f"{trimmed},{base}"
    return base
