"""Unit tests for the pixel-to-character mapper and option validation."""

from __future__ import annotations

import numpy as np
import pytest

from domain.ascii_art import (
    BLANK_CELL,
    INVALID_COLOR_CODE,
    INVALID_OPTIONS_CODE,
    INVALID_PALETTE_CODE,
    INVALID_PRESET_CODE,
    INVALID_TIME_CODE,
    Cell,
    ConversionOptions,
    DimensionMismatchError,
    Frame,
    FrameDecodeError,
    FrameValidationError,
    VideoRenderOptions,
    build_extraction_filter,
    compute_target_size,
    luminance,
    map_pixel,
    map_pixels,
    parse_timestamp,
    resolve_preprocess_filter,
    resolve_time_range,
)

SHORT_PALETTE = " .:-=+*#%@"


def short_options(threshold: int = 20) -> ConversionOptions:
    """Build options with the ten-character palette."""
    return ConversionOptions(luminance_threshold=threshold, palette=SHORT_PALETTE)


def test_gray_pixel_maps_to_star() -> None:
    """Map a mid-bright gray pixel to the seventh palette character."""
    assert map_pixel(200, 200, 200, short_options()) == Cell("*")


def test_dark_pixel_maps_to_blank_cell() -> None:
    """Pixels darker than the threshold become the shared blank cell."""
    assert map_pixel(10, 10, 10, short_options()) is BLANK_CELL
    assert map_pixel(10, 10, 10, short_options(), with_color=True) is BLANK_CELL


def test_threshold_luminance_maps_to_first_palette_entry() -> None:
    """A pixel exactly at the threshold uses palette index 0."""
    assert luminance(20, 20, 20) == 20
    assert map_pixel(20, 20, 20, short_options()) == Cell(SHORT_PALETTE[0])


def test_brightest_pixel_maps_to_last_palette_entry() -> None:
    """White maps to the densest character."""
    assert map_pixel(255, 255, 255, short_options()).character == "@"


def test_increasing_red_never_decreases_index() -> None:
    """Palette index is monotonic in each channel."""
    options = short_options()
    previous = -1
    for red in range(256):
        cell = map_pixel(red, 120, 40, options)
        index_value = SHORT_PALETTE.index(cell.character)
        assert index_value >= previous
        previous = index_value


def test_color_mode_keeps_source_rgb() -> None:
    """Non-blank cells carry the pixel color when color is requested."""
    cell = map_pixel(200, 100, 50, short_options(), with_color=True)
    assert cell.color == (200, 100, 50)
    assert map_pixel(200, 100, 50, short_options()).color is None


def test_no_color_cells_are_shared() -> None:
    """Repeated lookups return the same cell object."""
    options = short_options()
    assert map_pixel(90, 90, 90, options) is map_pixel(90, 90, 90, options)


def test_zero_threshold_never_blanks() -> None:
    """Threshold 0 maps black to palette index 0."""
    assert map_pixel(0, 0, 0, short_options(0)) == Cell(" ")
    assert map_pixel(0, 0, 0, short_options(0)) is not BLANK_CELL


def test_map_pixels_matches_map_pixel() -> None:
    """The array mapper agrees with the per-pixel mapper."""
    options = short_options()
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(5, 7, 3), dtype=np.uint8)
    frame = map_pixels(pixels, options, with_color=True)
    assert frame.width == 7
    assert frame.height == 5
    for y_value in range(5):
        for x_value in range(7):
            red, green, blue = (int(channel) for channel in pixels[y_value, x_value])
            expected = map_pixel(red, green, blue, options, with_color=True)
            assert frame.cell(x_value, y_value) == expected


def test_map_pixels_rejects_bad_shapes() -> None:
    """Empty or two-dimensional arrays are decode errors."""
    with pytest.raises(FrameDecodeError):
        map_pixels(np.zeros((0, 4, 3), dtype=np.uint8), short_options())
    with pytest.raises(FrameDecodeError):
        map_pixels(np.zeros((4, 4), dtype=np.uint8), short_options())


@pytest.mark.parametrize(
    "palette",
    ["", "aa", "ab\n", "a\tb"],
)
def test_invalid_palettes_rejected(palette: str) -> None:
    """Palettes must be non-empty, distinct and printable."""
    with pytest.raises(FrameValidationError) as excinfo:
        ConversionOptions(palette=palette)
    assert excinfo.value.code == INVALID_PALETTE_CODE


def test_invalid_options_rejected() -> None:
    """Out-of-range numeric options raise the options error code."""
    with pytest.raises(FrameValidationError) as excinfo:
        ConversionOptions(luminance_threshold=256)
    assert excinfo.value.code == INVALID_OPTIONS_CODE
    with pytest.raises(FrameValidationError):
        ConversionOptions(columns=0)
    with pytest.raises(FrameValidationError):
        ConversionOptions(font_ratio=0.0)


def test_render_options_validation() -> None:
    """Render options check quality, size and audio requirements."""
    with pytest.raises(FrameValidationError):
        VideoRenderOptions(output_target="out.mp4", quality_factor=52)
    with pytest.raises(FrameValidationError):
        VideoRenderOptions(output_target="out.mp4", font_size_px=0)
    with pytest.raises(FrameValidationError):
        VideoRenderOptions(output_target="out.mp4", mux_audio=True)
    with pytest.raises(FrameValidationError):
        VideoRenderOptions(output_target=" ")
    options = VideoRenderOptions(output_target="out.mp4")
    assert options.quality_factor == 20


def test_frame_rejects_ragged_rows() -> None:
    """Rows of different widths are a dimension mismatch."""
    with pytest.raises(DimensionMismatchError):
        Frame(rows=("abc", "ab"))
    with pytest.raises(DimensionMismatchError):
        Frame(rows=("ab", "cd"), colors=((None, None),))


@pytest.mark.parametrize(
    "color",
    [(256, 0, 0), (-1, 0, 0), (1, 2), (1.5, 2, 3), [1, 2, 3]],
)
def test_frame_rejects_invalid_colors(color) -> None:
    """Stored colors must be (r, g, b) tuples of 0..255."""
    with pytest.raises(FrameValidationError) as excinfo:
        Frame(rows=("ab",), colors=((None, color),))
    assert excinfo.value.code == INVALID_COLOR_CODE


def test_frame_from_cells_drops_empty_color_grid() -> None:
    """A grid without any color builds a plain frame."""
    frame = Frame.from_cells(((Cell("a"), Cell("b")),))
    assert frame.colors is None
    colored = Frame.from_cells(((Cell("a", (1, 2, 3)), Cell("b")),))
    assert colored.colors == (((1, 2, 3), None),)


def test_target_size_with_columns() -> None:
    """Height follows aspect ratio and font ratio, rounded half up."""
    assert compute_target_size(1920, 1080, 400, 0.5) == (400, 113)
    assert compute_target_size(100, 50, 10, 0.5) == (10, 3)


def test_target_size_without_columns() -> None:
    """Source width is kept when no column count is given."""
    assert compute_target_size(64, 48, None, 0.5) == (64, 24)
    assert compute_target_size(1000, 1, 10, 0.1) == (10, 1)


def test_parse_timestamp_forms() -> None:
    """Seconds and clock forms parse to seconds."""
    assert parse_timestamp("83.5") == 83.5
    assert parse_timestamp("01:23.5") == 83.5
    assert parse_timestamp("00:01:23.5") == 83.5
    with pytest.raises(FrameValidationError) as excinfo:
        parse_timestamp("1m")
    assert excinfo.value.code == INVALID_TIME_CODE


def test_time_range_requires_end_after_start() -> None:
    """End times at or before start are rejected."""
    assert resolve_time_range("0", "") == (None, None)
    assert resolve_time_range("5", "10") == (5.0, 10.0)
    with pytest.raises(FrameValidationError):
        resolve_time_range("10", "10")


def test_preprocess_filter_resolution() -> None:
    """Presets resolve to filters and unknown names are rejected."""
    assert resolve_preprocess_filter(None, None) is None
    assert resolve_preprocess_filter(" eq=contrast=2 ", None) == "eq=contrast=2"
    assert resolve_preprocess_filter(None, "BW-Contrast").startswith("format=gray")
    with pytest.raises(FrameValidationError) as excinfo:
        resolve_preprocess_filter(None, "sepia")
    assert excinfo.value.code == INVALID_PRESET_CODE


def test_extraction_filter_prepends_preprocess() -> None:
    """The preprocessing chain runs before scaling."""
    assert build_extraction_filter(80, 24, None) == "scale=80:-2,fps=24"
    assert (
        build_extraction_filter(80, 24, "format=gray,")
        == "format=gray,scale=80:-2,fps=24"
    )
