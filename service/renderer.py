"""Rasterize character frames into images and hand them to a video encoder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from domain.ascii_art import (
    BLANK_CHARACTER,
    DimensionMismatchError,
    Frame,
    FrameValidationError,
    VideoRenderOptions,
    round_half_up,
)
from service.frame_store import frame_file_name, load_sequence
from service.media_tools import VideoEncoder

LOGGER = logging.getLogger("ascii_frames")

FONT_LOAD_CODE = "ascii_frames.render.font_load_error"
DEFAULT_MONOSPACE_FONT = "DejaVuSansMono.ttf"
IMAGE_EXTENSION = ".png"

FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont


def glyph_height(font_size_px: float) -> int:
    """Return the pixel height of one character cell."""
    return max(1, round_half_up(font_size_px))


def glyph_width(font_size_px: float, font_ratio: float) -> int:
    """Return the pixel width of one character cell."""
    return max(1, round_half_up(font_size_px * font_ratio))


def load_font(font_path: str | None, font_size: int) -> FontType:
    """Load the configured font, or a monospace system font, or Pillow's default."""
    if font_path:
        try:
            return ImageFont.truetype(
                font_path, size=font_size, layout_engine=ImageFont.Layout.BASIC
            )
        except OSError as exc:
            raise FrameValidationError(
                FONT_LOAD_CODE, f"failed to load font {font_path} at size {font_size}"
            ) from exc
    try:
        return ImageFont.truetype(
            DEFAULT_MONOSPACE_FONT,
            size=font_size,
            layout_engine=ImageFont.Layout.BASIC,
        )
    except OSError:
        LOGGER.debug(
            "ascii_frames.render.font_fallback: %s unavailable", DEFAULT_MONOSPACE_FONT
        )
        return ImageFont.load_default(size=font_size)


class GlyphAtlas:
    """Per-character 8-bit mask sprites sized to one grid cell."""

    def __init__(
        self, font_size_px: float, font_ratio: float, font_path: str | None = None
    ) -> None:
        self.glyph_width = glyph_width(font_size_px, font_ratio)
        self.glyph_height = glyph_height(font_size_px)
        self.font = load_font(font_path, self.glyph_height)
        self._masks: Dict[str, Image.Image] = {}

    @classmethod
    def for_options(cls, options: VideoRenderOptions) -> "GlyphAtlas":
        return cls(options.font_size_px, options.font_ratio, options.font_path)

    def cell_size(self) -> Tuple[int, int]:
        return self.glyph_width, self.glyph_height

    def mask(self, character: str) -> Image.Image:
        """Return the mask sprite of a character, rendering it on first use."""
        cached = self._masks.get(character)
        if cached is not None:
            return cached
        sprite = Image.new("L", self.cell_size(), 0)
        sprite_draw = ImageDraw.Draw(sprite)
        left, top, right, bottom = sprite_draw.textbbox(
            (0, 0), character, font=self.font
        )
        offset_x = (self.glyph_width - (right - left)) // 2 - left
        offset_y = (self.glyph_height - (bottom - top)) // 2 - top
        sprite_draw.text((offset_x, offset_y), character, font=self.font, fill=255)
        self._masks[character] = sprite
        return sprite


def render_frame(
    frame: Frame, options: VideoRenderOptions, glyphs: GlyphAtlas | None = None
) -> Image.Image:
    """Draw a frame onto a W*glyph_width by H*glyph_height RGB image."""
    atlas = glyphs or GlyphAtlas.for_options(options)
    cell_width, cell_height = atlas.cell_size()
    image = Image.new(
        "RGB",
        (frame.width * cell_width, frame.height * cell_height),
        options.background_rgb,
    )
    for row_index, row in enumerate(frame.rows):
        color_row = frame.colors[row_index] if frame.colors is not None else None
        top = row_index * cell_height
        for column_index, character in enumerate(row):
            if character == BLANK_CHARACTER:
                continue
            color = color_row[column_index] if color_row is not None else None
            left = column_index * cell_width
            image.paste(
                color or options.foreground_rgb,
                (left, top, left + cell_width, top + cell_height),
                atlas.mask(character),
            )
    return image


def iter_frame_images(
    frames: Sequence[Frame], options: VideoRenderOptions, atlas: GlyphAtlas
) -> Iterator[Image.Image]:
    """Yield rendered images, rejecting frames whose size differs from the first."""
    width, height = frames[0].width, frames[0].height
    for position, frame in enumerate(frames):
        if frame.width != width or frame.height != height:
            raise DimensionMismatchError(
                f"frame {position} is {frame.width}x{frame.height}, "
                f"expected {width}x{height}"
            )
        yield render_frame(frame, options, atlas)


def render_sequence(
    frames: Sequence[Frame], options: VideoRenderOptions, encoder: VideoEncoder
) -> int:
    """Render frames in order and pass them to the encoder.

    Returns the number of frames handed over.
    """
    if not frames:
        raise DimensionMismatchError("no frames to render")
    atlas = GlyphAtlas.for_options(options)
    cell_width, cell_height = atlas.cell_size()
    image_width = frames[0].width * cell_width
    image_height = frames[0].height * cell_height
    LOGGER.info(
        "ascii_frames.render.start: %d frames at %dx%d -> %s",
        len(frames),
        image_width,
        image_height,
        options.output_target,
    )
    encoder.encode_video(
        iter_frame_images(frames, options, atlas),
        image_width,
        image_height,
        options.fps,
        options.output_target,
        options.quality_factor,
        options.audio_track if options.mux_audio else None,
    )
    return len(frames)


def render_directory(
    source_dir: Path, options: VideoRenderOptions, encoder: VideoEncoder
) -> int:
    """Load a frame directory and render it to a video."""
    sequence = load_sequence(source_dir)
    return render_sequence(sequence.frames, options, encoder)


def save_frame_images(
    frames: Sequence[Frame], options: VideoRenderOptions, output_dir: Path
) -> List[Path]:
    """Write each rendered frame as frame_NNNN.png, numbered from 1."""
    if not frames:
        raise DimensionMismatchError("no frames to render")
    atlas = GlyphAtlas.for_options(options)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for index_value, image in enumerate(
        iter_frame_images(frames, options, atlas), start=1
    ):
        image_path = output_dir / frame_file_name(index_value, IMAGE_EXTENSION)
        image.save(image_path)
        written.append(image_path)
    LOGGER.info("ascii_frames.render.images: %d -> %s", len(written), output_dir)
    return written
