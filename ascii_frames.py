#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10.1",
#   "numpy>=1.26"
# ]
# ///
"""Convert videos and images into ASCII frames, and frames back into video."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
import json
import logging
from pathlib import Path
import sys
from typing import Sequence

from domain.app_config import AppConfig, load_config
from domain.ascii_art import (
    INVALID_OPTIONS_CODE,
    PREPROCESS_PRESETS,
    RGB,
    ConversionOptions,
    FrameValidationError,
    VideoRenderOptions,
    resolve_preprocess_filter,
)
from service.conversion import (
    IMAGE_EXTENSIONS,
    ConversionReport,
    FrameConversionError,
    convert_directory,
    convert_image_file,
    convert_video,
)
from service.frame_store import load_sequence, write_details, write_frame
from service.loop_detector import (
    detect_loop,
    export_loop,
    find_repeated_frames,
    repeat_loop,
)
from service.media_tools import ExternalToolError, FfmpegToolkit
from service.renderer import render_directory, save_frame_images
from service.trim import trim_directory

__version__ = "0.3.0"

LOGGER = logging.getLogger("ascii_frames")


@dataclass(frozen=True)
class ConvertRequest:
    """Parsed conversion request."""

    input_path: Path
    output_dir: Path
    options: ConversionOptions
    fps: int
    start: str | None
    end: str | None
    preprocess_filter: str | None
    with_color: bool
    keep_images: bool
    extract_audio: bool
    workers: int | None
    strict: bool


@dataclass(frozen=True)
class TrimRequest:
    """Parsed trim request."""

    input_dir: Path
    left: int
    right: int
    top: int
    bottom: int
    output_dir: Path | None
    in_place: bool


@dataclass(frozen=True)
class RenderRequest:
    """Parsed render request."""

    input_dir: Path
    options: VideoRenderOptions
    images_dir: Path | None


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format="%(message)s"
    )


def parse_hex_color_to_rgb(color_value: str) -> RGB:
    """Parse a #RRGGBB token into an RGB tuple."""
    normalized = color_value.strip().lstrip("#")
    if len(normalized) != 6:
        raise FrameValidationError(
            INVALID_OPTIONS_CODE, f"color must be #RRGGBB, got {color_value!r}"
        )
    try:
        return (
            int(normalized[0:2], 16),
            int(normalized[2:4], 16),
            int(normalized[4:6], 16),
        )
    except ValueError as exc:
        raise FrameValidationError(
            INVALID_OPTIONS_CODE, f"color must be #RRGGBB, got {color_value!r}"
        ) from exc


def default_output_dir(input_path: Path) -> Path:
    """Return the frame directory used when none is given."""
    return input_path.with_name(f"{input_path.stem}_ascii")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(prog="ascii_frames.py", add_help=True)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--config", default=None)
    parser.add_argument("--version", action="version", version=__version__)
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="video, image or image directory")
    convert.add_argument("input")
    convert.add_argument("--output-dir", default=None)
    convert.add_argument("--preset", default=None)
    convert.add_argument("--columns", type=int, default=None)
    convert.add_argument("--fps", type=int, default=None)
    convert.add_argument("--font-ratio", type=float, default=None)
    convert.add_argument("--luminance", type=int, default=None)
    convert.add_argument("--color", action="store_true")
    convert.add_argument("--start", default=None)
    convert.add_argument("--end", default=None)
    preprocess_group = convert.add_mutually_exclusive_group()
    preprocess_group.add_argument("--preprocess", default=None)
    preprocess_group.add_argument("--preprocess-preset", default=None)
    convert.add_argument("--keep-images", action="store_true")
    convert.add_argument("--extract-audio", action="store_true")
    convert.add_argument("--workers", type=int, default=None)
    convert.add_argument("--strict", action="store_true")

    find_loop = commands.add_parser("find-loop", help="detect repeating frames")
    find_loop.add_argument("input_dir")
    find_loop.add_argument("--min-period", type=int, default=1)
    find_loop.add_argument("--min-repeats", type=int, default=2)

    for name in ("export-loop", "repeat-loop"):
        loop_command = commands.add_parser(name)
        loop_command.add_argument("input_dir")
        loop_command.add_argument("--start", type=int, required=True)
        loop_command.add_argument("--end", type=int, required=True)
        if name == "export-loop":
            loop_command.add_argument("--output-dir", default=None)

    trim = commands.add_parser("trim", help="remove rows and columns from frames")
    trim.add_argument("input_dir")
    trim.add_argument("--trim", type=int, default=0)
    for side in ("left", "right", "top", "bottom"):
        trim.add_argument(f"--{side}", type=int, default=None)
    target_group = trim.add_mutually_exclusive_group(required=True)
    target_group.add_argument("--output-dir", default=None)
    target_group.add_argument("--in-place", action="store_true")

    render = commands.add_parser("render", help="render frames to video")
    render.add_argument("input_dir")
    render.add_argument("--output", default="output.mp4")
    render.add_argument("--images-dir", default=None)
    render.add_argument("--font-size", type=float, default=14.0)
    render.add_argument("--font-ratio", type=float, default=None)
    render.add_argument("--font", default=None)
    render.add_argument("--quality", type=int, default=20)
    render.add_argument("--fps", type=int, default=None)
    render.add_argument("--foreground", default="#EBEBEB")
    render.add_argument("--background", default="#000000")
    render.add_argument("--audio-track", default=None)

    commands.add_parser("presets", help="list config and preprocessing presets")
    return parser


def build_convert_request(parsed: argparse.Namespace, config: AppConfig) -> ConvertRequest:
    """Merge a preset with explicit convert flags."""
    preset = config.preset(parsed.preset)
    options = ConversionOptions(
        columns=parsed.columns if parsed.columns is not None else preset.columns,
        font_ratio=(
            parsed.font_ratio if parsed.font_ratio is not None else preset.font_ratio
        ),
        luminance_threshold=(
            parsed.luminance if parsed.luminance is not None else preset.luminance
        ),
        palette=config.ascii_chars,
    )
    fps = parsed.fps if parsed.fps is not None else preset.fps
    if fps <= 0:
        raise FrameValidationError(INVALID_OPTIONS_CODE, "fps must be positive")
    if parsed.workers is not None and parsed.workers <= 0:
        raise FrameValidationError(INVALID_OPTIONS_CODE, "workers must be positive")
    input_path = Path(parsed.input)
    return ConvertRequest(
        input_path=input_path,
        output_dir=(
            Path(parsed.output_dir)
            if parsed.output_dir
            else default_output_dir(input_path)
        ),
        options=options,
        fps=fps,
        start=parsed.start if parsed.start is not None else config.default_start,
        end=parsed.end if parsed.end is not None else config.default_end,
        preprocess_filter=resolve_preprocess_filter(
            parsed.preprocess, parsed.preprocess_preset
        ),
        with_color=parsed.color,
        keep_images=parsed.keep_images,
        extract_audio=parsed.extract_audio,
        workers=parsed.workers,
        strict=parsed.strict,
    )


def build_trim_request(parsed: argparse.Namespace) -> TrimRequest:
    """Apply --trim to every side unless a side flag overrides it."""

    def side(value: int | None) -> int:
        return parsed.trim if value is None else value

    return TrimRequest(
        input_dir=Path(parsed.input_dir),
        left=side(parsed.left),
        right=side(parsed.right),
        top=side(parsed.top),
        bottom=side(parsed.bottom),
        output_dir=Path(parsed.output_dir) if parsed.output_dir else None,
        in_place=parsed.in_place,
    )


def build_render_request(parsed: argparse.Namespace, config: AppConfig) -> RenderRequest:
    """Build render options from flags and the default preset."""
    preset = config.preset(None)
    options = VideoRenderOptions(
        output_target=parsed.output,
        font_size_px=parsed.font_size,
        quality_factor=parsed.quality,
        mux_audio=bool(parsed.audio_track),
        fps=parsed.fps if parsed.fps is not None else preset.fps,
        font_ratio=(
            parsed.font_ratio if parsed.font_ratio is not None else preset.font_ratio
        ),
        foreground_rgb=parse_hex_color_to_rgb(parsed.foreground),
        background_rgb=parse_hex_color_to_rgb(parsed.background),
        font_path=parsed.font,
        audio_track=parsed.audio_track,
    )
    return RenderRequest(
        input_dir=Path(parsed.input_dir),
        options=options,
        images_dir=Path(parsed.images_dir) if parsed.images_dir else None,
    )


def log_progress(completed: int, total: int) -> None:
    LOGGER.debug("ascii_frames.convert.progress: %d/%d", completed, total)


def report_conversion(report: ConversionReport, request: ConvertRequest) -> int:
    """Write details.md and log the outcome; return the exit status."""
    write_details(
        request.output_dir,
        __version__,
        report.succeeded,
        request.options.luminance_threshold,
        request.options.font_ratio,
        request.options.columns,
        request.fps if not request.input_path.is_dir() else None,
    )
    LOGGER.info(
        "ascii_frames.convert.done: %d frames -> %s",
        report.succeeded,
        request.output_dir,
    )
    for failure in report.errors:
        LOGGER.error(
            "%s: frame %d: %s", failure.error.code, failure.index, failure.error
        )
    return 1 if report.errors else 0


def run_convert(request: ConvertRequest) -> int:
    """Dispatch conversion by input kind."""
    input_path = request.input_path
    if input_path.is_dir():
        report = convert_directory(
            input_path,
            request.output_dir,
            request.options,
            with_color=request.with_color,
            max_workers=request.workers,
            strict=request.strict,
            progress=log_progress,
            preprocess_filter=request.preprocess_filter,
        )
        return report_conversion(report, request)
    if not input_path.is_file():
        raise FrameValidationError(
            INVALID_OPTIONS_CODE, f"input does not exist: {input_path}"
        )
    if input_path.suffix.lower() in IMAGE_EXTENSIONS:
        frame = convert_image_file(
            input_path,
            request.options,
            request.with_color,
            preprocess_filter=request.preprocess_filter,
        )
        request.output_dir.mkdir(parents=True, exist_ok=True)
        frame_path = write_frame(request.output_dir, 1, frame)
        LOGGER.info("ascii_frames.convert.done: 1 frame -> %s", frame_path)
        return 0
    report = convert_video(
        input_path,
        request.output_dir,
        request.options,
        FfmpegToolkit(),
        request.fps,
        start=request.start,
        end=request.end,
        preprocess_filter=request.preprocess_filter,
        with_color=request.with_color,
        keep_images=request.keep_images,
        extract_audio=request.extract_audio,
        max_workers=request.workers,
        strict=request.strict,
        progress=log_progress,
    )
    return report_conversion(report, request)


def run_find_loop(parsed: argparse.Namespace) -> int:
    """Print the detected loop and repeated-frame candidates as JSON."""
    sequence = load_sequence(Path(parsed.input_dir), require_contiguous=False)
    match = detect_loop(
        sequence.frames, min_period=parsed.min_period, min_repeats=parsed.min_repeats
    )
    candidates = find_repeated_frames(sequence.frames, sequence.indices)
    loop_payload = None
    if match is not None:
        loop_payload = {
            "start_frame": sequence.indices[match.offset],
            "end_frame": sequence.indices[match.end - 1],
            "offset": match.offset,
            "period": match.period,
            "end": match.end,
            "repeats": match.repeats,
        }
    else:
        LOGGER.info("ascii_frames.loop.none: no repeating region found")
    payload = {
        "loop": loop_payload,
        "candidates": [
            {"start": sequence.indices[start], "end": sequence.indices[end]}
            for start, end in candidates
        ],
    }
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


def run_trim(request: TrimRequest) -> int:
    result = trim_directory(
        request.input_dir,
        left=request.left,
        right=request.right,
        top=request.top,
        bottom=request.bottom,
        output_dir=request.output_dir,
        in_place=request.in_place,
    )
    LOGGER.info(
        "Trimmed %d files to %dx%d (%d bytes)",
        result.frame_count,
        result.width,
        result.height,
        result.total_bytes,
    )
    return 0


def run_render(request: RenderRequest) -> int:
    if request.images_dir is not None:
        sequence = load_sequence(request.input_dir)
        save_frame_images(sequence.frames, request.options, request.images_dir)
        return 0
    render_directory(request.input_dir, request.options, FfmpegToolkit())
    return 0


def run_presets(config: AppConfig) -> int:
    """Print config presets and preprocessing presets."""
    lines = ["Presets:"]
    for name, preset in sorted(config.presets.items()):
        marker = " (default)" if name == config.default_preset else ""
        lines.append(
            f"  {name}{marker}: columns={preset.columns} fps={preset.fps} "
            f"font_ratio={preset.font_ratio} luminance={preset.luminance}"
        )
    lines.append("Preprocessing presets:")
    for preprocess in PREPROCESS_PRESETS:
        lines.append(f"  {preprocess.name}: {preprocess.description}")
    sys.stdout.write("\n".join(lines) + "\n")
    return 0


def dispatch(argv: Sequence[str]) -> int:
    """Parse arguments and run the selected subcommand."""
    parsed = build_parser().parse_args(argv)
    configure_logging(parsed.verbose)
    if parsed.command == "trim":
        return run_trim(build_trim_request(parsed))
    if parsed.command == "find-loop":
        return run_find_loop(parsed)
    if parsed.command == "export-loop":
        target_dir = export_loop(
            Path(parsed.input_dir),
            parsed.start,
            parsed.end,
            Path(parsed.output_dir) if parsed.output_dir else None,
        )
        LOGGER.info("Exported loop %d..%d to %s", parsed.start, parsed.end, target_dir)
        return 0
    if parsed.command == "repeat-loop":
        total = repeat_loop(Path(parsed.input_dir), parsed.start, parsed.end)
        LOGGER.info("Loop repeated; %d frames", total)
        return 0

    config = load_config(parsed.config)
    if parsed.command == "convert":
        return run_convert(build_convert_request(parsed, config))
    if parsed.command == "render":
        return run_render(build_render_request(parsed, config))
    return run_presets(config)


def main() -> int:
    """CLI entrypoint."""
    try:
        return dispatch(sys.argv[1:])
    except FrameValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except FrameConversionError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except ExternalToolError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("ascii_frames.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
