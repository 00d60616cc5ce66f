"""External media tooling (ffmpeg/ffprobe) behind an injectable interface."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import shutil
import subprocess
from typing import Iterable, List, Protocol, Sequence

from PIL import Image

from domain.ascii_art import (
    DEFAULT_FPS,
    FrameValidationError,
    build_extraction_filter,
    resolve_time_range,
)

LOGGER = logging.getLogger("ascii_frames")

FFMPEG_NOT_FOUND_CODE = "ascii_frames.ffmpeg.not_found"
FFMPEG_EXEC_CODE = "ascii_frames.ffmpeg.exec_error"
FFMPEG_DECODE_CODE = "ascii_frames.ffmpeg.decode_error"
FFMPEG_TIME_RANGE_CODE = "ascii_frames.ffmpeg.invalid_time_range"
FFMPEG_PROBE_CODE = "ascii_frames.ffmpeg.probe_error"
FFMPEG_AUDIO_CODE = "ascii_frames.ffmpeg.audio_error"
FFMPEG_ENCODE_CODE = "ascii_frames.ffmpeg.encode_error"
FFMPEG_PREPROCESS_CODE = "ascii_frames.ffmpeg.preprocess_error"

EXTRACTED_FRAME_PATTERN = "frame_%04d.png"
EXTRACTED_FRAME_GLOB = "frame_*.png"
H264_CODEC = "libx264"
H264_PIXEL_FORMAT = "yuv420p"
H264_PRESET = "veryfast"
EVEN_PAD_FILTER = "pad=ceil(iw/2)*2:ceil(ih/2)*2"
AUDIO_CODEC = "aac"
AUDIO_BITRATE = "192k"
AUDIO_SIDE_FILE_CODEC = "copy"


class ExternalToolError(RuntimeError):
    """Failure of an external media tool, with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class MediaInfo:
    """Dimensions and duration reported by the metadata probe."""

    width: int
    height: int
    duration_seconds: float | None = None
    has_audio: bool = False


class VideoEncoder(Protocol):
    """Consumes ordered frame images and produces a video file."""

    def encode_video(
        self,
        images: Iterable[Image.Image],
        width: int,
        height: int,
        fps: int,
        output_path: str,
        quality_factor: int,
        audio_track: str | None,
    ) -> None:
        ...


class MediaToolkit(VideoEncoder, Protocol):
    """Frame extraction, probing, audio and encoding services."""

    def extract_frames(
        self,
        video_path: str,
        output_dir: str,
        fps: int,
        columns: int,
        start: str | None,
        end: str | None,
        preprocess_filter: str | None,
    ) -> List[Path]:
        ...

    def probe(self, media_path: str) -> MediaInfo:
        ...

    def extract_audio(self, video_path: str, output_path: str) -> Path | None:
        ...

    def preprocess_image(
        self, image_path: str, output_path: str, preprocess_filter: str
    ) -> Path:
        ...


def require_tool(tool_name: str) -> str:
    """Return the path of an executable tool, or raise."""
    tool_path = shutil.which(tool_name)
    if not tool_path:
        raise ExternalToolError(FFMPEG_NOT_FOUND_CODE, f"{tool_name} not on PATH")
    try:
        subprocess.run(
            [tool_path, "-version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise ExternalToolError(
            FFMPEG_EXEC_CODE, f"{tool_name} exists but could not be executed"
        ) from exc
    return tool_path


def run_tool(
    command: Sequence[str], error_code: str, description: str
) -> subprocess.CompletedProcess[str]:
    """Run a tool to completion and raise with its stderr on failure."""
    LOGGER.debug("ascii_frames.ffmpeg.command: %s", " ".join(command))
    try:
        result = subprocess.run(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise ExternalToolError(FFMPEG_NOT_FOUND_CODE, f"{command[0]} not found") from exc
    if result.returncode != 0:
        stderr_text = result.stderr.strip()
        raise ExternalToolError(
            error_code,
            f"{description} failed with exit code {result.returncode}. {stderr_text}",
        )
    return result


def format_seconds(value: float) -> str:
    """Format seconds for ffmpeg arguments."""
    return f"{value:.3f}"


def build_extract_command(
    ffmpeg_path: str,
    video_path: str,
    output_dir: str,
    fps: int,
    columns: int,
    start: str | None,
    end: str | None,
    preprocess_filter: str | None,
) -> List[str]:
    """Build the ffmpeg command that dumps scaled PNG frames."""
    try:
        start_seconds, end_seconds = resolve_time_range(start, end)
    except FrameValidationError as exc:
        raise ExternalToolError(FFMPEG_TIME_RANGE_CODE, str(exc)) from exc

    command = [ffmpeg_path, "-loglevel", "error", "-y"]
    if start_seconds is not None:
        command.extend(["-ss", format_seconds(start_seconds)])
    command.extend(["-i", video_path])
    if end_seconds is not None:
        command.extend(["-t", format_seconds(end_seconds - (start_seconds or 0.0))])
    command.extend(
        [
            "-vf",
            build_extraction_filter(columns, fps, preprocess_filter),
            os.path.join(output_dir, EXTRACTED_FRAME_PATTERN),
        ]
    )
    return command


def build_encode_command(
    ffmpeg_path: str,
    width: int,
    height: int,
    fps: int,
    output_path: str,
    quality_factor: int,
    audio_track: str | None,
) -> List[str]:
    """Build the ffmpeg command that encodes a raw RGB frame stream."""
    command = [
        ffmpeg_path,
        "-y",
        "-loglevel",
        "error",
        "-f",
        "rawvideo",
        "-pix_fmt",
        "rgb24",
        "-s",
        f"{width}x{height}",
        "-r",
        str(fps),
        "-i",
        "-",
    ]
    if audio_track:
        command.extend(["-i", audio_track, "-map", "0:v:0", "-map", "1:a:0"])
    else:
        command.append("-an")
    command.extend(
        [
            "-vf",
            EVEN_PAD_FILTER,
            "-c:v",
            H264_CODEC,
            "-preset",
            H264_PRESET,
            "-crf",
            str(quality_factor),
            "-pix_fmt",
            H264_PIXEL_FORMAT,
        ]
    )
    if audio_track:
        command.extend(["-c:a", AUDIO_CODEC, "-b:a", AUDIO_BITRATE, "-shortest"])
    command.extend(["-movflags", "+faststart", output_path])
    return command


def build_preprocess_image_command(
    ffmpeg_cmd: str, image_path: str, output_path: str, preprocess_filter: str
) -> List[str]:
    """Build the ffmpeg command that filters one still image into a PNG."""
    return [
        ffmpeg_cmd,
        "-loglevel",
        "error",
        "-y",
        "-i",
        image_path,
        "-vf",
        preprocess_filter,
        "-frames:v",
        "1",
        output_path,
    ]


def parse_probe_output(stdout_text: str, media_path: str) -> MediaInfo:
    """Parse ffprobe JSON output into MediaInfo."""
    try:
        payload = json.loads(stdout_text)
    except json.JSONDecodeError as exc:
        raise ExternalToolError(
            FFMPEG_PROBE_CODE, f"ffprobe returned invalid JSON for {media_path}"
        ) from exc
    streams = payload.get("streams") or []
    video_stream = next(
        (stream for stream in streams if stream.get("codec_type") == "video"), None
    )
    if video_stream is None:
        raise ExternalToolError(
            FFMPEG_PROBE_CODE, f"no video stream found in {media_path}"
        )
    try:
        width = int(video_stream["width"])
        height = int(video_stream["height"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ExternalToolError(
            FFMPEG_PROBE_CODE, f"ffprobe reported no dimensions for {media_path}"
        ) from exc
    duration_seconds = None
    raw_duration = (payload.get("format") or {}).get("duration")
    if raw_duration not in (None, "N/A"):
        try:
            duration_seconds = float(raw_duration)
        except (TypeError, ValueError):
            duration_seconds = None
    has_audio = any(stream.get("codec_type") == "audio" for stream in streams)
    return MediaInfo(
        width=width,
        height=height,
        duration_seconds=duration_seconds,
        has_audio=has_audio,
    )


class FfmpegToolkit:
    """MediaToolkit backed by the ffmpeg and ffprobe binaries."""

    def __init__(self, ffmpeg_cmd: str = "ffmpeg", ffprobe_cmd: str = "ffprobe") -> None:
        self.ffmpeg_cmd = ffmpeg_cmd
        self.ffprobe_cmd = ffprobe_cmd

    def extract_frames(
        self,
        video_path: str,
        output_dir: str,
        fps: int = DEFAULT_FPS,
        columns: int = 400,
        start: str | None = None,
        end: str | None = None,
        preprocess_filter: str | None = None,
    ) -> List[Path]:
        """Extract PNG frames scaled to the requested column count."""
        if not os.path.isfile(video_path):
            raise ExternalToolError(
                FFMPEG_DECODE_CODE, f"input video not found: {video_path}"
            )
        command = build_extract_command(
            require_tool(self.ffmpeg_cmd),
            video_path,
            output_dir,
            fps,
            columns,
            start,
            end,
            preprocess_filter,
        )
        os.makedirs(output_dir, exist_ok=True)
        run_tool(command, FFMPEG_DECODE_CODE, f"ffmpeg frame extraction of {video_path}")
        frames = sorted(Path(output_dir).glob(EXTRACTED_FRAME_GLOB))
        if not frames:
            raise ExternalToolError(
                FFMPEG_DECODE_CODE, f"ffmpeg extracted no frames from {video_path}"
            )
        LOGGER.info("ascii_frames.ffmpeg.extracted: %d frames", len(frames))
        return frames

    def probe(self, media_path: str) -> MediaInfo:
        """Return dimensions (and duration for video) of a media file."""
        if not os.path.isfile(media_path):
            raise ExternalToolError(FFMPEG_PROBE_CODE, f"media not found: {media_path}")
        result = run_tool(
            [
                require_tool(self.ffprobe_cmd),
                "-v",
                "error",
                "-show_entries",
                "format=duration:stream=codec_type,width,height",
                "-of",
                "json",
                media_path,
            ],
            FFMPEG_PROBE_CODE,
            f"ffprobe of {media_path}",
        )
        return parse_probe_output(result.stdout, media_path)

    def extract_audio(self, video_path: str, output_path: str) -> Path | None:
        """Copy the first audio stream into a side file, or return None."""
        if not self.probe(video_path).has_audio:
            LOGGER.info("ascii_frames.ffmpeg.no_audio: %s", video_path)
            return None
        run_tool(
            [
                require_tool(self.ffmpeg_cmd),
                "-loglevel",
                "error",
                "-y",
                "-i",
                video_path,
                "-vn",
                "-map",
                "0:a:0",
                "-c:a",
                AUDIO_SIDE_FILE_CODEC,
                output_path,
            ],
            FFMPEG_AUDIO_CODE,
            f"ffmpeg audio extraction of {video_path}",
        )
        return Path(output_path)

    def preprocess_image(
        self, image_path: str, output_path: str, preprocess_filter: str
    ) -> Path:
        """Apply an ffmpeg filter chain to a still image."""
        if not os.path.isfile(image_path):
            raise ExternalToolError(
                FFMPEG_PREPROCESS_CODE, f"input image not found: {image_path}"
            )
        run_tool(
            build_preprocess_image_command(
                require_tool(self.ffmpeg_cmd),
                image_path,
                output_path,
                preprocess_filter,
            ),
            FFMPEG_PREPROCESS_CODE,
            f"ffmpeg preprocessing of {image_path}",
        )
        return Path(output_path)

    def encode_video(
        self,
        images: Iterable[Image.Image],
        width: int,
        height: int,
        fps: int,
        output_path: str,
        quality_factor: int,
        audio_track: str | None = None,
    ) -> None:
        """Pipe RGB frames into ffmpeg and encode an H.264 video."""
        if audio_track and not os.path.isfile(audio_track):
            raise ExternalToolError(
                FFMPEG_AUDIO_CODE, f"audio track not found: {audio_track}"
            )
        command = build_encode_command(
            require_tool(self.ffmpeg_cmd),
            width,
            height,
            fps,
            output_path,
            quality_factor,
            audio_track,
        )
        LOGGER.debug("ascii_frames.ffmpeg.command: %s", " ".join(command))
        try:
            ffmpeg_process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExternalToolError(FFMPEG_NOT_FOUND_CODE, "ffmpeg not found") from exc
        if not ffmpeg_process.stdin:
            raise ExternalToolError(FFMPEG_ENCODE_CODE, "ffmpeg stdin unavailable")

        frame_count = 0
        try:
            for image in images:
                if image.size != (width, height):
                    raise ExternalToolError(
                        FFMPEG_ENCODE_CODE,
                        f"frame {frame_count + 1} is {image.size[0]}x{image.size[1]}, "
                        f"expected {width}x{height}",
                    )
                try:
                    ffmpeg_process.stdin.write(image.convert("RGB").tobytes())
                except BrokenPipeError:
                    break
                frame_count += 1

            ffmpeg_process.stdin.close()
            stderr_bytes = ffmpeg_process.stderr.read() if ffmpeg_process.stderr else b""
            return_code = ffmpeg_process.wait()

            if return_code != 0:
                stderr_text = stderr_bytes.decode("utf-8", errors="replace").strip()
                raise ExternalToolError(
                    FFMPEG_ENCODE_CODE,
                    f"ffmpeg failed with exit code {return_code}. {stderr_text}",
                )
            if frame_count == 0:
                raise ExternalToolError(FFMPEG_ENCODE_CODE, "no frames to encode")
            LOGGER.info(
                "ascii_frames.ffmpeg.encoded: %d frames -> %s", frame_count, output_path
            )
        finally:
            if ffmpeg_process.stdin and not ffmpeg_process.stdin.closed:
                try:
                    ffmpeg_process.stdin.close()
                except OSError:
                    pass
            if ffmpeg_process.poll() is None:
                ffmpeg_process.kill()
                ffmpeg_process.wait()
