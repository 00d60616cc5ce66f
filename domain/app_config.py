"""Preset configuration for ascii_frames."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Any, Mapping, Sequence, Tuple

from domain.ascii_art import (
    DEFAULT_PALETTE,
    INVALID_CONFIG_CODE,
    ConversionOptions,
    FrameValidationError,
    validate_palette,
)

CONFIG_FILE_NAME = "ascii_frames.json"
CONFIG_DIR_NAME = "ascii_frames"


@dataclass(frozen=True)
class Preset:
    """Quality preset for conversion."""

    columns: int
    fps: int
    font_ratio: float
    luminance: int

    def __post_init__(self) -> None:
        if self.columns <= 0:
            raise FrameValidationError(INVALID_CONFIG_CODE, "preset columns must be positive")
        if self.fps <= 0:
            raise FrameValidationError(INVALID_CONFIG_CODE, "preset fps must be positive")
        if self.font_ratio <= 0:
            raise FrameValidationError(
                INVALID_CONFIG_CODE, "preset font_ratio must be positive"
            )
        if self.luminance < 0 or self.luminance > 255:
            raise FrameValidationError(
                INVALID_CONFIG_CODE, "preset luminance must be within [0, 255]"
            )


DEFAULT_PRESETS = {
    "default": Preset(columns=400, fps=30, font_ratio=0.7, luminance=20),
    "small": Preset(columns=80, fps=24, font_ratio=0.44, luminance=20),
    "large": Preset(columns=800, fps=60, font_ratio=0.7, luminance=20),
}


@dataclass(frozen=True)
class AppConfig:
    """Validated preset configuration."""

    presets: Mapping[str, Preset] = field(default_factory=lambda: dict(DEFAULT_PRESETS))
    default_preset: str = "default"
    ascii_chars: str = DEFAULT_PALETTE
    default_start: str = "0"
    default_end: str = ""

    def __post_init__(self) -> None:
        if not self.presets:
            raise FrameValidationError(INVALID_CONFIG_CODE, "config defines no presets")
        if self.default_preset not in self.presets:
            raise FrameValidationError(
                INVALID_CONFIG_CODE,
                f"default_preset {self.default_preset!r} is not a defined preset",
            )
        if not self.ascii_chars.isascii():
            raise FrameValidationError(
                INVALID_CONFIG_CODE,
                "ascii_chars contains non-ASCII characters; use ASCII only",
            )
        try:
            validate_palette(self.ascii_chars)
        except FrameValidationError as exc:
            raise FrameValidationError(INVALID_CONFIG_CODE, str(exc)) from exc

    def preset(self, name: str | None) -> Preset:
        """Return a preset by name, or the default preset."""
        preset_name = name or self.default_preset
        preset = self.presets.get(preset_name)
        if preset is None:
            available = ", ".join(sorted(self.presets))
            raise FrameValidationError(
                INVALID_CONFIG_CODE,
                f"preset {preset_name!r} not found; available: {available}",
            )
        return preset

    def conversion_options(self, preset_name: str | None = None) -> ConversionOptions:
        """Build conversion options from a preset."""
        preset = self.preset(preset_name)
        return ConversionOptions(
            columns=preset.columns,
            font_ratio=preset.font_ratio,
            luminance_threshold=preset.luminance,
            palette=self.ascii_chars,
        )


def require_number(payload: Mapping[str, Any], key: str, context: str) -> float:
    """Read a numeric field from a JSON object."""
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise FrameValidationError(
            INVALID_CONFIG_CODE, f"{context}.{key} must be a number"
        )
    return value


def require_int(payload: Mapping[str, Any], key: str, context: str) -> int:
    """Read an integer field from a JSON object."""
    value = require_number(payload, key, context)
    if not isinstance(value, int):
        raise FrameValidationError(
            INVALID_CONFIG_CODE, f"{context}.{key} must be an integer"
        )
    return value


def require_str(payload: Mapping[str, Any], key: str, default: str) -> str:
    """Read an optional string field from a JSON object."""
    value = payload.get(key, default)
    if not isinstance(value, str):
        raise FrameValidationError(INVALID_CONFIG_CODE, f"{key} must be a string")
    return value


def parse_config(payload: object) -> AppConfig:
    """Parse a decoded JSON document into an AppConfig."""
    if not isinstance(payload, dict):
        raise FrameValidationError(INVALID_CONFIG_CODE, "config must be a JSON object")
    raw_presets = payload.get("presets")
    if not isinstance(raw_presets, dict):
        raise FrameValidationError(INVALID_CONFIG_CODE, "presets must be an object")

    presets: dict[str, Preset] = {}
    for name, raw_preset in raw_presets.items():
        context = f"presets.{name}"
        if not isinstance(raw_preset, dict):
            raise FrameValidationError(INVALID_CONFIG_CODE, f"{context} must be an object")
        presets[name] = Preset(
            columns=require_int(raw_preset, "columns", context),
            fps=require_int(raw_preset, "fps", context),
            font_ratio=float(require_number(raw_preset, "font_ratio", context)),
            luminance=require_int(raw_preset, "luminance", context),
        )

    default_preset = payload.get("default_preset")
    if not isinstance(default_preset, str):
        raise FrameValidationError(
            INVALID_CONFIG_CODE, "default_preset must be a string"
        )
    return AppConfig(
        presets=presets,
        default_preset=default_preset,
        ascii_chars=require_str(payload, "ascii_chars", DEFAULT_PALETTE),
        default_start=require_str(payload, "default_start", "0"),
        default_end=require_str(payload, "default_end", ""),
    )


def candidate_config_paths(explicit_path: str | None) -> Tuple[Path, ...]:
    """Return config file locations in lookup order."""
    if explicit_path:
        return (Path(explicit_path),)
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return (
        Path(config_home) / CONFIG_DIR_NAME / CONFIG_FILE_NAME,
        Path.cwd() / CONFIG_FILE_NAME,
    )


def load_config(explicit_path: str | None = None) -> AppConfig:
    """Load the first config file found, or the built-in defaults."""
    paths: Sequence[Path] = candidate_config_paths(explicit_path)
    for config_path in paths:
        if not config_path.is_file():
            if explicit_path:
                raise FrameValidationError(
                    INVALID_CONFIG_CODE, f"config file not found: {config_path}"
                )
            continue
        try:
            payload = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise FrameValidationError(
                INVALID_CONFIG_CODE, f"failed to read config {config_path}: {exc}"
            ) from exc
        except json.JSONDecodeError as exc:
            raise FrameValidationError(
                INVALID_CONFIG_CODE,
                f"config {config_path} is not valid JSON at line {exc.lineno}",
            ) from exc
        return parse_config(payload)
    return AppConfig()
