"""Unit tests for preset configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from domain.app_config import (
    CONFIG_DIR_NAME,
    CONFIG_FILE_NAME,
    AppConfig,
    load_config,
    parse_config,
)
from domain.ascii_art import DEFAULT_PALETTE, INVALID_CONFIG_CODE, FrameValidationError


def write_config(path: Path, payload: object) -> Path:
    """Write a JSON config file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def sample_payload() -> dict:
    """Return a minimal valid config document."""
    return {
        "presets": {
            "tiny": {"columns": 40, "fps": 12, "font_ratio": 0.5, "luminance": 10},
        },
        "default_preset": "tiny",
        "ascii_chars": " .#",
    }


def test_defaults_without_config_files(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Fall back to built-in presets when no file exists."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config == AppConfig()
    assert config.preset(None).columns == 400
    assert config.preset("small").font_ratio == 0.44
    assert config.ascii_chars == DEFAULT_PALETTE


def test_xdg_config_is_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Read presets from the XDG config directory."""
    xdg_home = tmp_path / "xdg"
    write_config(xdg_home / CONFIG_DIR_NAME / CONFIG_FILE_NAME, sample_payload())
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg_home))
    monkeypatch.chdir(tmp_path)
    config = load_config()
    assert config.default_preset == "tiny"
    options = config.conversion_options()
    assert options.columns == 40
    assert options.luminance_threshold == 10
    assert options.palette == " .#"


def test_working_directory_config_is_found(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Read presets from the working directory after XDG."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    write_config(tmp_path / CONFIG_FILE_NAME, sample_payload())
    monkeypatch.chdir(tmp_path)
    assert load_config().preset("tiny").fps == 12


def test_explicit_missing_config_fails(tmp_path: Path) -> None:
    """A named config file must exist."""
    with pytest.raises(FrameValidationError) as excinfo:
        load_config(str(tmp_path / "missing.json"))
    assert excinfo.value.code == INVALID_CONFIG_CODE


def test_invalid_json_fails(tmp_path: Path) -> None:
    """Malformed JSON is reported with the config error code."""
    config_path = tmp_path / "bad.json"
    config_path.write_text("{ nope", encoding="utf-8")
    with pytest.raises(FrameValidationError) as excinfo:
        load_config(str(config_path))
    assert excinfo.value.code == INVALID_CONFIG_CODE


def test_unknown_default_preset_fails() -> None:
    """default_preset must name a defined preset."""
    payload = sample_payload()
    payload["default_preset"] = "huge"
    with pytest.raises(FrameValidationError):
        parse_config(payload)


def test_non_ascii_palette_fails() -> None:
    """Configured palettes are ASCII only."""
    payload = sample_payload()
    payload["ascii_chars"] = " .░"
    with pytest.raises(FrameValidationError) as excinfo:
        parse_config(payload)
    assert "ASCII" in str(excinfo.value)


def test_preset_field_types_are_checked() -> None:
    """Preset fields must have numeric types."""
    payload = sample_payload()
    payload["presets"]["tiny"]["columns"] = "40"
    with pytest.raises(FrameValidationError):
        parse_config(payload)
    payload["presets"]["tiny"]["columns"] = 40.5
    with pytest.raises(FrameValidationError):
        parse_config(payload)


def test_unknown_preset_lookup_lists_available() -> None:
    """Looking up a missing preset names the available ones."""
    with pytest.raises(FrameValidationError) as excinfo:
        AppConfig().preset("medium")
    assert "default, large, small" in str(excinfo.value)
