# -*- coding: utf-8 -*-
"""Settings persistence and validation."""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any

from screencine.constants import (
    CAPTURE_KINDS,
    CLICK_FOCUS_WINDOW_MS,
    DEFAULT_CAPTURE_FPS,
    DEFAULT_CODECS,
    DEFAULT_SETTINGS_FILE,
    DEFAULT_STORE_DIR,
    DEFAULT_TIMESLICE_MS,
    EXPORT_FPS,
    FLOATING_ZOOM,
    FOCUS_ZOOM,
    HANDSHAKE_ATTEMPTS,
    HANDSHAKE_INTERVAL_MS,
    PAN_SMOOTHING,
    SAVE_CONFIRMATION_TIMEOUT_MS,
    ZOOM_SMOOTHING,
)
from screencine.utils.file_utils import read_json_file, write_json_file


DEFAULT_CONFIG: dict[str, Any] = {
    "capture": {
        "kind": "screen",
        "monitor": 1,
        "fps": DEFAULT_CAPTURE_FPS,
        "timeslice_ms": DEFAULT_TIMESLICE_MS,
        "codecs": list(DEFAULT_CODECS),
    },
    "bridge": {
        "handshake_attempts": HANDSHAKE_ATTEMPTS,
        "handshake_interval_ms": HANDSHAKE_INTERVAL_MS,
        "save_timeout_ms": SAVE_CONFIRMATION_TIMEOUT_MS,
    },
    "pointer": {"frame_rate_hz": 60},
    "camera": {
        "focus_zoom": FOCUS_ZOOM,
        "floating_zoom": FLOATING_ZOOM,
        "click_window_ms": CLICK_FOCUS_WINDOW_MS,
        "zoom_smoothing": ZOOM_SMOOTHING,
        "pan_smoothing": PAN_SMOOTHING,
    },
    "export": {"fps": EXPORT_FPS, "codecs": list(DEFAULT_CODECS), "output_dir": "exports"},
    "storage": {"dir": DEFAULT_STORE_DIR},
}


class ConfigError(ValueError):
    """Raised when settings are invalid."""


def get_default_config() -> dict[str, Any]:
    """Return a deep copy of the default config."""
    return deepcopy(DEFAULT_CONFIG)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_env_file(env_path: Path) -> dict[str, str]:
    """Load a simple .env file (KEY=VALUE)."""
    values: dict[str, str] = {}
    if not env_path.exists():
        return values

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        values[key] = value
    return values


def _apply_env_overrides(config: dict[str, Any], env_values: dict[str, str]) -> dict[str, Any]:
    """Apply environment-based overrides to runtime config."""
    merged = deepcopy(config)
    store_dir = env_values.get("SCREENCINE_STORE_DIR", "").strip()
    fps = env_values.get("SCREENCINE_FPS", "").strip()

    if store_dir:
        merged.setdefault("storage", {})
        merged["storage"]["dir"] = store_dir
    if fps:
        try:
            merged.setdefault("capture", {})
            merged["capture"]["fps"] = int(fps)
        except ValueError as exc:
            raise ConfigError(f"SCREENCINE_FPS must be an integer, got {fps!r}") from exc
    return merged


def validate_config(config: dict[str, Any]) -> None:
    """Validate the fields the recorder and the camera rely on."""
    capture = config.get("capture", {})
    if capture.get("kind") not in CAPTURE_KINDS:
        raise ConfigError(f"capture.kind must be one of {', '.join(CAPTURE_KINDS)}")

    fps = capture.get("fps")
    if not isinstance(fps, int) or not (1 <= fps <= 240):
        raise ConfigError("capture.fps must be an int in range 1..240")

    timeslice = capture.get("timeslice_ms")
    if not isinstance(timeslice, int) or timeslice <= 0:
        raise ConfigError("capture.timeslice_ms must be a positive int")

    codecs = capture.get("codecs")
    if not isinstance(codecs, list) or not all(isinstance(c, str) and len(c) == 4 for c in codecs):
        raise ConfigError("capture.codecs must be a list of four-character codes")

    bridge = config.get("bridge", {})
    attempts = bridge.get("handshake_attempts")
    if not isinstance(attempts, int) or attempts < 1:
        raise ConfigError("bridge.handshake_attempts must be >= 1")

    camera = config.get("camera", {})
    for key in ("zoom_smoothing", "pan_smoothing"):
        value = camera.get(key)
        if not isinstance(value, (float, int)) or not (0 < float(value) <= 1):
            raise ConfigError(f"camera.{key} must be in range (0, 1]")
    floating = camera.get("floating_zoom")
    if not isinstance(floating, (float, int)) or not (0 < float(floating) < 1):
        raise ConfigError("camera.floating_zoom must be in range (0, 1)")

    export_fps = config.get("export", {}).get("fps")
    if not isinstance(export_fps, int) or not (1 <= export_fps <= 240):
        raise ConfigError("export.fps must be an int in range 1..240")


def load_config(path: str | Path | None = None) -> dict[str, Any]:
    """Load config from JSON and merge into defaults."""
    config_path = Path(path or DEFAULT_SETTINGS_FILE)
    env_values = _load_env_file(config_path.parent / ".env")
    merged = get_default_config()
    if config_path.exists():
        merged = _deep_merge(merged, read_json_file(config_path))
    merged = _apply_env_overrides(merged, env_values)
    validate_config(merged)
    return merged


def save_config(config: dict[str, Any], path: str | Path | None = None) -> Path:
    """Validate and save config as JSON."""
    validate_config(config)
    config_path = Path(path or DEFAULT_SETTINGS_FILE)
    write_json_file(config_path, config)
    return config_path
