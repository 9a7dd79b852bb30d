# -*- coding: utf-8 -*-
"""Tests for config persistence and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from screencine.config import (
    ConfigError,
    get_default_config,
    load_config,
    save_config,
    validate_config,
)


def test_default_config_has_all_sections() -> None:
    config = get_default_config()
    assert {"capture", "bridge", "pointer", "camera", "export", "storage"}.issubset(config.keys())
    validate_config(config)


def test_default_config_is_a_copy() -> None:
    config = get_default_config()
    config["capture"]["fps"] = 1
    assert get_default_config()["capture"]["fps"] != 1


def test_missing_file_returns_defaults(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "settings.json")
    assert loaded == get_default_config()


def test_saved_values_merge_into_defaults(tmp_path: Path, default_config: dict) -> None:
    target = tmp_path / "settings.json"
    default_config["camera"]["focus_zoom"] = 2.2
    default_config["capture"]["codecs"] = ["mp4v"]
    save_config(default_config, target)

    loaded = load_config(target)
    assert loaded["camera"]["focus_zoom"] == 2.2
    assert loaded["capture"]["codecs"] == ["mp4v"]
    assert loaded["bridge"]["handshake_attempts"] == default_config["bridge"]["handshake_attempts"]


def test_partial_file_keeps_other_defaults(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text('{"export": {"fps": 30}}', encoding="utf-8")
    loaded = load_config(target)
    assert loaded["export"]["fps"] == 30
    assert loaded["export"]["output_dir"] == "exports"


def test_env_file_overrides_store_dir_and_fps(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text('SCREENCINE_STORE_DIR="/data/rec"\nSCREENCINE_FPS=24\n', encoding="utf-8")
    loaded = load_config(tmp_path / "settings.json")
    assert loaded["storage"]["dir"] == "/data/rec"
    assert loaded["capture"]["fps"] == 24


def test_env_fps_must_be_integer(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("SCREENCINE_FPS=fast\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(tmp_path / "settings.json")


def test_env_fps_is_validated_without_settings_file(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("SCREENCINE_FPS=0\n", encoding="utf-8")
    assert not (tmp_path / "settings.json").exists()
    with pytest.raises(ConfigError):
        load_config(tmp_path / "settings.json")


@pytest.mark.parametrize(
    ("section", "key", "value"),
    [
        ("capture", "kind", "printer"),
        ("capture", "fps", 0),
        ("capture", "timeslice_ms", -5),
        ("capture", "codecs", ["toolong"]),
        ("bridge", "handshake_attempts", 0),
        ("camera", "pan_smoothing", 0),
        ("camera", "floating_zoom", 1.2),
        ("export", "fps", 500),
    ],
)
def test_invalid_values_are_rejected(default_config: dict, section: str, key: str, value: object) -> None:
    default_config[section][key] = value
    with pytest.raises(ConfigError):
        validate_config(default_config)


def test_save_config_validates_first(tmp_path: Path, default_config: dict) -> None:
    default_config["capture"]["kind"] = "nope"
    target = tmp_path / "settings.json"
    with pytest.raises(ConfigError):
        save_config(default_config, target)
    assert not target.exists()
