# -*- coding: utf-8 -*-
"""Tests for file helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from screencine.utils.file_utils import read_json_file, read_json_value, write_bytes_file, write_json_file


def test_write_json_creates_parents_and_leaves_no_temp_file(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "metadata.json"
    write_json_file(target, {"version": 2, "events": []})
    assert read_json_file(target) == {"version": 2, "events": []}
    assert not (target.parent / "metadata.json.tmp").exists()


def test_read_json_file_requires_object(tmp_path: Path) -> None:
    target = tmp_path / "list.json"
    write_json_file(target, [1, 2])
    assert read_json_value(target) == [1, 2]
    with pytest.raises(ValueError):
        read_json_file(target)


def test_write_bytes_replaces_existing_file(tmp_path: Path) -> None:
    target = tmp_path / "video.bin"
    write_bytes_file(target, b"old")
    write_bytes_file(target, b"new")
    assert target.read_bytes() == b"new"
