# -*- coding: utf-8 -*-
"""Pointer sample data model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from screencine.core.errors import ArtifactFormatError

SAMPLE_KINDS = ("move", "click")


@dataclass(frozen=True)
class PointerSample:
    """One pointer event, relative to the recorder's start time."""

    timestamp_ms: int
    x: float
    y: float
    kind: str = "move"
    screen_x: float | None = None
    screen_y: float | None = None

    def __post_init__(self) -> None:
        if self.timestamp_ms < 0:
            raise ArtifactFormatError(f"timestamp must be >= 0, got {self.timestamp_ms}")
        if self.kind not in SAMPLE_KINDS:
            raise ArtifactFormatError(f"unknown sample kind {self.kind!r}")

    @property
    def is_click(self) -> bool:
        return self.kind == "click"

    @property
    def has_screen_position(self) -> bool:
        return self.screen_x is not None and self.screen_y is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp_ms,
            "x": self.x,
            "y": self.y,
            "type": self.kind,
        }
        if self.screen_x is not None:
            data["screenX"] = self.screen_x
        if self.screen_y is not None:
            data["screenY"] = self.screen_y
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PointerSample":
        if not isinstance(data, dict):
            raise ArtifactFormatError(f"pointer sample must be an object, got {type(data).__name__}")
        raw_ts = data.get("timestamp", data.get("timestampMs"))
        if raw_ts is None or "x" not in data or "y" not in data:
            raise ArtifactFormatError(f"pointer sample is missing timestamp or position: {data!r}")
        try:
            return cls(
                timestamp_ms=int(round(float(raw_ts))),
                x=float(data["x"]),
                y=float(data["y"]),
                kind=str(data.get("type", data.get("kind", "move"))),
                screen_x=_optional_float(data.get("screenX")),
                screen_y=_optional_float(data.get("screenY")),
            )
        except (TypeError, ValueError) as exc:
            raise ArtifactFormatError(f"invalid pointer sample {data!r}: {exc}") from exc


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def sort_samples(samples: list[PointerSample] | tuple[PointerSample, ...]) -> tuple[PointerSample, ...]:
    """Return samples ordered by timestamp; equal timestamps keep input order."""
    return tuple(sorted(samples, key=lambda sample: sample.timestamp_ms))
