# -*- coding: utf-8 -*-
"""Reference dimensions used to interpret raw pointer coordinates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from screencine.core.errors import ArtifactFormatError

_FIELD_KEYS = {
    "outer_width": "outerWidth",
    "outer_height": "outerHeight",
    "screen_width": "screenWidth",
    "screen_height": "screenHeight",
    "window_x": "windowX",
    "window_y": "windowY",
}


@dataclass(frozen=True)
class GeometryContext:
    """Viewport size plus the optional window/screen references.

    Recordings made before window and screen dimensions were collected only
    carry the viewport size and pixel ratio; every optional field may be None.
    """

    width: float
    height: float
    dpr: float = 1.0
    outer_width: float | None = None
    outer_height: float | None = None
    screen_width: float | None = None
    screen_height: float | None = None
    window_x: float | None = None
    window_y: float | None = None

    @property
    def has_screen_size(self) -> bool:
        return bool(self.screen_width) and bool(self.screen_height)

    @property
    def has_outer_size(self) -> bool:
        return bool(self.outer_width) and bool(self.outer_height)

    @property
    def has_window_origin(self) -> bool:
        return self.window_x is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"width": self.width, "height": self.height, "dpr": self.dpr}
        for attr, key in _FIELD_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeometryContext":
        if not isinstance(data, dict):
            raise ArtifactFormatError(f"geometry context must be an object, got {type(data).__name__}")
        try:
            kwargs: dict[str, Any] = {
                "width": float(data.get("width", 0) or 0),
                "height": float(data.get("height", 0) or 0),
                "dpr": float(data.get("dpr") or 1.0),
            }
            for attr, key in _FIELD_KEYS.items():
                value = data.get(key, data.get(attr))
                kwargs[attr] = None if value is None else float(value)
        except (TypeError, ValueError) as exc:
            raise ArtifactFormatError(f"invalid geometry context {data!r}: {exc}") from exc
        return cls(**kwargs)
