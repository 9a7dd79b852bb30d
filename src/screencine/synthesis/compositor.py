# -*- coding: utf-8 -*-
"""Raster operations for the camera composite (numpy + OpenCV)."""

from __future__ import annotations

from functools import lru_cache

import cv2
import numpy as np

from screencine.constants import (
    BACKGROUND_GRADIENT,
    CURSOR_FILL,
    CURSOR_OUTLINE,
    CURSOR_OUTLINE_WIDTH,
    CURSOR_SHADOW,
    VIDEO_SHADOW,
)

# cv2 drawing with sub-pixel centers: coordinates are scaled by 2**SHIFT.
_SHIFT = 4
_SCALE = 1 << _SHIFT


def hex_to_bgr(value: str) -> tuple[int, int, int]:
    raw = value.lstrip("#")
    if len(raw) != 6:
        raise ValueError(f"expected #RRGGBB, got {value!r}")
    red, green, blue = (int(raw[i : i + 2], 16) for i in (0, 2, 4))
    return (blue, green, red)


@lru_cache(maxsize=8)
def _gradient(width: int, height: int) -> np.ndarray:
    stops = [offset for offset, _ in BACKGROUND_GRADIENT]
    colors = np.array([hex_to_bgr(color) for _, color in BACKGROUND_GRADIENT], dtype=np.float32)
    xs = np.arange(width, dtype=np.float32)[None, :]
    ys = np.arange(height, dtype=np.float32)[:, None]
    # Projection onto the (0,0)->(w,h) diagonal.
    denom = float(width * width + height * height) or 1.0
    t = (xs * width + ys * height) / denom
    out = np.empty((height, width, 3), dtype=np.uint8)
    for channel in range(3):
        out[:, :, channel] = np.interp(t, stops, colors[:, channel]).astype(np.uint8)
    out.setflags(write=False)
    return out


def gradient_background(width: int, height: int) -> np.ndarray:
    """Diagonal decorative gradient filling the whole canvas."""
    return _gradient(int(width), int(height)).copy()


def camera_matrix(canvas_size: tuple[int, int], center_x: float, center_y: float, zoom: float) -> np.ndarray:
    """translate(canvas center) * scale(zoom) * translate(-camera center) as a 2x3 affine."""
    width, height = canvas_size
    return np.array(
        [
            [zoom, 0.0, width / 2.0 - zoom * center_x],
            [0.0, zoom, height / 2.0 - zoom * center_y],
        ],
        dtype=np.float64,
    )


def apply_point(matrix: np.ndarray, x: float, y: float) -> tuple[float, float]:
    return (
        float(matrix[0, 0] * x + matrix[0, 1] * y + matrix[0, 2]),
        float(matrix[1, 0] * x + matrix[1, 1] * y + matrix[1, 2]),
    )


def _darken(canvas: np.ndarray, mask: np.ndarray, alpha: float, blur: float, offset_y: float) -> None:
    """Cast a soft shadow of ``mask`` onto ``canvas`` in place.

    Shadow offset and blur are screen-space values, unaffected by zoom.
    """
    height, width = mask.shape[:2]
    shift = np.float32([[1, 0, 0], [0, 1, offset_y]])
    shadow = cv2.warpAffine(mask, shift, (width, height))
    sigma = blur / 2.0
    if sigma > 0:
        shadow = cv2.GaussianBlur(shadow, (0, 0), sigmaX=sigma, sigmaY=sigma)
    factor = 1.0 - alpha * np.clip(shadow, 0.0, 1.0)
    canvas[:] = (canvas.astype(np.float32) * factor[:, :, None]).astype(np.uint8)


def draw_video(canvas: np.ndarray, frame: np.ndarray, matrix: np.ndarray) -> None:
    """Draw ``frame`` stretched to the canvas rectangle, transformed by ``matrix``, with a drop shadow."""
    height, width = canvas.shape[:2]
    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    elif frame.shape[2] == 4:
        frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    if (frame.shape[1], frame.shape[0]) != (width, height):
        frame = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)

    ones = np.ones((height, width), dtype=np.float32)
    mask = cv2.warpAffine(ones, matrix, (width, height), flags=cv2.INTER_LINEAR, borderValue=0)
    _darken(canvas, mask, VIDEO_SHADOW["alpha"], VIDEO_SHADOW["blur"], VIDEO_SHADOW["offset_y"])

    warped = cv2.warpAffine(frame, matrix, (width, height), flags=cv2.INTER_LINEAR, borderValue=(0, 0, 0))
    alpha = mask[:, :, None]
    blended = canvas.astype(np.float32) * (1.0 - alpha) + warped.astype(np.float32) * alpha
    canvas[:] = np.clip(blended, 0, 255).astype(np.uint8)


def draw_cursor(
    canvas: np.ndarray,
    x: float,
    y: float,
    radius: float,
    outline_width: float = CURSOR_OUTLINE_WIDTH,
) -> None:
    """Filled marker with a contrasting outline, at screen position (x, y)."""
    height, width = canvas.shape[:2]
    center = (int(round(x * _SCALE)), int(round(y * _SCALE)))
    scaled_radius = max(1, int(round(radius * _SCALE)))

    mask = np.zeros((height, width), dtype=np.float32)
    cv2.circle(mask, center, scaled_radius, 1.0, thickness=-1, lineType=cv2.LINE_AA, shift=_SHIFT)
    _darken(canvas, mask, CURSOR_SHADOW["alpha"], CURSOR_SHADOW["blur"], CURSOR_SHADOW["offset_y"])

    cv2.circle(canvas, center, scaled_radius, hex_to_bgr(CURSOR_FILL), thickness=-1, lineType=cv2.LINE_AA, shift=_SHIFT)
    outline = max(1, int(round(outline_width)))
    cv2.circle(canvas, center, scaled_radius, hex_to_bgr(CURSOR_OUTLINE), thickness=outline, lineType=cv2.LINE_AA, shift=_SHIFT)
