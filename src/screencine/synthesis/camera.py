# -*- coding: utf-8 -*-
"""Virtual camera that follows the recorded pointer.

The synthesizer maps a sparse pointer trace onto the video's pixel space,
smooths a pan/zoom camera toward it on every draw call, and composites the
result. Camera state carries over between calls, so a fixed artifact driven
by the same increasing timestamps always yields the same frames; preview and
export depend on that.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable

import numpy as np

from screencine.constants import (
    CLICK_FOCUS_WINDOW_MS,
    CURSOR_BASE_RADIUS,
    CURSOR_OUTLINE_WIDTH,
    FLOATING_ZOOM,
    FOCUS_ZOOM,
    MODE_TOLERANCE_PX,
    PAN_SMOOTHING,
    ZOOM_SMOOTHING,
)
from screencine.models.geometry import GeometryContext
from screencine.models.pointer_sample import PointerSample, sort_samples
from screencine.synthesis import compositor
from screencine.synthesis.frames import VideoFrameSource

logger = logging.getLogger(__name__)

MODE_VIEWPORT = "viewport"
MODE_WINDOW = "window"
MODE_SCREEN = "screen"


@dataclass
class CameraState:
    center_x: float
    center_y: float
    zoom: float


@dataclass(frozen=True)
class CameraSettings:
    focus_zoom: float = FOCUS_ZOOM
    floating_zoom: float = FLOATING_ZOOM
    click_window_ms: float = CLICK_FOCUS_WINDOW_MS
    zoom_smoothing: float = ZOOM_SMOOTHING
    pan_smoothing: float = PAN_SMOOTHING

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "CameraSettings":
        camera = config.get("camera", {})
        defaults = cls()
        return cls(
            focus_zoom=float(camera.get("focus_zoom", defaults.focus_zoom)),
            floating_zoom=float(camera.get("floating_zoom", defaults.floating_zoom)),
            click_window_ms=float(camera.get("click_window_ms", defaults.click_window_ms)),
            zoom_smoothing=float(camera.get("zoom_smoothing", defaults.zoom_smoothing)),
            pan_smoothing=float(camera.get("pan_smoothing", defaults.pan_smoothing)),
        )


def lerp(start: float, end: float, t: float) -> float:
    return start * (1 - t) + end * t


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class CameraSynthesizer:
    """Per-timestamp camera transform and composite for one artifact."""

    def __init__(
        self,
        samples: Iterable[PointerSample],
        geometry: GeometryContext | None,
        frame_source: VideoFrameSource | None,
        canvas_size: tuple[int, int] | None = None,
        settings: CameraSettings | None = None,
    ) -> None:
        self._samples: tuple[PointerSample, ...] = sort_samples(list(samples))
        self._timestamps = [sample.timestamp_ms for sample in self._samples]
        self._click_times = [sample.timestamp_ms for sample in self._samples if sample.is_click]
        self._geometry = geometry
        self._source = frame_source
        if canvas_size is None:
            canvas_size = frame_source.native_size if frame_source is not None else (0, 0)
        self.canvas_size = (int(canvas_size[0]), int(canvas_size[1]))
        self.settings = settings or CameraSettings()
        self.camera = self._initial_camera()
        self.last_pointer: tuple[float, float] | None = None

    @property
    def samples(self) -> tuple[PointerSample, ...]:
        return self._samples

    def reset(self) -> None:
        self.camera = self._initial_camera()
        self.last_pointer = None

    def _initial_camera(self) -> CameraState:
        # Start centered so the first frames do not fly in from a corner.
        width, height = self.canvas_size
        return CameraState(width / 2.0, height / 2.0, self.settings.floating_zoom)

    def _video_size(self) -> tuple[int, int]:
        if self._source is None:
            return (0, 0)
        width, height = self._source.native_size
        return (int(width or 0), int(height or 0))

    # --- coordinate space ------------------------------------------------

    def detect_mode(self) -> str:
        """Classify the recording as screen, window or viewport capture."""
        video_w, video_h = self._video_size()
        geometry = self._geometry
        if geometry is None or not video_w:
            return MODE_VIEWPORT

        dpr = geometry.dpr or 1.0
        if geometry.has_screen_size:
            screen_w = float(geometry.screen_width) * dpr  # type: ignore[arg-type]
            screen_h = float(geometry.screen_height) * dpr  # type: ignore[arg-type]
            if abs(video_w - screen_w) < MODE_TOLERANCE_PX and abs(video_h - screen_h) < MODE_TOLERANCE_PX:
                return MODE_SCREEN

        if geometry.has_outer_size:
            outer_w = float(geometry.outer_width) * dpr  # type: ignore[arg-type]
            outer_h = float(geometry.outer_height) * dpr  # type: ignore[arg-type]
            if abs(video_w - outer_w) < MODE_TOLERANCE_PX and abs(video_h - outer_h) < MODE_TOLERANCE_PX:
                return MODE_WINDOW

        return MODE_VIEWPORT

    def _raw_point(self, sample: PointerSample, mode: str, use_screen: bool) -> tuple[float, float]:
        if use_screen and mode == MODE_SCREEN:
            return float(sample.screen_x), float(sample.screen_y)  # type: ignore[arg-type]
        if use_screen and mode == MODE_WINDOW:
            geometry = self._geometry
            origin_x = float(geometry.window_x or 0.0)  # type: ignore[union-attr]
            origin_y = float(geometry.window_y or 0.0)  # type: ignore[union-attr]
            return float(sample.screen_x) - origin_x, float(sample.screen_y) - origin_y  # type: ignore[arg-type]
        return sample.x, sample.y

    def _reference_size(self, mode: str) -> tuple[float, float]:
        geometry = self._geometry
        if geometry is None:
            return (0.0, 0.0)
        if mode == MODE_SCREEN:
            return (float(geometry.screen_width or 0.0), float(geometry.screen_height or 0.0))
        if mode == MODE_WINDOW:
            return (float(geometry.outer_width or 0.0), float(geometry.outer_height or 0.0))
        return (float(geometry.width or 0.0), float(geometry.height or 0.0))

    def _interpolate(self, prev: PointerSample, nxt: PointerSample, progress: float) -> tuple[float, float]:
        mode = self.detect_mode()
        use_screen = prev.has_screen_position and nxt.has_screen_position
        if mode == MODE_WINDOW:
            use_screen = use_screen and self._geometry is not None and self._geometry.has_window_origin

        prev_x, prev_y = self._raw_point(prev, mode, use_screen)
        next_x, next_y = self._raw_point(nxt, mode, use_screen)
        x = lerp(prev_x, next_x, progress)
        y = lerp(prev_y, next_y, progress)

        video_w, video_h = self._video_size()
        if self._geometry is not None and video_w > 0:
            source_w, source_h = self._reference_size(mode)
            if source_w > 0 and source_h > 0:
                x *= video_w / source_w
                y *= video_h / source_h
        return (x, y)

    def pointer_position(self, t_ms: float) -> tuple[float, float] | None:
        """Pointer position at ``t_ms`` in video pixel space, or None without samples."""
        samples = self._samples
        if not samples:
            return None
        first, last = samples[0], samples[-1]
        if t_ms <= first.timestamp_ms:
            return self._interpolate(first, first, 0.0)
        if t_ms >= last.timestamp_ms:
            return self._interpolate(last, last, 0.0)

        index = bisect.bisect_left(self._timestamps, t_ms)
        prev, nxt = samples[index - 1], samples[index]
        duration = nxt.timestamp_ms - prev.timestamp_ms
        progress = 0.0 if duration == 0 else (t_ms - prev.timestamp_ms) / duration
        return self._interpolate(prev, nxt, progress)

    # --- camera ----------------------------------------------------------

    def target_zoom(self, t_ms: float) -> float:
        """Focus level near a click, the floating baseline otherwise."""
        window = self.settings.click_window_ms
        index = bisect.bisect_left(self._click_times, t_ms - window)
        for click_time in self._click_times[index:]:
            if click_time - t_ms >= window:
                break
            if abs(click_time - t_ms) < window:
                return self.settings.focus_zoom
        return self.settings.floating_zoom

    def step(self, t_ms: float) -> CameraState:
        """Advance the camera one draw call toward its target at ``t_ms``."""
        pos = self.pointer_position(t_ms)
        self._advance(t_ms, pos)
        return replace(self.camera)

    def _advance(self, t_ms: float, pos: tuple[float, float] | None) -> None:
        width, height = self.canvas_size
        camera = self.camera
        camera.zoom = lerp(camera.zoom, self.target_zoom(t_ms), self.settings.zoom_smoothing)

        target_x, target_y = width / 2.0, height / 2.0
        if pos is not None and camera.zoom >= 1.0:
            # Keep the zoomed view inside the source frame.
            visible_w = width / camera.zoom
            visible_h = height / camera.zoom
            target_x = clamp(pos[0], visible_w / 2.0, width - visible_w / 2.0)
            target_y = clamp(pos[1], visible_h / 2.0, height - visible_h / 2.0)

        camera.center_x = lerp(camera.center_x, target_x, self.settings.pan_smoothing)
        camera.center_y = lerp(camera.center_y, target_y, self.settings.pan_smoothing)

    def draw(self, t_ms: float) -> np.ndarray | None:
        """Composite the frame for ``t_ms``.

        Returns None, leaving the camera untouched, when there is no drawing
        surface; a skipped frame must not stop the render loop.
        """
        width, height = self.canvas_size
        if width <= 0 or height <= 0:
            logger.debug("No drawing surface; skipping frame at %.1f ms", t_ms)
            return None

        canvas = compositor.gradient_background(width, height)
        pos = self.pointer_position(t_ms)
        self._advance(t_ms, pos)
        camera = self.camera
        matrix = compositor.camera_matrix(self.canvas_size, camera.center_x, camera.center_y, camera.zoom)

        frame = self._source.frame_at(t_ms) if self._source is not None else None
        if frame is not None:
            compositor.draw_video(canvas, frame, matrix)

        self.last_pointer = pos
        if pos is not None:
            radius = CURSOR_BASE_RADIUS / (camera.zoom * 0.5 + 0.5)
            screen_x, screen_y = compositor.apply_point(matrix, pos[0], pos[1])
            compositor.draw_cursor(
                canvas,
                screen_x,
                screen_y,
                radius * camera.zoom,
                outline_width=CURSOR_OUTLINE_WIDTH * camera.zoom,
            )
        return canvas

