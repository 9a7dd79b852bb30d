# -*- coding: utf-8 -*-
"""Render a saved artifact with the follow camera into a new video file."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from screencine.constants import APP_NAME, DEFAULT_CODECS, EXPORT_FPS
from screencine.core.errors import EmptyArtifactError
from screencine.models.artifact import CaptureArtifact
from screencine.pipeline.media_pipeline import open_video_writer
from screencine.synthesis.camera import CameraSettings, CameraSynthesizer
from screencine.synthesis.frames import OpenCVFrameSource
from screencine.synthesis.playback import frame_timestamps, render_sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportResult:
    path: Path
    frames_written: int
    duration_ms: float
    codec: str = ""


def default_export_name(now_ms: int | None = None) -> str:
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    return f"{APP_NAME}-export-{stamp}"


class Exporter:
    """Deterministic, time-stepped export.

    Frame ``i`` is drawn at ``i * 1000 / fps`` on a fresh synthesizer, so the
    output does not depend on how fast the machine renders.
    """

    def __init__(
        self,
        *,
        output_dir: str | Path = "exports",
        codecs: list[str] | tuple[str, ...] = tuple(DEFAULT_CODECS),
        settings: CameraSettings | None = None,
        frame_source_factory: Callable[[bytes], Any] | None = None,
        writer_factory: Callable[..., Any] | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.codecs = tuple(codecs)
        self.settings = settings
        self._frame_source_factory = frame_source_factory or OpenCVFrameSource.from_bytes
        self._writer_factory = writer_factory

    def export(
        self,
        artifact: CaptureArtifact,
        output_path: str | Path | None = None,
        fps: float = EXPORT_FPS,
        progress: Callable[[int, int], None] | None = None,
    ) -> ExportResult:
        if artifact.is_empty:
            raise EmptyArtifactError("nothing to export: artifact has no video")
        if fps <= 0:
            raise ValueError("fps must be positive")

        source = self._frame_source_factory(artifact.video)
        try:
            synth = CameraSynthesizer(artifact.samples, artifact.geometry, source, settings=self.settings)
            width, height = synth.canvas_size
            if width <= 0 or height <= 0:
                raise EmptyArtifactError("recorded video has no frames")

            duration_ms = float(max(getattr(source, "duration_ms", 0.0) or 0.0, artifact.duration_ms))
            timestamps = frame_timestamps(duration_ms, fps)

            if output_path is None:
                stem = self.output_dir / default_export_name()
            else:
                stem = Path(output_path).with_suffix("")
            stem.parent.mkdir(parents=True, exist_ok=True)

            writer, path, codec = open_video_writer(stem, (width, height), fps, self.codecs, self._writer_factory)
            written = 0
            try:
                for frame in render_sequence(synth, timestamps):
                    if frame is not None:
                        writer.write(frame)
                        written += 1
                    if progress is not None:
                        progress(written, len(timestamps))
            finally:
                writer.release()
        finally:
            close = getattr(source, "close", None)
            if callable(close):
                close()

        logger.info("Exported %d frames (%.0f ms) to %s with %s", written, duration_ms, path, codec)
        return ExportResult(path=path, frames_written=written, duration_ms=duration_ms, codec=codec)
