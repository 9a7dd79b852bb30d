# -*- coding: utf-8 -*-
"""Video frame sources for replay."""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Protocol, Sequence

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class VideoFrameSource(Protocol):
    """Anything that can hand out the frame shown at a playback time."""

    @property
    def native_size(self) -> tuple[int, int]: ...

    def frame_at(self, t_ms: float) -> np.ndarray | None: ...


def sniff_container_suffix(data: bytes) -> str:
    """Guess a file suffix from the container magic bytes."""
    if data.startswith(b"\x1a\x45\xdf\xa3"):
        return ".webm"
    if data[:4] == b"RIFF":
        return ".avi"
    if data[4:8] == b"ftyp":
        return ".mp4"
    return ".bin"


class ArrayFrameSource:
    """In-memory frames at a fixed frame rate."""

    def __init__(self, frames: Sequence[np.ndarray], fps: float = 30.0) -> None:
        self._frames = list(frames)
        self.fps = float(fps)

    @property
    def native_size(self) -> tuple[int, int]:
        if not self._frames:
            return (0, 0)
        height, width = self._frames[0].shape[:2]
        return (int(width), int(height))

    @property
    def duration_ms(self) -> float:
        return len(self._frames) * 1000.0 / self.fps if self.fps > 0 else 0.0

    def frame_at(self, t_ms: float) -> np.ndarray | None:
        if not self._frames:
            return None
        index = int(max(0.0, t_ms) * self.fps / 1000.0)
        return self._frames[min(index, len(self._frames) - 1)]


class OpenCVFrameSource:
    """Decode a video file with OpenCV.

    Playback time is mapped to a frame index. Reads stay sequential while the
    requested time moves forward and seek otherwise.
    """

    SEEK_THRESHOLD = 30

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._capture = cv2.VideoCapture(str(self.path))
        if not self._capture.isOpened():
            raise ValueError(f"Video could not be opened: {self.path}")
        fps = float(self._capture.get(cv2.CAP_PROP_FPS) or 0.0)
        self.fps = fps if fps > 0 else 30.0
        self.frame_count = int(self._capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self._size = (
            int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )
        self._next_index = 0
        self._last_frame: np.ndarray | None = None
        self._temp_dir: tempfile.TemporaryDirectory | None = None
        logger.debug("Opened %s: %sx%s @ %.2f fps, %d frames", self.path.name, *self._size, self.fps, self.frame_count)

    @classmethod
    def from_bytes(cls, data: bytes) -> "OpenCVFrameSource":
        """OpenCV only decodes from files; spill the blob to a temp file first."""
        temp_dir = tempfile.TemporaryDirectory(prefix="screencine-replay-")
        path = Path(temp_dir.name) / f"recording{sniff_container_suffix(data)}"
        path.write_bytes(data)
        try:
            source = cls(path)
        except Exception:
            temp_dir.cleanup()
            raise
        source._temp_dir = temp_dir
        return source

    @property
    def native_size(self) -> tuple[int, int]:
        return self._size

    @property
    def duration_ms(self) -> float:
        return self.frame_count * 1000.0 / self.fps if self.frame_count > 0 else 0.0

    def frame_at(self, t_ms: float) -> np.ndarray | None:
        target = int(max(0.0, t_ms) * self.fps / 1000.0)
        if self.frame_count > 0:
            target = min(target, self.frame_count - 1)
        if target < self._next_index - 1 or target > self._next_index + self.SEEK_THRESHOLD:
            self._capture.set(cv2.CAP_PROP_POS_FRAMES, target)
            self._next_index = target
        while self._next_index <= target:
            ok, frame = self._capture.read()
            if not ok or frame is None:
                break
            self._last_frame = frame
            self._next_index += 1
        return self._last_frame

    def close(self) -> None:
        self._capture.release()
        if self._temp_dir is not None:
            self._temp_dir.cleanup()
            self._temp_dir = None
