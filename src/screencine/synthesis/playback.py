# -*- coding: utf-8 -*-
"""Playback time and render loops shared by preview and export."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable, Iterator

import numpy as np

from screencine.synthesis.camera import CameraSynthesizer

logger = logging.getLogger(__name__)

FrameCallback = Callable[[float, "np.ndarray | None"], None]


def render_sequence(synth: CameraSynthesizer, timestamps: Iterable[float]) -> Iterator[np.ndarray | None]:
    """Drive ``synth`` through ``timestamps`` in order, yielding each composite.

    Camera state carries over from call to call, so the same timestamps on a
    fresh synthesizer give the same frames.
    """
    previous: float | None = None
    for t_ms in timestamps:
        if previous is not None and t_ms < previous:
            logger.debug("Playback went backwards (%.1f -> %.1f ms)", previous, t_ms)
        previous = t_ms
        yield synth.draw(t_ms)


def frame_timestamps(duration_ms: float, fps: float) -> list[float]:
    """``i * 1000/fps`` for every frame that starts inside ``duration_ms``."""
    if fps <= 0 or duration_ms <= 0:
        return []
    step = 1000.0 / fps
    count = int(duration_ms // step)
    if count * step < duration_ms:
        count += 1
    return [i * step for i in range(count)]


class PlaybackClock:
    """Media position in milliseconds with play/pause/seek."""

    def __init__(self, duration_ms: float = 0.0, *, loop: bool = True, clock: Callable[[], float] = time.monotonic) -> None:
        self.duration_ms = max(0.0, float(duration_ms))
        self.loop = loop
        self._clock = clock
        self._offset_ms = 0.0
        self._started_at: float | None = None

    @property
    def playing(self) -> bool:
        return self._started_at is not None

    def play(self) -> None:
        if self._started_at is None:
            self._started_at = self._clock()

    def pause(self) -> None:
        if self._started_at is not None:
            self._offset_ms = self.position_ms()
            self._started_at = None

    def toggle(self) -> bool:
        if self.playing:
            self.pause()
        else:
            self.play()
        return self.playing

    def seek(self, position_ms: float) -> None:
        self._offset_ms = max(0.0, float(position_ms))
        if self._started_at is not None:
            self._started_at = self._clock()

    def position_ms(self) -> float:
        position = self._offset_ms
        if self._started_at is not None:
            position += (self._clock() - self._started_at) * 1000.0
        if self.duration_ms > 0 and position > self.duration_ms:
            position = position % self.duration_ms if self.loop else self.duration_ms
        return position


class PreviewLoop:
    """Background thread that draws the current clock position at a steady rate.

    Frames go to ``on_frame``; a skipped draw (None) is passed on too, the
    loop keeps ticking.
    """

    def __init__(
        self,
        synth: CameraSynthesizer,
        clock: PlaybackClock,
        on_frame: FrameCallback,
        *,
        fps: float = 60.0,
    ) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self._synth = synth
        self._clock = clock
        self._on_frame = on_frame
        self._interval = 1.0 / fps
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.frames_drawn = 0
        self.frames_dropped = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="screencine-preview", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.5) -> None:
        self._stop_event.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)

    def tick(self) -> Any:
        """Draw the frame for the current clock position; a failed draw drops the frame."""
        t_ms = self._clock.position_ms()
        try:
            frame = self._synth.draw(t_ms)
        except Exception:
            logger.exception("Dropping preview frame at %.1f ms", t_ms)
            self.frames_dropped += 1
            return None
        self.frames_drawn += 1
        self._on_frame(t_ms, frame)
        return frame

    def _loop(self) -> None:
        logger.debug("Preview loop started (%.1f fps)", 1.0 / self._interval)
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                logger.exception("Preview frame callback failed")
            remaining = self._interval - (time.monotonic() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)
        logger.debug("Preview loop stopped after %d frames", self.frames_drawn)
