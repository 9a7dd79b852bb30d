# -*- coding: utf-8 -*-
"""Live preview of the follow-camera composite."""

from __future__ import annotations

import logging

import numpy as np
from PyQt6.QtCore import Qt, QTimer, pyqtSignal
from PyQt6.QtGui import QImage, QPixmap
from PyQt6.QtWidgets import QHBoxLayout, QLabel, QPushButton, QSizePolicy, QVBoxLayout, QWidget

from screencine.synthesis.camera import CameraSynthesizer
from screencine.synthesis.playback import PlaybackClock

logger = logging.getLogger(__name__)


def frame_to_qimage(frame: np.ndarray) -> QImage:
    """BGR uint8 array -> detached RGB QImage."""
    rgb = np.ascontiguousarray(frame[:, :, ::-1])
    height, width = rgb.shape[:2]
    return QImage(rgb.data, width, height, int(rgb.strides[0]), QImage.Format.Format_RGB888).copy()


class PreviewWidget(QWidget):
    """Plays an artifact through the synthesizer on a QTimer."""

    position_changed = pyqtSignal(float)

    def __init__(
        self,
        synth: CameraSynthesizer,
        duration_ms: float,
        fps: int = 60,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self._synth = synth
        self._clock = PlaybackClock(duration_ms, loop=True)
        self._last_position = 0.0

        self._frame_label = QLabel("No frame")
        self._frame_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._frame_label.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self._frame_label.setMinimumSize(320, 180)

        self._play_button = QPushButton("Play")
        self._play_button.clicked.connect(self.toggle_playback)
        self._restart_button = QPushButton("Restart")
        self._restart_button.clicked.connect(self.restart)
        self._time_label = QLabel("0.0 s")

        controls = QHBoxLayout()
        controls.addWidget(self._play_button)
        controls.addWidget(self._restart_button)
        controls.addStretch(1)
        controls.addWidget(self._time_label)

        layout = QVBoxLayout(self)
        layout.addWidget(self._frame_label, 1)
        layout.addLayout(controls)

        self._timer = QTimer(self)
        self._timer.setInterval(max(1, int(1000 / max(1, fps))))
        self._timer.timeout.connect(self._on_tick)

    @property
    def clock(self) -> PlaybackClock:
        return self._clock

    def toggle_playback(self) -> None:
        playing = self._clock.toggle()
        if playing:
            self._timer.start()
        else:
            self._timer.stop()
        self._play_button.setText("Pause" if playing else "Play")

    def restart(self) -> None:
        self._clock.seek(0.0)
        self._synth.reset()
        self._on_tick()

    def _on_tick(self) -> None:
        position = self._clock.position_ms()
        if position < self._last_position:
            # Looped back to the start.
            self._synth.reset()
        self._last_position = position
        try:
            frame = self._synth.draw(position)
        except Exception:
            logger.exception("Dropping preview frame at %.1f ms", position)
            frame = None
        self._time_label.setText(f"{position / 1000.0:.1f} s")
        self.position_changed.emit(position)
        if frame is None:
            return
        pixmap = QPixmap.fromImage(frame_to_qimage(frame))
        self._frame_label.setPixmap(
            pixmap.scaled(
                self._frame_label.size(),
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation,
            )
        )

    def closeEvent(self, event) -> None:  # noqa: N802
        self._timer.stop()
        self._clock.pause()
        super().closeEvent(event)
