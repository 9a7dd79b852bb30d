# -*- coding: utf-8 -*-
"""Application constants."""

APP_NAME = "screencine"
APP_VERSION = "0.1.0"

DEFAULT_SETTINGS_FILE = "settings.json"
DEFAULT_STORE_DIR = ".screencine"

STORE_KEY_VIDEO = "video"
STORE_KEY_METADATA = "metadata"

CAPTURE_KINDS = ("screen", "window", "tab")
RECORDING_MODES = ("viewport", "window", "screen")

# Encoder
DEFAULT_TIMESLICE_MS = 200
DEFAULT_CAPTURE_FPS = 30
DEFAULT_CODECS = ["vp09", "VP80", "mp4v"]
CODEC_CONTAINERS = {
    "vp09": ".webm",
    "VP80": ".webm",
    "mp4v": ".mp4",
    "avc1": ".mp4",
    "MJPG": ".avi",
}

# Cross-context delivery
HANDSHAKE_ATTEMPTS = 20
HANDSHAKE_INTERVAL_MS = 50
SAVE_CONFIRMATION_TIMEOUT_MS = 5000

# Camera
FOCUS_ZOOM = 1.8
FLOATING_ZOOM = 0.9
CLICK_FOCUS_WINDOW_MS = 800
ZOOM_SMOOTHING = 0.05
PAN_SMOOTHING = 0.08
MODE_TOLERANCE_PX = 10
CURSOR_BASE_RADIUS = 24.0

BACKGROUND_GRADIENT = (
    (0.0, "#0093E9"),
    (0.5, "#80D0C7"),
    (1.0, "#80D0C7"),
)
CURSOR_FILL = "#FF4757"
CURSOR_OUTLINE = "#FFFFFF"
CURSOR_OUTLINE_WIDTH = 3
VIDEO_SHADOW = {"alpha": 0.4, "blur": 40, "offset_y": 20}
CURSOR_SHADOW = {"alpha": 0.3, "blur": 8, "offset_y": 4}

EXPORT_FPS = 60
