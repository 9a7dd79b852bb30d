# -*- coding: utf-8 -*-
"""Recording session state container."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any


class RecordingStatus(str, Enum):
    IDLE = "idle"
    SOURCE_SELECTING = "source_selecting"
    SOURCE_READY = "source_ready"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    SAVED = "saved"
    ERROR = "error"


# Operations and the states they may be called from.
ALLOWED_FROM: dict[str, frozenset[RecordingStatus]] = {
    "select_source": frozenset(
        {RecordingStatus.IDLE, RecordingStatus.SOURCE_READY, RecordingStatus.ERROR, RecordingStatus.SAVED}
    ),
    "reset_source": frozenset({RecordingStatus.SOURCE_READY, RecordingStatus.ERROR}),
    "start": frozenset({RecordingStatus.SOURCE_READY}),
}


@dataclass
class RecordingSession:
    """Mutable state owned by one CaptureSession."""

    status: RecordingStatus = RecordingStatus.IDLE
    stream_handle: Any = None
    target_surface_id: str | None = None
    finalize_future: asyncio.Future | None = None
    error: str | None = None
    started_at: float | None = None
