# -*- coding: utf-8 -*-
"""Shared pytest fixtures: headless capture platform and a fake video writer."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import numpy as np
import pytest


SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from screencine.config import get_default_config  # noqa: E402
from screencine.core.bridge import ContextBridge  # noqa: E402
from screencine.core.errors import PermissionDeniedError  # noqa: E402
from screencine.core.session import CaptureSession  # noqa: E402
from screencine.core.transport import LocalTransport  # noqa: E402
from screencine.models.geometry import GeometryContext  # noqa: E402
from screencine.pipeline.capture_platform import CaptureHandle, CapturePlatform  # noqa: E402
from screencine.pipeline.media_pipeline import make_encoder_factory  # noqa: E402
from screencine.pipeline.pointer_recorder import make_pointer_agent_factory  # noqa: E402
from screencine.storage.store import MemoryStore  # noqa: E402


class FakeWriter:
    """Stands in for cv2.VideoWriter: appends a fixed chunk per frame to the target file."""

    CHUNK = b"\x1a\x45\xdf\xa3" + b"\x00" * 28

    def __init__(self, path: str, fourcc: int, fps: float, size: tuple[int, int], opened: bool = True) -> None:
        self.path = Path(path)
        self.fourcc = fourcc
        self.fps = fps
        self.size = size
        self._opened = opened
        self.frames: list[np.ndarray] = []
        self.released = False
        if opened:
            self.path.write_bytes(b"")

    def isOpened(self) -> bool:  # noqa: N802
        return self._opened

    def write(self, frame: np.ndarray) -> None:
        self.frames.append(frame)
        with self.path.open("ab") as handle:
            handle.write(self.CHUNK)

    def release(self) -> None:
        self.released = True


class HeaderPatchingWriter(FakeWriter):
    """Rewrites the leading bytes on release, like a muxer fixing up its header."""

    PATCHED_HEADER = b"RIFF"

    def release(self) -> None:
        super().release()
        if not self._opened or not self.path.exists():
            return
        with self.path.open("r+b") as handle:
            handle.write(self.PATCHED_HEADER)


class SilentWriter(FakeWriter):
    """Opens fine but never produces output bytes."""

    def write(self, frame: np.ndarray) -> None:
        self.frames.append(frame)


class FakePlatform(CapturePlatform):
    """Capture platform serving a constant frame; optionally declines permission."""

    SURFACE_ID = "surface-1"

    def __init__(self, *, deny: bool = False, size: tuple[int, int] = (64, 36), **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.deny = deny
        self.size = size
        self.handles: list[CaptureHandle] = []
        self.injections = 0
        self._geometry = GeometryContext(
            width=size[0],
            height=size[1],
            dpr=1.0,
            outer_width=size[0],
            outer_height=size[1],
            screen_width=size[0],
            screen_height=size[1],
            window_x=0,
            window_y=0,
        )

    async def request_capture(self, kind: str, **options: Any) -> CaptureHandle:
        if self.deny:
            raise PermissionDeniedError("declined")
        frame = np.zeros((self.size[1], self.size[0], 3), dtype=np.uint8)
        handle = CaptureHandle(kind, self.size, lambda: frame, surface_id=self.SURFACE_ID)
        self.handles.append(handle)
        return self.register_stream(handle)

    def geometry(self) -> GeometryContext | None:
        return self._geometry

    async def inject_agent(self, surface_id: str, transport: Any) -> None:
        self.injections += 1
        await super().inject_agent(surface_id, transport)


def build_session(
    *,
    store: Any = None,
    writer: type = FakeWriter,
    deny: bool = False,
    save_timeout_ms: int = 2000,
    source_factory: Any = None,
) -> tuple[CaptureSession, FakePlatform, ContextBridge, Any]:
    """Wire a session with real bridge/transport/agents and fake capture + writer."""
    platform = FakePlatform(
        deny=deny,
        agent_factory=make_pointer_agent_factory(source_factory=source_factory, frame_rate_hz=None),
        encoder_factory=make_encoder_factory(codecs=("vp09",), fps=60, timeslice_ms=10, writer_factory=writer),
    )
    bridge = ContextBridge(LocalTransport(), platform, handshake_attempts=5, handshake_interval_ms=1)
    store = store if store is not None else MemoryStore()
    session = CaptureSession(platform, bridge, store, save_timeout_ms=save_timeout_ms)
    return session, platform, bridge, store


@pytest.fixture
def default_config() -> dict:
    return get_default_config()


@pytest.fixture
def small_frame() -> np.ndarray:
    frame = np.zeros((36, 64, 3), dtype=np.uint8)
    frame[:, :, 1] = 200
    return frame
