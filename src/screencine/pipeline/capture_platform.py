# -*- coding: utf-8 -*-
"""Capture platform: permissioned capture handles and context hosting."""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Callable

import numpy as np

from screencine.constants import CAPTURE_KINDS
from screencine.core.errors import ContextExistsError, PermissionDeniedError
from screencine.models.geometry import GeometryContext

try:  # Optional runtime dependency for screen grabbing
    import mss  # type: ignore[import-not-found]
except Exception:  # pragma: no cover - depends on local environment
    mss = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

FrameGrabber = Callable[[], "np.ndarray | None"]
EndedListener = Callable[["CaptureHandle"], None]


class CaptureHandle:
    """Opaque live video source handed out by the platform.

    ``stop_tracks`` is the local release (idempotent, no listeners fire).
    ``end`` models the platform terminating the stream, e.g. the user pressing
    the system "stop sharing" control; it notifies ended listeners once.
    """

    def __init__(
        self,
        kind: str,
        native_size: tuple[int, int],
        grab: FrameGrabber,
        *,
        surface_id: str | None = None,
        release: Callable[[], None] | None = None,
        stream_id: str | None = None,
    ) -> None:
        self.stream_id = stream_id or uuid.uuid4().hex
        self.kind = kind
        self.native_size = native_size
        self.surface_id = surface_id
        self._grab = grab
        self._release = release
        self._lock = threading.Lock()
        self._active = True
        self._ended = False
        self._listeners: list[EndedListener] = []

    @property
    def active(self) -> bool:
        with self._lock:
            return self._active

    def read_frame(self) -> np.ndarray | None:
        if not self.active:
            return None
        return self._grab()

    def add_ended_listener(self, listener: EndedListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def stop_tracks(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
        logger.info("Stopping capture tracks for stream %s", self.stream_id)
        if self._release is not None:
            self._release()

    def end(self) -> None:
        with self._lock:
            if self._ended:
                return
            self._ended = True
            listeners = list(self._listeners)
        logger.info("Capture stream %s ended by platform", self.stream_id)
        self.stop_tracks()
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                logger.exception("Stream ended listener failed")


class CapturePlatform:
    """Base platform: stream registry plus hosting of agent and encoder contexts.

    Subclasses implement ``request_capture`` and ``geometry``. Context factories
    receive ``(context_id, transport, platform)`` and return a
    ``MessageDispatcher`` for the new context.
    """

    def __init__(
        self,
        *,
        agent_factory: Callable[..., Any] | None = None,
        encoder_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._streams: dict[str, CaptureHandle] = {}
        self._agent_factory = agent_factory
        self._encoder_factory = encoder_factory
        self.active_surface: str | None = None

    async def request_capture(self, kind: str, **options: Any) -> CaptureHandle:
        raise NotImplementedError

    def geometry(self) -> GeometryContext | None:
        return None

    def register_stream(self, handle: CaptureHandle) -> CaptureHandle:
        self._streams[handle.stream_id] = handle
        return handle

    def resolve_stream(self, stream_id: str) -> CaptureHandle:
        handle = self._streams.get(stream_id)
        if handle is None:
            raise KeyError(f"unknown stream id {stream_id}")
        return handle

    async def activate_surface(self, surface_id: str) -> None:
        self.active_surface = surface_id
        logger.debug("Activated surface %s", surface_id)

    async def inject_agent(self, surface_id: str, transport: Any) -> None:
        from screencine.core.bridge import surface_context_id

        if self._agent_factory is None:
            raise RuntimeError("no instrumentation agent available for injection")
        context_id = surface_context_id(surface_id)
        if transport.has(context_id):
            raise ContextExistsError(f"agent already present in {surface_id}")
        dispatcher = self._agent_factory(context_id, transport, self)
        transport.attach(context_id, dispatcher)
        logger.info("Injected pointer agent into %s", surface_id)

    async def create_context(self, context_id: str, transport: Any) -> None:
        if self._encoder_factory is None:
            raise RuntimeError("no encoder available for the secondary context")
        if transport.has(context_id):
            raise ContextExistsError(f"context {context_id} already exists")
        dispatcher = self._encoder_factory(context_id, transport, self)
        transport.attach(context_id, dispatcher)


class _ThreadLocalGrabber:
    """mss handles are not shareable across threads; open one per thread."""

    def __init__(self, region: dict[str, int]) -> None:
        self._region = region
        self._local = threading.local()
        self._all: list[Any] = []
        self._lock = threading.Lock()

    def __call__(self) -> np.ndarray | None:
        sct = getattr(self._local, "sct", None)
        if sct is None:
            sct = mss.mss()
            self._local.sct = sct
            with self._lock:
                self._all.append(sct)
        raw = sct.grab(self._region)
        frame = np.frombuffer(raw.bgra, dtype=np.uint8).reshape((raw.height, raw.width, 4))
        return np.ascontiguousarray(frame[:, :, :3])

    def close(self) -> None:
        with self._lock:
            handles, self._all = self._all, []
        for sct in handles:
            try:
                sct.close()
            except Exception as exc:
                logger.debug("Error closing mss handle: %s", exc)


class MssCapturePlatform(CapturePlatform):
    """Screen and region capture backed by ``mss``.

    ``kind="screen"`` grabs a whole monitor; ``kind="window"`` and
    ``kind="tab"`` grab the region passed as ``region={"left", "top",
    "width", "height"}``.
    """

    SURFACE_ID = "desktop"

    def __init__(
        self,
        monitor: int = 1,
        consent_prompt: Callable[[str, dict[str, int]], bool] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.monitor = monitor
        self._consent_prompt = consent_prompt
        self._geometry: GeometryContext | None = None

    @classmethod
    def capture_capabilities(cls) -> dict[str, Any]:
        return {"mss_available": mss is not None}

    async def request_capture(self, kind: str, **options: Any) -> CaptureHandle:
        if kind not in CAPTURE_KINDS:
            raise ValueError(f"unsupported capture kind {kind!r}")
        if mss is None:
            raise RuntimeError("mss is not installed; screen capture unavailable")
        with mss.mss() as sct:
            monitors = list(sct.monitors)
        monitor_idx = int(options.get("monitor", self.monitor))
        if monitor_idx >= len(monitors):
            logger.warning("Monitor %s not found, falling back to primary", monitor_idx)
            monitor_idx = 1 if len(monitors) > 1 else 0
        monitor = dict(monitors[monitor_idx])

        if kind == "screen":
            region = {key: int(monitor[key]) for key in ("left", "top", "width", "height")}
        else:
            raw_region = options.get("region")
            if not raw_region:
                raise ValueError(f"capture kind {kind!r} requires a region")
            region = {key: int(raw_region[key]) for key in ("left", "top", "width", "height")}

        if self._consent_prompt is not None and not self._consent_prompt(kind, region):
            raise PermissionDeniedError(f"capture of {kind} declined")

        self._geometry = GeometryContext(
            width=region["width"],
            height=region["height"],
            dpr=float(options.get("dpr", 1.0)),
            outer_width=region["width"],
            outer_height=region["height"],
            screen_width=monitor["width"],
            screen_height=monitor["height"],
            window_x=region["left"] - monitor["left"],
            window_y=region["top"] - monitor["top"],
        )
        grabber = _ThreadLocalGrabber(region)
        handle = CaptureHandle(
            kind,
            (region["width"], region["height"]),
            grabber,
            surface_id=self.SURFACE_ID,
            release=grabber.close,
        )
        logger.info("Capture handle %s for %s region %s", handle.stream_id, kind, region)
        return self.register_stream(handle)

    def geometry(self) -> GeometryContext | None:
        return self._geometry
