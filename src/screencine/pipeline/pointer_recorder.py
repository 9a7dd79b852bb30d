# -*- coding: utf-8 -*-
"""Pointer sampling inside the recorded surface, plus the agent that hosts it."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

from screencine.core.messages import (
    AgentLoaded,
    GetDimensions,
    MessageDispatcher,
    ProbeStatus,
    RemoteLog,
    StartRecording,
    StatusReport,
    StopRecording,
)
from screencine.models.geometry import GeometryContext
from screencine.models.pointer_sample import PointerSample

try:  # Optional runtime dependency for global pointer hooks
    from pynput import mouse as pynput_mouse  # type: ignore[import-not-found]
except Exception:  # pragma: no cover - depends on local environment
    pynput_mouse = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


class PointerRecorder:
    """Record clicks immediately and moves at most once per rendered frame.

    Raw move events land in a latest-wins buffer; ``flush_frame`` turns the
    buffer into one sample. While armed, a ticker thread calls ``flush_frame``
    at ``frame_rate_hz``; pass ``frame_rate_hz=None`` to drive frames manually.
    """

    def __init__(
        self,
        frame_rate_hz: float | None = 60.0,
        clock: Callable[[], float] = _wall_clock_ms,
    ) -> None:
        self._frame_rate_hz = frame_rate_hz
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: list[PointerSample] = []
        self._pending_move: tuple[float, float, float | None, float | None] | None = None
        self._armed = False
        self._start_ms = 0.0
        self._stop_event = threading.Event()
        self._ticker: threading.Thread | None = None

    @property
    def armed(self) -> bool:
        return self._armed

    def start(self) -> None:
        with self._lock:
            self._samples = []
            self._pending_move = None
            self._start_ms = self._clock()
            self._armed = True
        if self._frame_rate_hz:
            self._stop_event.clear()
            self._ticker = threading.Thread(
                target=self._tick_loop,
                name="screencine-pointer-frames",
                daemon=True,
            )
            self._ticker.start()
        logger.info("Pointer recorder started")

    def stop(self) -> list[PointerSample]:
        """Disarm and hand over the recorded samples; storage is cleared."""
        self._stop_event.set()
        ticker = self._ticker
        self._ticker = None
        if ticker is not None and ticker.is_alive():
            ticker.join(timeout=1.0)
        with self._lock:
            self._armed = False
            self._pending_move = None
            samples, self._samples = self._samples, []
        logger.info("Pointer recorder stopped with %d samples", len(samples))
        return samples

    def on_move(self, x: float, y: float, screen_x: float | None = None, screen_y: float | None = None) -> None:
        with self._lock:
            if not self._armed:
                return
            self._pending_move = (x, y, screen_x, screen_y)

    def on_click(self, x: float, y: float, screen_x: float | None = None, screen_y: float | None = None) -> None:
        with self._lock:
            if not self._armed:
                return
            self._samples.append(self._sample(x, y, screen_x, screen_y, "click"))

    def flush_frame(self) -> PointerSample | None:
        """Record the most recent buffered move, if any, and clear the buffer."""
        with self._lock:
            if not self._armed or self._pending_move is None:
                return None
            x, y, screen_x, screen_y = self._pending_move
            self._pending_move = None
            sample = self._sample(x, y, screen_x, screen_y, "move")
            self._samples.append(sample)
            return sample

    def snapshot(self) -> list[PointerSample]:
        with self._lock:
            return list(self._samples)

    def _sample(self, x: float, y: float, screen_x: float | None, screen_y: float | None, kind: str) -> PointerSample:
        elapsed = max(0, int(round(self._clock() - self._start_ms)))
        return PointerSample(elapsed, float(x), float(y), kind, screen_x, screen_y)

    def _tick_loop(self) -> None:
        interval = 1.0 / float(self._frame_rate_hz or 60.0)
        while not self._stop_event.wait(interval):
            self.flush_frame()


class PynputPointerSource:
    """Feed global pointer events from ``pynput`` into a PointerRecorder.

    ``origin`` is the screen position of the recorded surface; page-relative
    coordinates are the screen coordinates minus that origin.
    """

    def __init__(self, recorder: PointerRecorder, origin: tuple[float, float] = (0.0, 0.0)) -> None:
        self._recorder = recorder
        self._origin = origin
        self._listener: Any = None

    @classmethod
    def available(cls) -> bool:
        return pynput_mouse is not None

    def start(self) -> None:
        if pynput_mouse is None:
            raise RuntimeError("pynput is not installed; pointer capture unavailable")
        self._listener = pynput_mouse.Listener(on_move=self._on_move, on_click=self._on_click)
        self._listener.start()

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.stop()

    def _on_move(self, x: float, y: float) -> None:
        self._recorder.on_move(x - self._origin[0], y - self._origin[1], x, y)

    def _on_click(self, x: float, y: float, button: Any, pressed: bool) -> None:
        del button
        if pressed:
            self._recorder.on_click(x - self._origin[0], y - self._origin[1], x, y)


class PointerAgent:
    """Instrumentation agent living in the recorded surface's context."""

    def __init__(
        self,
        context_id: str,
        recorder: PointerRecorder,
        geometry_provider: Callable[[], GeometryContext | None],
        *,
        source: Any = None,
        transport: Any = None,
        orchestrator_id: str = "orchestrator",
    ) -> None:
        self.context_id = context_id
        self.recorder = recorder
        self._geometry_provider = geometry_provider
        self._source = source
        self._transport = transport
        self._orchestrator_id = orchestrator_id
        self.dispatcher = MessageDispatcher(context_id)
        self.dispatcher.register(ProbeStatus, self._on_probe)
        self.dispatcher.register(StartRecording, self._on_start)
        self.dispatcher.register(StopRecording, self._on_stop)
        self.dispatcher.register(GetDimensions, self._on_dimensions)

    async def _on_probe(self, message: ProbeStatus) -> StatusReport:
        return StatusReport(self.context_id, self.recorder.armed)

    async def _on_start(self, message: StartRecording) -> dict[str, Any]:
        self.recorder.start()
        if self._source is not None:
            self._source.start()
        self._log("info", f"pointer recording started for {message.target_surface_id}")
        return {"status": "started"}

    async def _on_stop(self, message: StopRecording) -> dict[str, Any]:
        if self._source is not None:
            self._source.stop()
        samples = self.recorder.stop()
        geometry = self._geometry_provider()
        self._log("info", f"pointer recording stopped with {len(samples)} samples")
        return {
            "status": "stopped",
            "data": {
                "events": [sample.to_dict() for sample in samples],
                "viewport": geometry.to_dict() if geometry is not None else None,
            },
        }

    async def _on_dimensions(self, message: GetDimensions) -> dict[str, Any]:
        geometry = self._geometry_provider()
        if geometry is None:
            return {"width": 0, "height": 0, "dpr": 1.0}
        return {"width": geometry.width, "height": geometry.height, "dpr": geometry.dpr}

    def announce(self) -> None:
        """Tell the orchestrator the agent is loaded and listening."""
        if self._transport is not None:
            self._transport.notify(self._orchestrator_id, AgentLoaded(self.context_id))

    def _log(self, level: str, text: str) -> None:
        logger.log(logging.getLevelName(level.upper()), text)
        if self._transport is not None:
            self._transport.notify(self._orchestrator_id, RemoteLog(self.context_id, level, (text,)))


def make_pointer_agent_factory(
    recorder: PointerRecorder | None = None,
    *,
    source_factory: Callable[[PointerRecorder, GeometryContext | None], Any] | None = None,
    frame_rate_hz: float | None = 60.0,
) -> Callable[[str, Any, Any], MessageDispatcher]:
    """Build the platform hook that injects a PointerAgent into a surface."""

    def _factory(context_id: str, transport: Any, platform: Any) -> MessageDispatcher:
        agent_recorder = recorder or PointerRecorder(frame_rate_hz=frame_rate_hz)
        source = source_factory(agent_recorder, platform.geometry()) if source_factory else None
        agent = PointerAgent(
            context_id,
            agent_recorder,
            platform.geometry,
            source=source,
            transport=transport,
        )
        agent.announce()
        return agent.dispatcher

    return _factory


def pynput_source_factory(recorder: PointerRecorder, geometry: GeometryContext | None) -> PynputPointerSource:
    """Pointer source whose page origin is the captured region's screen offset."""
    origin = (0.0, 0.0)
    if geometry is not None and geometry.has_window_origin:
        origin = (float(geometry.window_x or 0.0), float(geometry.window_y or 0.0))
    return PynputPointerSource(recorder, origin)
