# -*- coding: utf-8 -*-
"""Incremental encoding of a live capture handle, and the encoder agent."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable

import cv2
import numpy as np

from screencine.constants import CODEC_CONTAINERS, DEFAULT_CAPTURE_FPS, DEFAULT_CODECS, DEFAULT_TIMESLICE_MS
from screencine.core.errors import UnsupportedCodecError
from screencine.core.messages import (
    EncoderLoaded,
    MessageDispatcher,
    ProbeStatus,
    RecordingSaved,
    RemoteLog,
    SliceAvailable,
    StartEncoding,
    StatusReport,
    StopEncoding,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTAINER = ".avi"

SliceCallback = Callable[[bytes, int], None]
CompleteCallback = Callable[[bytes, "str | None"], None]


def open_video_writer(
    path_stem: Path,
    size: tuple[int, int],
    fps: float,
    codecs: list[str] | tuple[str, ...] = tuple(DEFAULT_CODECS),
    writer_factory: Callable[..., Any] | None = None,
) -> tuple[Any, Path, str]:
    """Open the first codec that works, falling through to the platform default.

    Returns ``(writer, path, codec label)``. Raises UnsupportedCodecError when
    even the default (fourcc 0) cannot be opened.
    """
    factory = writer_factory or cv2.VideoWriter
    candidates: list[tuple[str | None, str]] = [(codec, CODEC_CONTAINERS.get(codec, DEFAULT_CONTAINER)) for codec in codecs]
    candidates.append((None, DEFAULT_CONTAINER))

    for codec, suffix in candidates:
        path = path_stem.with_suffix(suffix)
        fourcc = cv2.VideoWriter_fourcc(*codec) if codec else 0
        writer = factory(str(path), fourcc, float(fps), (int(size[0]), int(size[1])))
        if writer is not None and writer.isOpened():
            label = codec or "default"
            logger.info("Video writer opened with codec %s -> %s", label, path.name)
            return writer, path, label
        logger.info("Codec %s not supported, trying next", codec or "default")
        if writer is not None:
            writer.release()
        path.unlink(missing_ok=True)

    raise UnsupportedCodecError(f"no usable codec among {list(codecs)} or the platform default")


class MediaPipeline:
    """Encode frames from a capture handle and emit the output in time slices.

    Every ``timeslice_ms`` the bytes the writer added since the previous slice
    are handed to ``on_slice``. Stopping is cooperative: ``request_stop`` lets
    the worker finish its frame, release the writer and flush the last partial
    slice before ``on_complete`` runs. ``on_complete`` receives the released
    file, which is authoritative: releasing may patch header bytes that were
    already streamed. Capture tracks are stopped on every exit.
    """

    def __init__(
        self,
        handle: Any,
        output_dir: Path | None = None,
        *,
        codecs: list[str] | tuple[str, ...] = tuple(DEFAULT_CODECS),
        fps: int = DEFAULT_CAPTURE_FPS,
        timeslice_ms: int = DEFAULT_TIMESLICE_MS,
        on_slice: SliceCallback | None = None,
        on_complete: CompleteCallback | None = None,
        writer_factory: Callable[..., Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._handle = handle
        self._owns_dir = output_dir is None
        self._output_dir = output_dir
        self._codecs = tuple(codecs)
        self._fps = max(1, int(fps))
        self._timeslice = timeslice_ms / 1000.0
        self._on_slice = on_slice
        self._on_complete = on_complete
        self._writer_factory = writer_factory
        self._clock = clock

        self._writer: Any = None
        self._path: Path | None = None
        self._codec = ""
        self._size: tuple[int, int] = tuple(handle.native_size)  # type: ignore[assignment]
        self._slices: list[bytes] = []
        self._offset = 0
        self._frames_written = 0
        self._error: str | None = None
        self._result: bytes | None = None
        self._stop_event = threading.Event()
        self._done = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def codec(self) -> str:
        return self._codec

    @property
    def frames_written(self) -> int:
        return self._frames_written

    @property
    def state(self) -> str:
        if self._thread is None or self._done.is_set():
            return "inactive"
        if self._stop_event.is_set():
            return "stopping"
        return "recording"

    @property
    def result(self) -> bytes | None:
        return self._result

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("pipeline already started")
        if self._output_dir is None:
            self._output_dir = Path(tempfile.mkdtemp(prefix="screencine-"))
        self._output_dir.mkdir(parents=True, exist_ok=True)
        try:
            self._writer, self._path, self._codec = open_video_writer(
                self._output_dir / "capture",
                self._size,
                self._fps,
                self._codecs,
                self._writer_factory,
            )
        except UnsupportedCodecError:
            self._handle.stop_tracks()
            self._cleanup_dir()
            raise
        self._thread = threading.Thread(target=self._loop, name="screencine-encoder", daemon=True)
        self._thread.start()
        logger.info("Media pipeline started (%sx%s @ %s fps)", self._size[0], self._size[1], self._fps)

    def request_stop(self) -> None:
        logger.debug("Media pipeline stop requested (state=%s)", self.state)
        self._stop_event.set()

    def wait(self, timeout: float | None = None) -> bytes | None:
        self._done.wait(timeout)
        return self._result

    def _loop(self) -> None:
        interval = 1.0 / self._fps
        last_slice = self._clock()
        try:
            while not self._stop_event.is_set():
                started = self._clock()
                frame = self._handle.read_frame()
                if frame is None:
                    if not self._handle.active:
                        logger.info("Capture stream ended; finishing encoder")
                        break
                else:
                    self._write(frame)
                if self._clock() - last_slice >= self._timeslice:
                    self._emit_slice()
                    last_slice = self._clock()
                remaining = interval - (self._clock() - started)
                if remaining > 0:
                    self._stop_event.wait(remaining)
        except Exception as exc:  # pragma: no cover - hardware/runtime path
            logger.exception("Encoder loop failed")
            self._error = str(exc) or exc.__class__.__name__
        finally:
            self._finish()

    def _write(self, frame: np.ndarray) -> None:
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
        if (frame.shape[1], frame.shape[0]) != self._size:
            frame = cv2.resize(frame, self._size)
        self._writer.write(frame)
        self._frames_written += 1

    def _emit_slice(self) -> None:
        if self._path is None or not self._path.exists():
            return
        size = self._path.stat().st_size
        if size <= self._offset:
            return
        with self._path.open("rb") as handle:
            handle.seek(self._offset)
            data = handle.read(size - self._offset)
        if not data:
            return
        self._offset += len(data)
        self._slices.append(data)
        logger.debug("Data available: %d bytes (slice %d)", len(data), len(self._slices))
        if self._on_slice is not None:
            self._on_slice(data, len(self._slices) - 1)

    def _finish(self) -> None:
        try:
            if self._writer is not None:
                self._writer.release()
            self._emit_slice()
            streamed = b"".join(self._slices)
            blob = self._read_output(streamed)
            if blob != streamed:
                logger.info("Container rewritten on close; delivering the finished file (%d bytes)", len(blob))
            if not blob:
                logger.error("Recording failed: encoded output is 0 bytes")
            else:
                logger.info(
                    "Recording finished. Slices: %d, Frames: %d, Total size: %.2f KB",
                    len(self._slices),
                    self._frames_written,
                    len(blob) / 1024,
                )
            self._result = blob
            if self._on_complete is not None:
                self._on_complete(blob, self._error)
        finally:
            self._handle.stop_tracks()
            self._cleanup_dir()
            self._done.set()

    def _read_output(self, fallback: bytes) -> bytes:
        if self._path is None or not self._path.exists():
            return fallback
        try:
            return self._path.read_bytes()
        except OSError as exc:
            logger.warning("Could not read finished video %s: %s", self._path.name, exc)
            return fallback

    def _cleanup_dir(self) -> None:
        if self._owns_dir and self._output_dir is not None:
            shutil.rmtree(self._output_dir, ignore_errors=True)


class EncoderAgent:
    """Hosts one MediaPipeline inside the encoding context."""

    def __init__(
        self,
        context_id: str,
        platform: Any,
        transport: Any,
        *,
        codecs: list[str] | tuple[str, ...] = tuple(DEFAULT_CODECS),
        fps: int = DEFAULT_CAPTURE_FPS,
        timeslice_ms: int = DEFAULT_TIMESLICE_MS,
        writer_factory: Callable[..., Any] | None = None,
        orchestrator_id: str = "orchestrator",
    ) -> None:
        self.context_id = context_id
        self._platform = platform
        self._transport = transport
        self._codecs = codecs
        self._fps = fps
        self._timeslice_ms = timeslice_ms
        self._writer_factory = writer_factory
        self._orchestrator_id = orchestrator_id
        self.pipeline: MediaPipeline | None = None
        self.dispatcher = MessageDispatcher(context_id)
        self.dispatcher.register(ProbeStatus, self._on_probe)
        self.dispatcher.register(StartEncoding, self._on_start)
        self.dispatcher.register(StopEncoding, self._on_stop)

    def announce(self) -> None:
        self._transport.notify(self._orchestrator_id, EncoderLoaded(self.context_id))

    async def _on_probe(self, message: ProbeStatus) -> StatusReport:
        recording = self.pipeline is not None and self.pipeline.state == "recording"
        return StatusReport(self.context_id, recording)

    async def _on_start(self, message: StartEncoding) -> dict[str, Any]:
        if self.pipeline is not None and self.pipeline.state != "inactive":
            return {"status": "already-recording", "codec": self.pipeline.codec}
        handle = self._platform.resolve_stream(message.stream_id)
        loop = asyncio.get_running_loop()

        def _on_slice(data: bytes, index: int) -> None:
            _post_threadsafe(loop, self._post, SliceAvailable(data, index))

        def _on_complete(blob: bytes, error: str | None) -> None:
            _post_threadsafe(loop, self._post, RecordingSaved(len(blob), error, blob))

        pipeline = MediaPipeline(
            handle,
            codecs=self._codecs,
            fps=self._fps,
            timeslice_ms=self._timeslice_ms,
            on_slice=_on_slice,
            on_complete=_on_complete,
            writer_factory=self._writer_factory,
        )
        pipeline.start()
        self.pipeline = pipeline
        self._log("info", f"encoder started with codec {pipeline.codec}")
        return {"status": "started", "codec": pipeline.codec}

    async def _on_stop(self, message: StopEncoding) -> dict[str, Any]:
        pipeline = self.pipeline
        if pipeline is None:
            self._post(RecordingSaved(0, "encoder was not recording"))
            return {"status": "inactive"}
        if pipeline.state == "inactive":
            return {"status": "inactive"}
        pipeline.request_stop()
        self._log("info", "encoder stopping")
        return {"status": "stopping"}

    def _post(self, message: Any) -> None:
        self._transport.notify(self._orchestrator_id, message)

    def _log(self, level: str, text: str) -> None:
        self._post(RemoteLog(self.context_id, level, (text,)))


def _post_threadsafe(loop: asyncio.AbstractEventLoop, post: Callable[[Any], None], message: Any) -> None:
    try:
        loop.call_soon_threadsafe(post, message)
    except RuntimeError:
        logger.warning("Event loop closed; dropping %s", message.TYPE)


def make_encoder_factory(
    *,
    codecs: list[str] | tuple[str, ...] = tuple(DEFAULT_CODECS),
    fps: int = DEFAULT_CAPTURE_FPS,
    timeslice_ms: int = DEFAULT_TIMESLICE_MS,
    writer_factory: Callable[..., Any] | None = None,
) -> Callable[[str, Any, Any], MessageDispatcher]:
    """Build the platform hook that creates the encoding context."""

    def _factory(context_id: str, transport: Any, platform: Any) -> MessageDispatcher:
        agent = EncoderAgent(
            context_id,
            platform,
            transport,
            codecs=codecs,
            fps=fps,
            timeslice_ms=timeslice_ms,
            writer_factory=writer_factory,
        )
        agent.announce()
        return agent.dispatcher

    return _factory
