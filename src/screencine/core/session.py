# -*- coding: utf-8 -*-
"""Capture session state machine.

Idle -> SourceSelecting -> SourceReady -> Recording -> Finalizing -> Saved|Error

``stop()`` and the platform ending the stream both funnel into ``finalize()``,
which runs its side effects once and hands every caller the same result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

from screencine.constants import SAVE_CONFIRMATION_TIMEOUT_MS, STORE_KEY_METADATA, STORE_KEY_VIDEO
from screencine.core.bridge import ContextBridge
from screencine.core.errors import (
    ArtifactFormatError,
    EmptyArtifactError,
    InvalidTransitionError,
    PermissionDeniedError,
    SaveFailureError,
)
from screencine.core.messages import (
    RecordingSaved,
    SliceAvailable,
    StartEncoding,
    StartRecording,
    StopEncoding,
    StopRecording,
)
from screencine.core.state import ALLOWED_FROM, RecordingSession, RecordingStatus
from screencine.models.artifact import CaptureArtifact, build_metadata, normalize_metadata
from screencine.models.geometry import GeometryContext
from screencine.models.pointer_sample import PointerSample

logger = logging.getLogger(__name__)

StatusListener = Callable[[RecordingStatus, "str | None"], None]


class CaptureSession:
    """Coordinates capture, encoding and pointer collection for one recording."""

    def __init__(
        self,
        platform: Any,
        bridge: ContextBridge,
        store: Any,
        *,
        target_surface_id: str | None = None,
        save_timeout_ms: int = SAVE_CONFIRMATION_TIMEOUT_MS,
    ) -> None:
        self._platform = platform
        self._bridge = bridge
        self._store = store
        self._target_surface_override = target_surface_id
        self._save_timeout_ms = save_timeout_ms
        self._session = RecordingSession()
        self._listeners: list[StatusListener] = []
        self._slices: list[bytes] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._external_task: asyncio.Task | None = None
        self._last_artifact: CaptureArtifact | None = None
        self.warnings: list[str] = []

    @property
    def status(self) -> RecordingStatus:
        return self._session.status

    @property
    def error(self) -> str | None:
        return self._session.error

    @property
    def last_artifact(self) -> CaptureArtifact | None:
        return self._last_artifact

    @property
    def target_surface_id(self) -> str | None:
        return self._session.target_surface_id

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # --- source selection ----------------------------------------------

    async def select_source(self, kind: str = "screen", **options: Any) -> RecordingStatus:
        """Ask the platform for a capture handle.

        A declined permission prompt silently returns to Idle; any other
        failure moves the session to Error with a message.
        """
        self._require("select_source")
        self._loop = asyncio.get_running_loop()
        self._release_handle()
        self._session.error = None
        self._session.finalize_future = None
        self._set_status(RecordingStatus.SOURCE_SELECTING)
        try:
            handle = await self._platform.request_capture(kind, **options)
        except PermissionDeniedError:
            logger.info("Capture permission declined; back to idle")
            self._set_status(RecordingStatus.IDLE)
            return self.status
        except Exception as exc:
            logger.exception("Failed to set up capture stream")
            self._fail(str(exc) or "Failed to setup stream")
            return self.status

        self._session.stream_handle = handle
        self._session.target_surface_id = self._target_surface_override or getattr(handle, "surface_id", None)
        handle.add_ended_listener(self._on_stream_ended)
        self._set_status(RecordingStatus.SOURCE_READY)
        return self.status

    def reset_source(self) -> None:
        """Drop the selected source and return to Idle ("change source")."""
        self._require("reset_source")
        self._release_handle()
        self._session.error = None
        self._set_status(RecordingStatus.IDLE)

    # --- recording -----------------------------------------------------

    async def start(self) -> RecordingStatus:
        self._require("start")
        self._loop = asyncio.get_running_loop()
        handle = self._session.stream_handle
        surface_id = self._session.target_surface_id
        self._session.finalize_future = None
        self._slices = []
        self._last_artifact = None
        self.warnings = []

        try:
            if surface_id:
                await self._platform.activate_surface(surface_id)
            await self._bridge.open()
            await self._bridge.ensure_encoding_context()
            self._bridge.clear_signals(RecordingSaved)
            self._subscribe_slices()
            response = await self._bridge.send_to_encoder(StartEncoding(stream_id=handle.stream_id))
            logger.info("Encoder response: %s", response)
        except Exception as exc:
            logger.exception("Failed to start recording")
            self._unsubscribe_slices()
            self._release_handle()
            self._fail(str(exc) or "Failed to start")
            return self.status

        self._session.started_at = time.time()
        self._set_status(RecordingStatus.RECORDING)

        if surface_id:
            geometry = self._platform.geometry()
            ack = await self._bridge.deliver_safe(
                surface_id,
                StartRecording(
                    target_surface_id=surface_id,
                    geometry_hint=geometry.to_dict() if geometry is not None else None,
                ),
            )
            if ack is None:
                self._warn(f"pointer agent in {surface_id} unreachable; recording video only")
        return self.status

    async def stop(self) -> RecordingStatus:
        """Manual stop; equivalent to the stream ending externally."""
        return await self.finalize()

    async def finalize(self) -> RecordingStatus:
        """Run the finalize sequence once; concurrent and later calls share its result."""
        future = self._session.finalize_future
        if future is None:
            if self.status != RecordingStatus.RECORDING:
                raise InvalidTransitionError(f"cannot finalize from {self.status.value}")
            future = asyncio.ensure_future(self._run_finalize())
            self._session.finalize_future = future
        return await asyncio.shield(future)

    async def _run_finalize(self) -> RecordingStatus:
        self._set_status(RecordingStatus.FINALIZING)
        handle = self._session.stream_handle
        surface_id = self._session.target_surface_id
        try:
            try:
                await self._bridge.send_to_encoder(StopEncoding())
            except Exception as exc:
                logger.error("Stop command to encoder failed: %s", exc)

            samples: tuple[PointerSample, ...] = ()
            geometry: GeometryContext | None = None
            if surface_id:
                trace = await self._bridge.deliver_safe(surface_id, StopRecording(target_surface_id=surface_id))
                if trace is None:
                    self._warn(f"pointer agent in {surface_id} returned no trace; saving video only")
                samples, geometry = self._parse_trace(trace)

            saved = await self._bridge.wait_for_signal(RecordingSaved, self._save_timeout_ms)
            if saved is None:
                self._warn("no save confirmation from encoder; continuing with received data")
            elif isinstance(saved, RecordingSaved) and saved.error:
                self._warn(f"encoder reported: {saved.error}")

            if isinstance(saved, RecordingSaved) and saved.data:
                video = saved.data
            else:
                video = b"".join(self._slices)
            logger.info("Recording finished. Size: %d bytes, %d pointer samples", len(video), len(samples))
            if not video:
                raise EmptyArtifactError("Recording failed: No data")

            artifact = CaptureArtifact(video=video, samples=samples, geometry=geometry)
            try:
                await self._persist(artifact)
            except SaveFailureError as exc:
                self._warn(f"artifact could not be saved: {exc}")
            self._last_artifact = artifact
            self._set_status(RecordingStatus.SAVED)
        except EmptyArtifactError as exc:
            logger.error("%s", exc)
            self._fail(str(exc))
        except Exception as exc:
            logger.exception("Finalize failed")
            self._fail(str(exc) or exc.__class__.__name__)
        finally:
            self._unsubscribe_slices()
            if handle is not None:
                handle.stop_tracks()
        return self.status

    async def _persist(self, artifact: CaptureArtifact) -> None:
        try:
            await self._store.set(STORE_KEY_VIDEO, artifact.video)
            await self._store.set(STORE_KEY_METADATA, build_metadata(artifact.samples, artifact.geometry))
        except Exception as exc:
            raise SaveFailureError(str(exc) or exc.__class__.__name__) from exc
        logger.info("Artifact saved (%d bytes, %d samples)", len(artifact.video), len(artifact.samples))

    def _parse_trace(self, trace: Any) -> tuple[tuple[PointerSample, ...], GeometryContext | None]:
        if not trace or not isinstance(trace, dict) or not trace.get("data"):
            logger.info("No pointer metadata received")
            return (), None
        try:
            samples, geometry, _ = normalize_metadata(trace["data"])
        except ArtifactFormatError as exc:
            self._warn(f"pointer metadata unreadable: {exc}")
            return (), None
        return samples, geometry

    # --- external termination --------------------------------------------

    def _on_stream_ended(self, handle: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._handle_stream_ended, handle)
        except RuntimeError:
            logger.debug("Event loop closed before stream end could be handled")

    def _handle_stream_ended(self, handle: Any) -> None:
        if handle is not self._session.stream_handle:
            return
        if self.status in (RecordingStatus.RECORDING, RecordingStatus.FINALIZING):
            logger.info("Capture stream ended externally; finalizing")
            self._external_task = asyncio.ensure_future(self.finalize())
        elif self.status == RecordingStatus.SOURCE_READY:
            self._session.stream_handle = None
            self._set_status(RecordingStatus.IDLE)

    # --- helpers -------------------------------------------------------

    def _subscribe_slices(self) -> None:
        self._unsubscribe_slices()
        self._unsubscribe = self._bridge.subscribe(SliceAvailable, self._on_slice)

    def _unsubscribe_slices(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_slice(self, message: Any) -> None:
        if isinstance(message, SliceAvailable) and message.data:
            self._slices.append(message.data)

    def _release_handle(self) -> None:
        handle = self._session.stream_handle
        self._session.stream_handle = None
        if handle is not None:
            handle.stop_tracks()

    def _require(self, operation: str) -> None:
        if self.status not in ALLOWED_FROM[operation]:
            raise InvalidTransitionError(f"{operation} not allowed from {self.status.value}")

    def _warn(self, text: str) -> None:
        logger.warning(text)
        self.warnings.append(text)

    def _fail(self, message: str) -> None:
        self._session.error = message
        self._set_status(RecordingStatus.ERROR)

    def _set_status(self, status: RecordingStatus) -> None:
        if status == self._session.status:
            return
        logger.debug("Session %s -> %s", self._session.status.value, status.value)
        self._session.status = status
        for listener in list(self._listeners):
            try:
                listener(status, self._session.error)
            except Exception:
                logger.exception("Status listener failed")
