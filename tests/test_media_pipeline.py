# -*- coding: utf-8 -*-
"""Tests for codec selection, incremental encoding and the encoder agent."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import cv2
import numpy as np
import pytest

from conftest import FakeWriter, SilentWriter
from screencine.constants import CODEC_CONTAINERS
from screencine.core.errors import UnsupportedCodecError
from screencine.core.messages import MessageDispatcher, RecordingSaved, SliceAvailable, StartEncoding, StopEncoding
from screencine.core.transport import LocalTransport
from screencine.pipeline.capture_platform import CaptureHandle, CapturePlatform
from screencine.pipeline.media_pipeline import EncoderAgent, MediaPipeline, open_video_writer


def _writer_accepting(*accepted: int):
    """Writer factory that only opens for the listed fourcc values."""
    attempts: list[int] = []

    def _factory(path: str, fourcc: int, fps: float, size: tuple[int, int]) -> FakeWriter:
        attempts.append(fourcc)
        return FakeWriter(path, fourcc, fps, size, opened=fourcc in accepted)

    _factory.attempts = attempts  # type: ignore[attr-defined]
    return _factory


def _handle(size: tuple[int, int] = (64, 36)) -> CaptureHandle:
    frame = np.zeros((size[1], size[0], 3), dtype=np.uint8)
    return CaptureHandle("screen", size, lambda: frame)


def test_codec_cascade_uses_first_supported_codec(tmp_path: Path) -> None:
    mp4v = cv2.VideoWriter_fourcc(*"mp4v")
    factory = _writer_accepting(mp4v)
    writer, path, codec = open_video_writer(tmp_path / "capture", (64, 36), 30, ["vp09", "VP80", "mp4v"], factory)

    assert codec == "mp4v"
    assert path.suffix == ".mp4"
    assert len(factory.attempts) == 3
    assert not (tmp_path / "capture.webm").exists()
    writer.release()


def test_codec_cascade_falls_back_to_platform_default(tmp_path: Path) -> None:
    factory = _writer_accepting(0)
    _, path, codec = open_video_writer(tmp_path / "capture", (64, 36), 30, ["vp09"], factory)
    assert codec == "default"
    assert path.suffix == ".avi"
    assert factory.attempts[-1] == 0


def test_codec_cascade_raises_when_nothing_opens(tmp_path: Path) -> None:
    with pytest.raises(UnsupportedCodecError):
        open_video_writer(tmp_path / "capture", (64, 36), 30, ["vp09", "mp4v"], _writer_accepting())


def test_pipeline_emits_slices_and_completes_on_stop(tmp_path: Path) -> None:
    slices: list[tuple[bytes, int]] = []
    completed = threading.Event()
    result: dict = {}

    def _on_complete(blob: bytes, error: str | None) -> None:
        result["blob"] = blob
        result["error"] = error
        completed.set()

    handle = _handle()
    pipeline = MediaPipeline(
        handle,
        tmp_path,
        codecs=("vp09",),
        fps=60,
        timeslice_ms=10,
        on_slice=lambda data, index: slices.append((data, index)),
        on_complete=_on_complete,
        writer_factory=FakeWriter,
    )
    pipeline.start()
    assert pipeline.state == "recording"
    assert pipeline.codec == "vp09"
    completed.wait(0.1)
    pipeline.request_stop()
    assert completed.wait(5)

    assert pipeline.state == "inactive"
    assert pipeline.frames_written > 0
    assert result["error"] is None
    assert result["blob"] == b"".join(data for data, _ in slices)
    assert [index for _, index in slices] == list(range(len(slices)))
    assert len(result["blob"]) == pipeline.frames_written * len(FakeWriter.CHUNK)
    assert not handle.active


def test_pipeline_finishes_when_stream_ends(tmp_path: Path) -> None:
    handle = _handle()
    pipeline = MediaPipeline(handle, tmp_path, codecs=("vp09",), fps=60, timeslice_ms=10, writer_factory=FakeWriter)
    pipeline.start()
    handle.end()
    assert pipeline.wait(5) is not None
    assert pipeline.state == "inactive"


def test_pipeline_reports_empty_output(tmp_path: Path) -> None:
    handle = _handle()
    pipeline = MediaPipeline(handle, tmp_path, codecs=("vp09",), fps=60, timeslice_ms=10, writer_factory=SilentWriter)
    pipeline.start()
    pipeline.request_stop()
    assert pipeline.wait(5) == b""


def test_pipeline_without_codec_releases_tracks(tmp_path: Path) -> None:
    handle = _handle()
    pipeline = MediaPipeline(handle, tmp_path, codecs=("vp09",), writer_factory=_writer_accepting())
    with pytest.raises(UnsupportedCodecError):
        pipeline.start()
    assert not handle.active


def test_encoder_agent_streams_slices_then_confirms_save() -> None:
    received: list = []

    async def scenario() -> None:
        transport = LocalTransport()
        orchestrator = MessageDispatcher("orchestrator")
        done = asyncio.get_running_loop().create_future()

        async def _on_slice(message: SliceAvailable) -> None:
            received.append(message)

        async def _on_saved(message: RecordingSaved) -> None:
            received.append(message)
            if not done.done():
                done.set_result(message)

        orchestrator.register(SliceAvailable, _on_slice)
        orchestrator.register(RecordingSaved, _on_saved)
        transport.attach("orchestrator", orchestrator)

        platform = CapturePlatform()
        handle = platform.register_stream(_handle())
        agent = EncoderAgent("encoder", platform, transport, codecs=("vp09",), fps=60, timeslice_ms=10, writer_factory=FakeWriter)
        transport.attach("encoder", agent.dispatcher)

        started = await transport.send("encoder", StartEncoding(handle.stream_id))
        assert started == {"status": "started", "codec": "vp09"}
        again = await transport.send("encoder", StartEncoding(handle.stream_id))
        assert again["status"] == "already-recording"

        await asyncio.sleep(0.05)
        assert await transport.send("encoder", StopEncoding()) == {"status": "stopping"}
        saved = await asyncio.wait_for(done, timeout=5)
        await transport.close()

        slice_bytes = sum(len(m.data) for m in received if isinstance(m, SliceAvailable))
        assert saved.size_bytes == slice_bytes > 0
        assert isinstance(received[-1], RecordingSaved)

    asyncio.run(scenario())


def test_encoder_agent_stop_without_recording_still_confirms() -> None:
    async def scenario() -> RecordingSaved:
        transport = LocalTransport()
        orchestrator = MessageDispatcher("orchestrator")
        done = asyncio.get_running_loop().create_future()

        async def _on_saved(message: RecordingSaved) -> None:
            done.set_result(message)

        orchestrator.register(RecordingSaved, _on_saved)
        transport.attach("orchestrator", orchestrator)
        agent = EncoderAgent("encoder", CapturePlatform(), transport)
        transport.attach("encoder", agent.dispatcher)

        assert await transport.send("encoder", StopEncoding()) == {"status": "inactive"}
        saved = await asyncio.wait_for(done, timeout=1)
        await transport.close()
        return saved

    saved = asyncio.run(scenario())
    assert saved.size_bytes == 0
    assert saved.error


def _count_decoded_frames(path: Path) -> int:
    capture = cv2.VideoCapture(str(path))
    count = 0
    try:
        while True:
            ok, _ = capture.read()
            if not ok:
                break
            count += 1
    finally:
        capture.release()
    return count


@pytest.mark.parametrize("codec", ["MJPG", "mp4v"])
def test_result_from_real_writer_decodes_every_frame(tmp_path: Path, codec: str) -> None:
    size = (64, 48)
    counter = {"n": 0}

    def _read() -> np.ndarray:
        counter["n"] += 1
        frame = np.zeros((size[1], size[0], 3), dtype=np.uint8)
        frame[:, : (counter["n"] * 4) % size[0]] = 255
        return frame

    handle = CaptureHandle("screen", size, _read)
    pipeline = MediaPipeline(handle, tmp_path / "work", codecs=(codec,), fps=30, timeslice_ms=50)
    pipeline.start()
    if pipeline.codec != codec:
        pipeline.request_stop()
        pipeline.wait(10)
        pytest.skip(f"{codec} writer not available in this OpenCV build")

    time.sleep(0.5)
    pipeline.request_stop()
    blob = pipeline.wait(10)

    assert blob
    assert blob == (tmp_path / "work" / "capture").with_suffix(CODEC_CONTAINERS[codec]).read_bytes()
    saved = (tmp_path / "saved").with_suffix(CODEC_CONTAINERS[codec])
    saved.write_bytes(blob)
    assert pipeline.frames_written > 0
    assert _count_decoded_frames(saved) == pipeline.frames_written
