# -*- coding: utf-8 -*-
"""Command line interface: record, preview, export and inspect recordings."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

import typer

from screencine.config import ConfigError, load_config
from screencine.constants import APP_NAME, CAPTURE_KINDS
from screencine.core.bridge import ContextBridge
from screencine.core.errors import ScreencineError
from screencine.core.session import CaptureSession
from screencine.core.state import RecordingStatus
from screencine.core.transport import LocalTransport
from screencine.pipeline.capture_platform import MssCapturePlatform
from screencine.pipeline.exporter import Exporter
from screencine.pipeline.media_pipeline import make_encoder_factory
from screencine.pipeline.pointer_recorder import PynputPointerSource, make_pointer_agent_factory, pynput_source_factory
from screencine.storage.store import DirectoryStore, load_artifact
from screencine.synthesis.camera import CameraSettings

app = typer.Typer(help="Screen recordings with a camera that follows the pointer")
logger = logging.getLogger(__name__)


def _load_settings(config_path: Optional[Path]) -> dict[str, Any]:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        typer.echo(f"Invalid settings: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _store_for(settings: dict[str, Any], store_dir: Optional[Path]) -> DirectoryStore:
    return DirectoryStore(store_dir or Path(settings["storage"]["dir"]))


def _parse_region(raw: Optional[str]) -> dict[str, int] | None:
    if not raw:
        return None
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 4:
        raise typer.BadParameter("region must be LEFT,TOP,WIDTH,HEIGHT")
    try:
        left, top, width, height = (int(part) for part in parts)
    except ValueError as exc:
        raise typer.BadParameter("region values must be integers") from exc
    return {"left": left, "top": top, "width": width, "height": height}


def _consent(kind: str, region: dict[str, int]) -> bool:
    return typer.confirm(
        f"Record {kind} {region['width']}x{region['height']} at ({region['left']}, {region['top']})?",
        default=True,
    )


async def _record(
    settings: dict[str, Any],
    store: DirectoryStore,
    kind: str,
    region: dict[str, int] | None,
    duration: float | None,
    assume_yes: bool,
) -> CaptureSession:
    capture = settings["capture"]
    bridge_cfg = settings["bridge"]
    source_factory = pynput_source_factory if PynputPointerSource.available() else None
    if source_factory is None:
        logger.warning("pynput not installed; recording without pointer trace")

    platform = MssCapturePlatform(
        monitor=int(capture["monitor"]),
        consent_prompt=None if assume_yes else _consent,
        agent_factory=make_pointer_agent_factory(
            source_factory=source_factory,
            frame_rate_hz=float(settings["pointer"]["frame_rate_hz"]),
        ),
        encoder_factory=make_encoder_factory(
            codecs=capture["codecs"],
            fps=int(capture["fps"]),
            timeslice_ms=int(capture["timeslice_ms"]),
        ),
    )
    bridge = ContextBridge(
        LocalTransport(),
        platform,
        handshake_attempts=int(bridge_cfg["handshake_attempts"]),
        handshake_interval_ms=int(bridge_cfg["handshake_interval_ms"]),
    )
    session = CaptureSession(platform, bridge, store, save_timeout_ms=int(bridge_cfg["save_timeout_ms"]))
    session.add_listener(lambda status, error: logger.info("Status: %s%s", status.value, f" ({error})" if error else ""))

    options: dict[str, Any] = {}
    if region is not None:
        options["region"] = region
    try:
        await session.select_source(kind, **options)
        if session.status != RecordingStatus.SOURCE_READY:
            return session

        await session.start()
        if session.status != RecordingStatus.RECORDING:
            return session

        if duration is not None:
            typer.echo(f"Recording for {duration:.1f} s ...")
            await asyncio.sleep(duration)
        else:
            await asyncio.to_thread(typer.prompt, "Recording. Press Enter to stop", default="", show_default=False)
        if session.status == RecordingStatus.RECORDING:
            await session.stop()
        elif session.status == RecordingStatus.FINALIZING:
            await session.finalize()
    finally:
        await bridge.close()
    return session


@app.command()
def record(
    kind: str = typer.Option("screen", help=f"What to capture: {', '.join(CAPTURE_KINDS)}"),
    region: Optional[str] = typer.Option(None, help="LEFT,TOP,WIDTH,HEIGHT for window/tab capture"),
    duration: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the capture consent prompt"),
    store_dir: Optional[Path] = typer.Option(None, help="Where the recording is saved"),
    config: Optional[Path] = typer.Option(None, help="Settings JSON file"),
) -> None:
    """Record the screen together with the pointer trace."""
    if kind not in CAPTURE_KINDS:
        raise typer.BadParameter(f"kind must be one of {', '.join(CAPTURE_KINDS)}")
    settings = _load_settings(config)
    store = _store_for(settings, store_dir)

    session = asyncio.run(_record(settings, store, kind, _parse_region(region), duration, yes))

    for warning in session.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    if session.status == RecordingStatus.SAVED:
        artifact = session.last_artifact
        size = len(artifact.video) if artifact is not None else 0
        samples = len(artifact.samples) if artifact is not None else 0
        typer.echo(f"Saved recording: {size} bytes, {samples} pointer samples -> {store.root}")
        return
    if session.status == RecordingStatus.IDLE:
        typer.echo("Recording cancelled.")
        return
    typer.echo(f"Recording failed: {session.error or session.status.value}", err=True)
    raise typer.Exit(code=1)


def _require_artifact(store: DirectoryStore):
    try:
        artifact = asyncio.run(load_artifact(store))
    except ScreencineError as exc:
        typer.echo(f"Stored recording is unreadable: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if artifact is None:
        typer.echo(f"No recording found in {store.root}", err=True)
        raise typer.Exit(code=1)
    return artifact


@app.command()
def inspect(
    store_dir: Optional[Path] = typer.Option(None, help="Recording store directory"),
    config: Optional[Path] = typer.Option(None, help="Settings JSON file"),
) -> None:
    """Print a summary of the saved recording."""
    settings = _load_settings(config)
    artifact = _require_artifact(_store_for(settings, store_dir))
    summary = {
        "video_bytes": len(artifact.video),
        "schema_version": artifact.schema_version,
        "samples": len(artifact.samples),
        "clicks": artifact.click_count,
        "trace_duration_ms": artifact.duration_ms,
        "geometry": artifact.geometry.to_dict() if artifact.geometry is not None else None,
    }
    typer.echo(json.dumps(summary, indent=2))


@app.command()
def export(
    output: Optional[Path] = typer.Option(None, help="Output file (suffix follows the codec used)"),
    fps: Optional[int] = typer.Option(None, help="Export frame rate"),
    store_dir: Optional[Path] = typer.Option(None, help="Recording store directory"),
    config: Optional[Path] = typer.Option(None, help="Settings JSON file"),
) -> None:
    """Render the saved recording with the follow camera into a video file."""
    settings = _load_settings(config)
    artifact = _require_artifact(_store_for(settings, store_dir))
    export_cfg = settings["export"]
    exporter = Exporter(
        output_dir=Path(export_cfg["output_dir"]),
        codecs=export_cfg["codecs"],
        settings=CameraSettings.from_config(settings),
    )
    try:
        result = exporter.export(artifact, output, fps=fps or int(export_cfg["fps"]))
    except (ScreencineError, ValueError) as exc:
        typer.echo(f"Export failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Exported {result.frames_written} frames ({result.duration_ms / 1000:.1f} s) to {result.path}")


@app.command()
def preview(
    store_dir: Optional[Path] = typer.Option(None, help="Recording store directory"),
    config: Optional[Path] = typer.Option(None, help="Settings JSON file"),
) -> None:
    """Open a window playing the saved recording through the follow camera."""
    from PyQt6.QtWidgets import QApplication

    from screencine.gui.preview_widget import PreviewWidget
    from screencine.synthesis.camera import CameraSynthesizer
    from screencine.synthesis.frames import OpenCVFrameSource

    settings = _load_settings(config)
    artifact = _require_artifact(_store_for(settings, store_dir))
    source = OpenCVFrameSource.from_bytes(artifact.video)
    try:
        synth = CameraSynthesizer(
            artifact.samples,
            artifact.geometry,
            source,
            settings=CameraSettings.from_config(settings),
        )
        qt_app = QApplication.instance() or QApplication(sys.argv)
        widget = PreviewWidget(synth, max(source.duration_ms, float(artifact.duration_ms)))
        widget.setWindowTitle(f"{APP_NAME} preview")
        widget.resize(1280, 760)
        widget.show()
        widget.toggle_playback()
        qt_app.exec()
    finally:
        source.close()


@app.command()
def capabilities() -> None:
    """Report which capture backends are installed."""
    report = dict(MssCapturePlatform.capture_capabilities())
    report["pynput_available"] = PynputPointerSource.available()
    for key, value in report.items():
        typer.echo(f"{key}: {value}")

