# -*- coding: utf-8 -*-
"""Persisted capture artifact and its metadata schema.

Two metadata shapes exist on disk:

* version 1: a bare JSON list of pointer samples (no geometry).
* version 2: ``{"version": 2, "events": [...], "viewport": {...}}``.

``normalize_metadata`` accepts both, plus the ``samples``/``geometryContext``
spelling, and always returns samples sorted by timestamp.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from screencine.core.errors import ArtifactFormatError
from screencine.models.geometry import GeometryContext
from screencine.models.pointer_sample import PointerSample, sort_samples

LEGACY_SCHEMA_VERSION = 1
CURRENT_SCHEMA_VERSION = 2


@dataclass(frozen=True)
class CaptureArtifact:
    """Video bytes plus pointer trace for one recording session."""

    video: bytes
    samples: tuple[PointerSample, ...] = ()
    geometry: GeometryContext | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    @property
    def is_empty(self) -> bool:
        return len(self.video) == 0

    @property
    def duration_ms(self) -> int:
        if not self.samples:
            return 0
        return self.samples[-1].timestamp_ms

    @property
    def click_count(self) -> int:
        return sum(1 for sample in self.samples if sample.is_click)


def build_metadata(
    samples: Iterable[PointerSample],
    geometry: GeometryContext | None,
) -> dict[str, Any]:
    """Serialize a trace in the current schema."""
    return {
        "version": CURRENT_SCHEMA_VERSION,
        "events": [sample.to_dict() for sample in samples],
        "viewport": geometry.to_dict() if geometry is not None else None,
    }


def normalize_metadata(raw: Any) -> tuple[tuple[PointerSample, ...], GeometryContext | None, int]:
    """Return ``(sorted samples, geometry or None, schema version)``."""
    if raw is None:
        return (), None, CURRENT_SCHEMA_VERSION

    if isinstance(raw, list):
        samples = [PointerSample.from_dict(item) for item in raw]
        return sort_samples(samples), None, LEGACY_SCHEMA_VERSION

    if not isinstance(raw, dict):
        raise ArtifactFormatError(f"unsupported metadata shape: {type(raw).__name__}")

    version = raw.get("version", CURRENT_SCHEMA_VERSION)
    if not isinstance(version, int) or version > CURRENT_SCHEMA_VERSION:
        raise ArtifactFormatError(f"unsupported metadata version: {version!r}")

    events = raw.get("events", raw.get("samples", []))
    if events is None:
        events = []
    if not isinstance(events, list):
        raise ArtifactFormatError("metadata events must be a list")

    geometry_raw = raw.get("viewport", raw.get("geometryContext"))
    geometry = GeometryContext.from_dict(geometry_raw) if geometry_raw else None
    samples = [PointerSample.from_dict(item) for item in events]
    return sort_samples(samples), geometry, version
