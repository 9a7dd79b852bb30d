# -*- coding: utf-8 -*-
"""Persistence store contract and implementations."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol

from screencine.constants import STORE_KEY_METADATA, STORE_KEY_VIDEO
from screencine.models.artifact import CaptureArtifact, normalize_metadata
from screencine.utils.file_utils import ensure_dir, read_json_value, write_bytes_file, write_json_file

logger = logging.getLogger(__name__)


class PersistenceStore(Protocol):
    """Async key -> value store. Binary values are bytes, others JSON-compatible."""

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """Dict-backed store; keeps a write log for inspection."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self.writes: list[str] = []

    async def get(self, key: str) -> Any:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.writes.append(key)


class DirectoryStore:
    """One file per key: bytes go to ``<key>.bin``, everything else to ``<key>.json``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _bin_path(self, key: str) -> Path:
        return self.root / f"{key}.bin"

    def _json_path(self, key: str) -> Path:
        return self.root / f"{key}.json"

    async def get(self, key: str) -> Any:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._set_sync, key, value)

    def _get_sync(self, key: str) -> Any:
        bin_path = self._bin_path(key)
        if bin_path.exists():
            return bin_path.read_bytes()
        json_path = self._json_path(key)
        if json_path.exists():
            return read_json_value(json_path)
        return None

    def _set_sync(self, key: str, value: Any) -> None:
        ensure_dir(self.root)
        if isinstance(value, (bytes, bytearray, memoryview)):
            write_bytes_file(self._bin_path(key), bytes(value))
            self._json_path(key).unlink(missing_ok=True)
        else:
            write_json_file(self._json_path(key), value)
            self._bin_path(key).unlink(missing_ok=True)
        logger.debug("Stored key %s in %s", key, self.root)


async def load_artifact(store: Any) -> CaptureArtifact | None:
    """Read and normalize the latest artifact; None when no video was saved."""
    video = await store.get(STORE_KEY_VIDEO)
    if not video:
        logger.info("No recording found in store")
        return None
    metadata = await store.get(STORE_KEY_METADATA)
    samples, geometry, version = normalize_metadata(metadata)
    logger.info("Loaded artifact: %d bytes, %d samples, schema v%d", len(video), len(samples), version)
    return CaptureArtifact(video=bytes(video), samples=samples, geometry=geometry, schema_version=version)
