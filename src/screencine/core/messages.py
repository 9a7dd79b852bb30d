# -*- coding: utf-8 -*-
"""Cross-context protocol: a closed set of tagged message types."""

from __future__ import annotations

import base64
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Awaitable, Callable, ClassVar

from screencine.core.errors import UnknownMessageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    """Base class; every subclass sets a unique ``TYPE`` tag."""

    TYPE: ClassVar[str] = ""


@dataclass(frozen=True)
class ProbeStatus(Message):
    TYPE: ClassVar[str] = "PROBE_STATUS"


@dataclass(frozen=True)
class StatusReport(Message):
    TYPE: ClassVar[str] = "STATUS"
    context_id: str = ""
    recording: bool = False


@dataclass(frozen=True)
class StartRecording(Message):
    TYPE: ClassVar[str] = "START_RECORDING"
    target_surface_id: str | None = None
    geometry_hint: dict[str, Any] | None = None


@dataclass(frozen=True)
class StopRecording(Message):
    TYPE: ClassVar[str] = "STOP_RECORDING"
    target_surface_id: str | None = None


@dataclass(frozen=True)
class GetDimensions(Message):
    TYPE: ClassVar[str] = "GET_DIMENSIONS"


@dataclass(frozen=True)
class StartEncoding(Message):
    TYPE: ClassVar[str] = "START_ENCODING"
    stream_id: str = ""


@dataclass(frozen=True)
class StopEncoding(Message):
    TYPE: ClassVar[str] = "STOP_ENCODING"


@dataclass(frozen=True)
class AgentLoaded(Message):
    TYPE: ClassVar[str] = "AGENT_LOADED"
    context_id: str = ""


@dataclass(frozen=True)
class EncoderLoaded(Message):
    TYPE: ClassVar[str] = "ENCODER_LOADED"
    context_id: str = ""


@dataclass(frozen=True)
class RemoteLog(Message):
    TYPE: ClassVar[str] = "LOG"
    context_id: str = ""
    level: str = "info"
    args: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SliceAvailable(Message):
    TYPE: ClassVar[str] = "SLICE_AVAILABLE"
    data: bytes = b""
    index: int = 0


@dataclass(frozen=True)
class RecordingSaved(Message):
    TYPE: ClassVar[str] = "RECORDING_SAVED"
    size_bytes: int = 0
    error: str | None = None
    # The finished container. Muxers rewrite header bytes on release, so this
    # can differ from the concatenated slices.
    data: bytes = b""


MESSAGE_TYPES: dict[str, type[Message]] = {
    cls.TYPE: cls
    for cls in (
        ProbeStatus,
        StatusReport,
        StartRecording,
        StopRecording,
        GetDimensions,
        StartEncoding,
        StopEncoding,
        AgentLoaded,
        EncoderLoaded,
        RemoteLog,
        SliceAvailable,
        RecordingSaved,
    )
}


def message_to_dict(message: Message) -> dict[str, Any]:
    """Serialize a message to a plain dict carrying its ``type`` tag."""
    payload = asdict(message)
    for key, value in payload.items():
        if isinstance(value, bytes):
            payload[key] = base64.b64encode(value).decode("ascii")
        elif isinstance(value, tuple):
            payload[key] = list(value)
    payload["type"] = message.TYPE
    return payload


def message_from_dict(data: dict[str, Any]) -> Message:
    """Rebuild a message from its dict form; unknown tags are rejected."""
    tag = data.get("type") if isinstance(data, dict) else None
    cls = MESSAGE_TYPES.get(str(tag))
    if cls is None:
        raise UnknownMessageError(f"unknown message type: {tag!r}")
    kwargs: dict[str, Any] = {}
    for item in fields(cls):
        if item.name not in data:
            continue
        value = data[item.name]
        if item.name == "data" and isinstance(value, str):
            value = base64.b64decode(value.encode("ascii"))
        elif item.name == "args" and isinstance(value, list):
            value = tuple(str(arg) for arg in value)
        kwargs[item.name] = value
    return cls(**kwargs)


Handler = Callable[[Message], Awaitable[Any]]


class MessageDispatcher:
    """Route each message type to exactly one async handler.

    A handler's return value is the response delivered to the sender, so a
    handler that answers later simply awaits before returning.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._handlers: dict[str, Handler] = {}

    def register(self, message_type: type[Message], handler: Handler) -> None:
        if message_type.TYPE not in MESSAGE_TYPES:
            raise UnknownMessageError(f"not a protocol message: {message_type!r}")
        self._handlers[message_type.TYPE] = handler

    def handles(self, message_type: type[Message]) -> bool:
        return message_type.TYPE in self._handlers

    async def dispatch(self, message: Message) -> Any:
        handler = self._handlers.get(message.TYPE)
        if handler is None:
            raise UnknownMessageError(f"{self.name or 'dispatcher'} has no handler for {message.TYPE}")
        logger.debug("%s dispatching %s", self.name or "dispatcher", message.TYPE)
        return await handler(message)
