# -*- coding: utf-8 -*-
"""Command delivery across execution contexts.

The bridge owns three concerns:

* delivering commands to the pointer agent inside the recorded surface,
  injecting the agent on demand and retrying until it answers;
* creating the single encoding context, idempotently;
* collecting signals (slices, save confirmation, remote logs) that other
  contexts post back to the orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, Callable

from screencine.constants import HANDSHAKE_ATTEMPTS, HANDSHAKE_INTERVAL_MS
from screencine.core.errors import ContextExistsError, HandshakeTimeoutError, ReceiverMissingError
from screencine.core.messages import (
    AgentLoaded,
    EncoderLoaded,
    Message,
    MessageDispatcher,
    RecordingSaved,
    RemoteLog,
    SliceAvailable,
    StatusReport,
)
from screencine.core.retry import bounded_retry
from screencine.core.transport import LocalTransport

logger = logging.getLogger(__name__)

ORCHESTRATOR_CONTEXT = "orchestrator"
ENCODER_CONTEXT = "encoder"
SIGNAL_BUFFER_SIZE = 64

SignalCallback = Callable[[Message], None]


def surface_context_id(surface_id: str) -> str:
    return f"surface:{surface_id}"


class ContextBridge:
    """Deliver commands to other contexts and route their signals back."""

    def __init__(
        self,
        transport: LocalTransport,
        platform: Any,
        *,
        handshake_attempts: int = HANDSHAKE_ATTEMPTS,
        handshake_interval_ms: int = HANDSHAKE_INTERVAL_MS,
    ) -> None:
        self._transport = transport
        self._platform = platform
        self._attempts = handshake_attempts
        self._interval = handshake_interval_ms / 1000.0
        self._subscribers: dict[str, list[SignalCallback]] = defaultdict(list)
        self._waiters: dict[str, deque[asyncio.Future]] = defaultdict(deque)
        self._buffered: dict[str, deque[Message]] = defaultdict(lambda: deque(maxlen=SIGNAL_BUFFER_SIZE))
        self._opened = False

    @property
    def transport(self) -> LocalTransport:
        return self._transport

    async def open(self) -> None:
        """Attach the orchestrator context that receives signals."""
        if self._opened:
            return
        dispatcher = MessageDispatcher(ORCHESTRATOR_CONTEXT)
        for signal_type in (SliceAvailable, RecordingSaved, AgentLoaded, EncoderLoaded, StatusReport):
            dispatcher.register(signal_type, self._on_signal)
        dispatcher.register(RemoteLog, self._on_remote_log)
        self._transport.attach(ORCHESTRATOR_CONTEXT, dispatcher)
        self._opened = True

    async def close(self) -> None:
        for waiters in self._waiters.values():
            for future in waiters:
                if not future.done():
                    future.cancel()
        self._waiters.clear()
        await self._transport.close()
        self._opened = False

    # --- pointer agent -------------------------------------------------

    async def deliver(self, surface_id: str, message: Message) -> Any:
        """Send to the surface agent, injecting it and retrying if absent.

        Raises HandshakeTimeoutError once the bounded retries are exhausted.
        """
        context_id = surface_context_id(surface_id)
        try:
            return await self._transport.send(context_id, message)
        except ReceiverMissingError as exc:
            logger.warning("Initial delivery of %s to %s failed (%s), injecting agent", message.TYPE, surface_id, exc)

        try:
            await self._platform.inject_agent(surface_id, self._transport)
        except ContextExistsError:
            logger.debug("Agent for %s was attached concurrently", surface_id)
        except Exception as exc:
            raise HandshakeTimeoutError(f"agent injection into {surface_id} failed: {exc}") from exc

        response = await bounded_retry(
            lambda: self._transport.send(context_id, message),
            attempts=self._attempts,
            interval=self._interval,
            retry_on=(ReceiverMissingError,),
            timeout_error=lambda attempts, _exc: HandshakeTimeoutError(
                f"agent in {surface_id} did not answer {message.TYPE} after {attempts} attempts"
            ),
        )
        logger.info("Injection and handshake with %s successful", surface_id)
        return response

    async def deliver_safe(self, surface_id: str, message: Message) -> Any:
        """Like ``deliver`` but returns None instead of raising.

        Covers handshake timeouts and failures raised by the agent's handler,
        so a broken pointer agent never aborts the recording.
        """
        try:
            return await self.deliver(surface_id, message)
        except HandshakeTimeoutError as exc:
            logger.error("Handshake timeout: %s", exc)
            return None
        except Exception as exc:
            logger.error("Agent in %s failed to handle %s: %s", surface_id, message.TYPE, exc)
            return None

    # --- encoding context ----------------------------------------------

    async def ensure_encoding_context(self) -> bool:
        """Create the encoding context unless it exists. Returns True if created."""
        if self._transport.has(ENCODER_CONTEXT):
            logger.debug("Encoding context already present")
            return False
        try:
            await self._platform.create_context(ENCODER_CONTEXT, self._transport)
        except ContextExistsError:
            logger.info("Encoding context creation raced; using the existing one")
            return False
        logger.info("Encoding context created")
        return True

    async def send_to_encoder(self, message: Message) -> Any:
        return await bounded_retry(
            lambda: self._transport.send(ENCODER_CONTEXT, message),
            attempts=self._attempts,
            interval=self._interval,
            retry_on=(ReceiverMissingError,),
            timeout_error=lambda attempts, _exc: HandshakeTimeoutError(
                f"encoding context did not answer {message.TYPE} after {attempts} attempts"
            ),
        )

    # --- signals -------------------------------------------------------

    def subscribe(self, signal_type: type[Message], callback: SignalCallback) -> Callable[[], None]:
        """Stream every signal of ``signal_type`` to ``callback``. Returns an unsubscribe function."""
        callbacks = self._subscribers[signal_type.TYPE]
        callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return _unsubscribe

    def clear_signals(self, signal_type: type[Message] | None = None) -> None:
        if signal_type is None:
            self._buffered.clear()
        else:
            self._buffered.pop(signal_type.TYPE, None)

    async def wait_for_signal(self, signal_type: type[Message], timeout_ms: int) -> Message | None:
        """Return the next signal of ``signal_type``, or None once ``timeout_ms`` elapses.

        Never raises on timeout so the caller's cleanup path always runs.
        """
        buffered = self._buffered.get(signal_type.TYPE)
        if buffered:
            return buffered.popleft()

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        waiters = self._waiters[signal_type.TYPE]
        waiters.append(future)
        done, _ = await asyncio.wait({future}, timeout=max(0.0, timeout_ms / 1000.0))
        if future in done and not future.cancelled():
            return future.result()

        if future in waiters:
            waiters.remove(future)
        future.cancel()
        logger.warning("No %s signal within %d ms; continuing", signal_type.TYPE, timeout_ms)
        return None

    async def _on_signal(self, message: Message) -> None:
        callbacks = list(self._subscribers.get(message.TYPE, ()))
        for callback in callbacks:
            try:
                callback(message)
            except Exception:
                logger.exception("Signal subscriber for %s failed", message.TYPE)

        waiters = self._waiters.get(message.TYPE)
        while waiters:
            future = waiters.popleft()
            if not future.done():
                future.set_result(message)
                return

        if not callbacks:
            self._buffered[message.TYPE].append(message)

    async def _on_remote_log(self, message: Message) -> None:
        assert isinstance(message, RemoteLog)
        level = logging.getLevelName(message.level.upper())
        if not isinstance(level, int):
            level = logging.INFO
        remote_logger = logging.getLogger(f"screencine.remote.{message.context_id or 'unknown'}")
        remote_logger.log(level, " ".join(message.args))
