# -*- coding: utf-8 -*-
"""Tests for the message protocol, transport, retry and context bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from screencine.core.bridge import ENCODER_CONTEXT, ORCHESTRATOR_CONTEXT, ContextBridge, surface_context_id
from screencine.core.errors import (
    ContextExistsError,
    HandshakeTimeoutError,
    ReceiverMissingError,
    UnknownMessageError,
)
from screencine.core.messages import (
    GetDimensions,
    MessageDispatcher,
    ProbeStatus,
    RecordingSaved,
    RemoteLog,
    SliceAvailable,
    StartRecording,
    StatusReport,
    message_from_dict,
    message_to_dict,
)
from screencine.core.retry import bounded_retry
from screencine.core.transport import LocalTransport
from screencine.pipeline.capture_platform import CapturePlatform
from screencine.pipeline.pointer_recorder import make_pointer_agent_factory


class _InertPlatform(CapturePlatform):
    """Injection "succeeds" but no agent ever appears."""

    def __init__(self) -> None:
        super().__init__()
        self.injections = 0
        self.contexts_created = 0

    async def inject_agent(self, surface_id: str, transport: Any) -> None:
        self.injections += 1

    async def create_context(self, context_id: str, transport: Any) -> None:
        self.contexts_created += 1
        dispatcher = MessageDispatcher(context_id)
        transport.attach(context_id, dispatcher)


def test_message_dict_carries_type_tag_and_base64_bytes() -> None:
    message = SliceAvailable(b"\x00\x01binary", 3)
    data = message_to_dict(message)
    assert data["type"] == "SLICE_AVAILABLE"
    assert isinstance(data["data"], str)
    assert message_from_dict(data) == message


def test_remote_log_args_survive_dict_form() -> None:
    message = RemoteLog("surface:x", "warning", ("a", "b"))
    data = message_to_dict(message)
    assert data["args"] == ["a", "b"]
    assert message_from_dict(data) == message


def test_unknown_message_tag_is_rejected() -> None:
    with pytest.raises(UnknownMessageError):
        message_from_dict({"type": "SELF_DESTRUCT"})


def test_dispatcher_rejects_unhandled_type() -> None:
    async def scenario() -> None:
        dispatcher = MessageDispatcher("probe-only")

        async def _probe(message: ProbeStatus) -> StatusReport:
            return StatusReport("x", False)

        dispatcher.register(ProbeStatus, _probe)
        assert dispatcher.handles(ProbeStatus)
        assert await dispatcher.dispatch(ProbeStatus()) == StatusReport("x", False)
        with pytest.raises(UnknownMessageError):
            await dispatcher.dispatch(GetDimensions())

    asyncio.run(scenario())


def test_bounded_retry_stops_after_attempts() -> None:
    calls = []
    sleeps = []

    async def _fail() -> None:
        calls.append(1)
        raise ReceiverMissingError("nobody home")

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    async def scenario() -> None:
        with pytest.raises(HandshakeTimeoutError):
            await bounded_retry(
                _fail,
                attempts=4,
                interval=0.05,
                retry_on=(ReceiverMissingError,),
                timeout_error=lambda attempts, exc: HandshakeTimeoutError(f"{attempts} attempts"),
                sleep=_sleep,
            )

    asyncio.run(scenario())
    assert len(calls) == 4
    assert sleeps == [0.05, 0.05, 0.05]


def test_bounded_retry_propagates_unexpected_errors_immediately() -> None:
    calls = []

    async def _boom() -> None:
        calls.append(1)
        raise KeyError("bad")

    async def scenario() -> None:
        with pytest.raises(KeyError):
            await bounded_retry(_boom, attempts=5, interval=0, retry_on=(ReceiverMissingError,))

    asyncio.run(scenario())
    assert len(calls) == 1


def test_bounded_retry_returns_first_success() -> None:
    outcomes = [ReceiverMissingError("a"), ReceiverMissingError("b"), "ok"]

    async def _op() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def scenario() -> str:
        return await bounded_retry(_op, attempts=5, interval=0, retry_on=(ReceiverMissingError,))

    assert asyncio.run(scenario()) == "ok"


def test_transport_send_to_missing_context_raises() -> None:
    async def scenario() -> None:
        transport = LocalTransport()
        with pytest.raises(ReceiverMissingError):
            await transport.send("nowhere", ProbeStatus())

    asyncio.run(scenario())


def test_transport_rejects_duplicate_context() -> None:
    async def scenario() -> None:
        transport = LocalTransport()
        transport.attach("a", MessageDispatcher("a"))
        with pytest.raises(ContextExistsError):
            transport.attach("a", MessageDispatcher("a"))
        await transport.close()
        assert transport.context_ids() == []

    asyncio.run(scenario())


def test_transport_processes_one_context_serially() -> None:
    order: list[str] = []

    async def scenario() -> None:
        transport = LocalTransport()
        dispatcher = MessageDispatcher("serial")

        async def _slow(message: GetDimensions) -> str:
            order.append("slow-start")
            await asyncio.sleep(0.01)
            order.append("slow-end")
            return "slow"

        async def _fast(message: ProbeStatus) -> str:
            order.append("fast")
            return "fast"

        dispatcher.register(GetDimensions, _slow)
        dispatcher.register(ProbeStatus, _fast)
        transport.attach("serial", dispatcher)
        results = await asyncio.gather(transport.send("serial", GetDimensions()), transport.send("serial", ProbeStatus()))
        await transport.close()
        assert results == ["slow", "fast"]

    asyncio.run(scenario())
    assert order == ["slow-start", "slow-end", "fast"]


def test_deliver_injects_agent_and_retries_until_it_answers() -> None:
    async def scenario() -> None:
        platform = CapturePlatform(agent_factory=make_pointer_agent_factory(frame_rate_hz=None))
        bridge = ContextBridge(LocalTransport(), platform, handshake_attempts=5, handshake_interval_ms=1)
        await bridge.open()
        report = await bridge.deliver("tab-7", ProbeStatus())
        assert report == StatusReport(surface_context_id("tab-7"), False)
        assert bridge.transport.has(surface_context_id("tab-7"))
        await bridge.close()

    asyncio.run(scenario())


def test_deliver_safe_gives_up_after_bounded_attempts() -> None:
    async def scenario() -> None:
        platform = _InertPlatform()
        transport = LocalTransport()
        bridge = ContextBridge(transport, platform, handshake_attempts=5, handshake_interval_ms=1)

        with pytest.raises(HandshakeTimeoutError):
            await bridge.deliver("tab-1", StartRecording("tab-1"))
        assert await bridge.deliver_safe("tab-1", StartRecording("tab-1")) is None
        assert platform.injections == 2
        await bridge.close()

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))


def test_failed_injection_is_reported_as_handshake_timeout() -> None:
    async def scenario() -> None:
        platform = CapturePlatform()  # no agent factory
        bridge = ContextBridge(LocalTransport(), platform, handshake_attempts=2, handshake_interval_ms=1)
        assert await bridge.deliver_safe("tab-1", ProbeStatus()) is None

    asyncio.run(scenario())


def test_encoding_context_is_created_once() -> None:
    async def scenario() -> None:
        platform = _InertPlatform()
        bridge = ContextBridge(LocalTransport(), platform)
        assert await bridge.ensure_encoding_context() is True
        assert await bridge.ensure_encoding_context() is False
        assert platform.contexts_created == 1
        assert bridge.transport.has(ENCODER_CONTEXT)
        await bridge.close()

    asyncio.run(scenario())


def test_encoding_context_creation_race_counts_as_existing() -> None:
    class _RacingPlatform(_InertPlatform):
        async def create_context(self, context_id: str, transport: Any) -> None:
            self.contexts_created += 1
            raise ContextExistsError(context_id)

    async def scenario() -> None:
        platform = _RacingPlatform()
        bridge = ContextBridge(LocalTransport(), platform)
        assert await bridge.ensure_encoding_context() is False
        assert platform.contexts_created == 1
        await bridge.close()

    asyncio.run(scenario())


def test_deliver_safe_swallows_agent_handler_failures() -> None:
    class _ExplodingPlatform(_InertPlatform):
        async def inject_agent(self, surface_id: str, transport: Any) -> None:
            self.injections += 1
            dispatcher = MessageDispatcher(surface_context_id(surface_id))

            async def _fail(message: StartRecording) -> None:
                raise RuntimeError("pointer hook unavailable")

            dispatcher.register(StartRecording, _fail)
            transport.attach(surface_context_id(surface_id), dispatcher)

    async def scenario() -> None:
        platform = _ExplodingPlatform()
        bridge = ContextBridge(LocalTransport(), platform, handshake_attempts=3, handshake_interval_ms=1)
        with pytest.raises(RuntimeError):
            await bridge.deliver("tab-2", StartRecording("tab-2"))
        assert await bridge.deliver_safe("tab-2", StartRecording("tab-2")) is None
        assert platform.injections == 1
        await bridge.close()

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))


def test_wait_for_signal_returns_none_after_timeout() -> None:
    async def scenario() -> None:
        bridge = ContextBridge(LocalTransport(), _InertPlatform())
        await bridge.open()
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await bridge.wait_for_signal(RecordingSaved, 30)
        elapsed = loop.time() - started
        await bridge.close()
        assert result is None
        assert elapsed < 1.0

    asyncio.run(scenario())


def test_wait_for_signal_returns_buffered_and_live_signals() -> None:
    async def scenario() -> None:
        transport = LocalTransport()
        bridge = ContextBridge(transport, _InertPlatform())
        await bridge.open()

        transport.notify(ORCHESTRATOR_CONTEXT, RecordingSaved(10))
        await asyncio.sleep(0.01)
        assert await bridge.wait_for_signal(RecordingSaved, 100) == RecordingSaved(10)

        waiter = asyncio.ensure_future(bridge.wait_for_signal(RecordingSaved, 1000))
        await asyncio.sleep(0)
        transport.notify(ORCHESTRATOR_CONTEXT, RecordingSaved(20, "late"))
        assert await waiter == RecordingSaved(20, "late")
        await bridge.close()

    asyncio.run(scenario())


def test_subscribers_receive_every_signal_until_unsubscribed() -> None:
    received: list[int] = []

    async def scenario() -> None:
        transport = LocalTransport()
        bridge = ContextBridge(transport, _InertPlatform())
        await bridge.open()
        unsubscribe = bridge.subscribe(SliceAvailable, lambda message: received.append(message.index))
        await transport.send(ORCHESTRATOR_CONTEXT, SliceAvailable(b"a", 0))
        await transport.send(ORCHESTRATOR_CONTEXT, SliceAvailable(b"b", 1))
        unsubscribe()
        await transport.send(ORCHESTRATOR_CONTEXT, SliceAvailable(b"c", 2))
        await bridge.close()

    asyncio.run(scenario())
    assert received == [0, 1]


def test_remote_log_is_reemitted_under_context_logger(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> None:
        transport = LocalTransport()
        bridge = ContextBridge(transport, _InertPlatform())
        await bridge.open()
        await transport.send(ORCHESTRATOR_CONTEXT, RemoteLog("encoder", "warning", ("disk", "slow")))
        await bridge.close()

    with caplog.at_level(logging.DEBUG):
        asyncio.run(scenario())
    records = [r for r in caplog.records if r.name == "screencine.remote.encoder"]
    assert records and records[0].levelno == logging.WARNING
    assert records[0].getMessage() == "disk slow"
