# -*- coding: utf-8 -*-
"""In-process transport between isolated execution contexts.

Each context owns a dispatcher and a serial inbox: one handler runs to
completion (or its next await) before the next message of the same context is
taken. Contexts share nothing; all interaction goes through ``send``/``notify``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from screencine.core.errors import ContextExistsError, ReceiverMissingError
from screencine.core.messages import Message, MessageDispatcher

logger = logging.getLogger(__name__)


class ExecutionContext:
    """One isolated context processing its inbox on a dedicated task."""

    def __init__(self, context_id: str, dispatcher: MessageDispatcher) -> None:
        self.context_id = context_id
        self.dispatcher = dispatcher
        self._inbox: asyncio.Queue[tuple[Message, asyncio.Future]] = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"screencine-context-{context_id}"
        )

    def post(self, message: Message) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait((message, future))
        return future

    async def _run(self) -> None:
        while True:
            message, future = await self._inbox.get()
            if future.cancelled():
                continue
            try:
                result = await self.dispatcher.dispatch(message)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    async def close(self) -> None:
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        while not self._inbox.empty():
            _, future = self._inbox.get_nowait()
            if not future.done():
                future.set_exception(ReceiverMissingError(f"context {self.context_id} closed"))


class LocalTransport:
    """Registry of execution contexts keyed by id."""

    def __init__(self) -> None:
        self._contexts: dict[str, ExecutionContext] = {}

    def has(self, context_id: str) -> bool:
        return context_id in self._contexts

    def context_ids(self) -> list[str]:
        return sorted(self._contexts)

    def attach(self, context_id: str, dispatcher: MessageDispatcher) -> ExecutionContext:
        if context_id in self._contexts:
            raise ContextExistsError(f"context {context_id} already exists")
        context = ExecutionContext(context_id, dispatcher)
        self._contexts[context_id] = context
        logger.debug("Attached context %s", context_id)
        return context

    async def detach(self, context_id: str) -> None:
        context = self._contexts.pop(context_id, None)
        if context is not None:
            await context.close()
            logger.debug("Detached context %s", context_id)

    async def send(self, context_id: str, message: Message) -> Any:
        """Deliver and await the handler's response."""
        context = self._contexts.get(context_id)
        if context is None:
            raise ReceiverMissingError(f"no receiver in context {context_id} for {message.TYPE}")
        return await context.post(message)

    def notify(self, context_id: str, message: Message) -> None:
        """Fire-and-forget delivery; failures are logged, never raised."""
        context = self._contexts.get(context_id)
        if context is None:
            logger.warning("Dropping %s: no receiver in context %s", message.TYPE, context_id)
            return
        future = context.post(message)
        future.add_done_callback(lambda fut: _log_notify_failure(fut, context_id, message))

    async def close(self) -> None:
        for context_id in list(self._contexts):
            await self.detach(context_id)


def _log_notify_failure(future: asyncio.Future, context_id: str, message: Message) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Handler for %s in context %s failed: %s", message.TYPE, context_id, exc)
