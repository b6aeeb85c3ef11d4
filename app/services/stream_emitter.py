from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import logging

from app.core.errors import ChannelClosed
from app.services.chat_stream import ChatStreamEvent, error_event, is_terminal_event

logger = logging.getLogger(__name__)


class StreamEmitter:
    """Append-only, single-writer event channel for one generation run.

    ``emit`` never awaits, so two frames can't interleave on the event loop.
    Every subscriber replays the same log, so delivery order is identical for
    the live HTTP response, the resumable registry, and any late reader.
    """

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        self._events: list[ChatStreamEvent] = []
        self._closed = False
        self._changed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def events(self) -> tuple[ChatStreamEvent, ...]:
        return tuple(self._events)

    @property
    def terminal_event(self) -> ChatStreamEvent | None:
        if self._events and is_terminal_event(self._events[-1]):
            return self._events[-1]
        return None

    def emit(self, event: ChatStreamEvent) -> None:
        if self._closed:
            raise ChannelClosed(f"run {self.run_id} is closed; dropped {event['type']} event")
        self._events.append(event)
        if is_terminal_event(event):
            self._closed = True
            logger.debug("stream reached terminal frame", extra={"run_id": self.run_id, "frame_type": event["type"]})
        self._notify()

    def close(self, error_message: str | None = None) -> None:
        """Mark the channel terminal, optionally ending it with a user-facing error frame."""
        if self._closed:
            return
        if error_message is not None:
            self._events.append(error_event(error_message))
        self._closed = True
        logger.debug(
            "stream closed",
            extra={"run_id": self.run_id, "frames": len(self._events), "errored": error_message is not None},
        )
        self._notify()

    async def subscribe(self, offset: int = 0) -> AsyncIterator[ChatStreamEvent]:
        """Yield frames from ``offset`` until the channel closes, waiting on the producer as needed."""
        index = max(0, offset)
        while True:
            if index < len(self._events):
                event = self._events[index]
                index += 1
                yield event
                continue
            if self._closed:
                return
            await self._changed.wait()

    def _notify(self) -> None:
        # Wake current waiters and hand later ones a fresh event.
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
