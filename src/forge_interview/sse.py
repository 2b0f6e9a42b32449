"""Ordered server-sent event channel for one interview turn."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class EventOrderError(RuntimeError):
    """Raised when a turn tries to emit an event out of sequence."""


class EventType(str, Enum):
    CHUNK = "chunk"
    VALIDATION = "validation"
    EXTRACTION = "extraction"
    ADVANCE = "advance"
    INTERVIEW_COMPLETE = "interview_complete"
    DONE = "done"
    ERROR = "error"


_RANK = {
    EventType.CHUNK: 0,
    EventType.VALIDATION: 1,
    EventType.EXTRACTION: 2,
    EventType.ADVANCE: 3,
    EventType.INTERVIEW_COMPLETE: 4,
    EventType.DONE: 5,
}
_TERMINAL = {EventType.DONE, EventType.ERROR}


@dataclass(slots=True)
class SSEEvent:
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    def payload(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.data}

    def encode(self) -> bytes:
        body = json.dumps(self.payload(), ensure_ascii=False)
        return f"event: {self.type.value}\ndata: {body}\n\n".encode("utf-8")


class TurnEventStream:
    """Bounded queue of turn events drained by the HTTP response.

    Events must follow ``chunk* validation? extraction? advance?
    interview_complete? done``. ``error`` may replace the remainder at any
    point. Both ``done`` and ``error`` close the stream.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[Optional[SSEEvent]] = asyncio.Queue(
            maxsize=maxsize
        )
        self._rank = -1
        self._closed = False
        self._terminal: Optional[EventType] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal(self) -> Optional[EventType]:
        return self._terminal

    def _check(self, kind: EventType) -> None:
        if self._closed:
            raise EventOrderError(
                f"Cannot emit '{kind.value}' after the stream was closed."
            )
        if kind == EventType.ERROR:
            return
        rank = _RANK[kind]
        if kind == EventType.CHUNK and self._rank <= 0:
            return
        if rank <= self._rank:
            raise EventOrderError(
                f"Event '{kind.value}' is out of order for this turn."
            )

    async def emit(self, kind: EventType, **data: Any) -> None:
        self._check(kind)
        if kind != EventType.ERROR:
            self._rank = _RANK[kind]
        await self._queue.put(SSEEvent(kind, data))
        if kind in _TERMINAL:
            self._terminal = kind
            await self._finish()

    async def chunk(self, content: str) -> None:
        await self.emit(EventType.CHUNK, content=content)

    async def validation(self, result: Dict[str, Any]) -> None:
        await self.emit(EventType.VALIDATION, result=result)

    async def extraction(self, items: Iterable[Dict[str, Any]]) -> None:
        await self.emit(EventType.EXTRACTION, items=list(items))

    async def advance(self, section_id: Optional[str], question_id: Optional[str]) -> None:
        await self.emit(
            EventType.ADVANCE, sectionId=section_id, questionId=question_id
        )

    async def interview_complete(self) -> None:
        await self.emit(EventType.INTERVIEW_COMPLETE)

    async def done(self, message_id: Optional[str]) -> None:
        await self.emit(EventType.DONE, messageId=message_id)

    async def error(self, message: str) -> None:
        await self.emit(EventType.ERROR, message=message)

    def close(self) -> None:
        """End the stream without a terminal event, e.g. on cancellation.

        Never blocks: a consumer that went away may have left the queue
        full.
        """

        if self._closed:
            return
        self._closed = True
        with suppress(asyncio.QueueFull):
            self._queue.put_nowait(None)

    async def _finish(self) -> None:
        self._closed = True
        await self._queue.put(None)

    async def events(self) -> AsyncIterator[SSEEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def encoded(self) -> AsyncIterator[bytes]:
        async for event in self.events():
            yield event.encode()
