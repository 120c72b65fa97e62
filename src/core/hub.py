"""Publish/subscribe broadcaster for the progress stream.

Each live connection owns a `Subscriber`: a bounded in-memory buffer that the
hub fills with serialized frames and the HTTP layer drains. `publish` never
awaits, so one slow reader cannot hold up delivery to the others; a reader
that lets its buffer overflow is dropped as if its socket had broken.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from itertools import count

import structlog

from src.models.events import ConnectedEvent, PaymentEvent, StageEvent

log = structlog.get_logger(__name__)

_CLOSE = object()
_ids = count(1)


class SubscriberClosedError(RuntimeError):
    """Raised when writing to a subscriber whose connection is gone."""


class Subscriber:
    """One registered output channel."""

    def __init__(self, *, max_buffer: int) -> None:
        self.id = next(_ids)
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max_buffer)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def write(self, frame: str) -> None:
        if self._closed:
            raise SubscriberClosedError(f"subscriber {self.id} is closed")
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull as e:
            raise SubscriberClosedError(f"subscriber {self.id} buffer overflow") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake a reader blocked on get(); drop a frame if the buffer is full.
        if self._queue.full():
            self._queue.get_nowait()
            log.debug("subscriber_frame_dropped_on_close", subscriber_id=self.id)
        self._queue.put_nowait(_CLOSE)

    async def frames(self, *, heartbeat_s: float | None = None) -> AsyncIterator[str | None]:
        """Yield frames until closed; `None` marks an idle heartbeat interval."""
        while True:
            try:
                if heartbeat_s is None:
                    item = await self._queue.get()
                else:
                    item = await asyncio.wait_for(self._queue.get(), timeout=heartbeat_s)
            except asyncio.TimeoutError:
                yield None
                continue
            if item is _CLOSE:
                return
            yield str(item)


class EventHub:
    """Fan-out of progress events to every currently registered subscriber."""

    def __init__(self, *, max_buffer: int = 256) -> None:
        self._max_buffer = max_buffer
        # dict keeps subscription order; iteration works on a snapshot.
        self._subscribers: dict[int, Subscriber] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscriber:
        subscriber = Subscriber(max_buffer=self._max_buffer)
        self._subscribers[subscriber.id] = subscriber
        subscriber.write(ConnectedEvent().to_json())
        log.info("subscriber_connected", subscriber_id=subscriber.id, subscribers=len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber; calling it again is a no-op."""
        removed = self._subscribers.pop(subscriber.id, None)
        subscriber.close()
        if removed is not None:
            log.info("subscriber_disconnected", subscriber_id=subscriber.id, subscribers=len(self._subscribers))

    def publish(self, event: StageEvent | PaymentEvent | ConnectedEvent) -> int:
        """Serialize `event` once and write it to every subscriber.

        Returns the number of subscribers the frame was delivered to.
        """
        frame = event.to_json()
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            try:
                subscriber.write(frame)
            except SubscriberClosedError as e:
                log.warning("subscriber_write_failed", subscriber_id=subscriber.id, error=str(e))
                self.unsubscribe(subscriber)
                continue
            delivered += 1
        return delivered

    def close(self) -> None:
        """Close every subscriber so open streams terminate (shutdown)."""
        for subscriber in list(self._subscribers.values()):
            self.unsubscribe(subscriber)


def sse_frame(payload: str) -> str:
    """Frame one JSON payload as a Server-Sent Event."""
    return f"data: {payload}\n\n"


SSE_KEEPALIVE = ": keep-alive\n\n"
