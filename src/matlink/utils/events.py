"""Observer streams for asynchronous notifications."""

import asyncio
import logging
from typing import AsyncIterator, Callable, Generic, List, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class Subscription:
    """Handle returned by :meth:`EventStream.subscribe`."""

    def __init__(
        self,
        stream: "EventStream",
        callback: Callable,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self._stream = stream
        self.callback = callback
        self.on_close = on_close
        self.active = True

    def cancel(self) -> None:
        """Detach from the stream; no events are delivered afterwards."""
        if self.active:
            self.active = False
            self._stream._remove(self)


class EventStream(Generic[T]):
    """Synchronous fan-out of events to subscribers, in emission order.

    A failing subscriber is logged and skipped; it never breaks delivery to
    the others or the emitting service.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"matlink.events.{name}")
        self._subscribers: List[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self, callback: Callable[[T], None], on_close: Optional[Callable[[], None]] = None
    ) -> Subscription:
        subscription = Subscription(self, callback, on_close)
        if self._closed:
            subscription.active = False
            if on_close:
                on_close()
            return subscription
        self._subscribers.append(subscription)
        return subscription

    def emit(self, event: T) -> None:
        if self._closed:
            return
        for subscription in list(self._subscribers):
            if not subscription.active:
                continue
            try:
                subscription.callback(event)
            except Exception as e:
                self.logger.error(f"Subscriber error on {self.name}: {e}", exc_info=True)

    def close(self) -> None:
        """End the stream; pending ``events()`` iterators finish."""
        if self._closed:
            return
        self._closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscription in subscribers:
            subscription.active = False
            if subscription.on_close:
                subscription.on_close()

    async def events(self) -> AsyncIterator[T]:
        """Iterate over events until the stream closes or the caller stops."""
        queue: asyncio.Queue = asyncio.Queue()
        subscription = self.subscribe(
            queue.put_nowait, on_close=lambda: queue.put_nowait(_CLOSED)
        )
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    break
                yield item
        finally:
            subscription.cancel()

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscribers.remove(subscription)
        except ValueError:
            pass
