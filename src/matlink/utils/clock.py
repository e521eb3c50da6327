"""Cancellable timers.

Services never call ``asyncio.sleep`` or ``loop.call_later`` directly; they
go through an injected :class:`Clock`. Production code uses the event loop
clock, tests use :class:`VirtualClock` and move time with ``advance()``.
"""

import asyncio
import heapq
import itertools
from typing import Any, Callable, List, Tuple


class Clock:
    """Event-loop backed clock."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any):
        """Schedule ``callback(*args)`` after ``delay`` seconds.

        Returns:
            Handle with ``cancel()`` and ``cancelled()``
        """
        return asyncio.get_running_loop().call_later(delay, callback, *args)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


class VirtualTimer:
    """Timer handle issued by VirtualClock."""

    def __init__(self, when: float, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        self._cancelled = True  # one-shot
        self._callback(*self._args)


def _resolve(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class VirtualClock(Clock):
    """Deterministic clock; time only moves when ``advance()`` is awaited.

    After each timer fires the loop is given a few iterations so that
    coroutines woken by the timer can run and register their next timer
    before time moves on.
    """

    settle_iterations = 20

    def __init__(self, start: float = 0.0):
        self._now = start
        self._timers: List[Tuple[float, int, VirtualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> VirtualTimer:
        timer = VirtualTimer(self._now + max(delay, 0.0), callback, args)
        heapq.heappush(self._timers, (timer.when, next(self._seq), timer))
        return timer

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        timer = self.call_later(delay, _resolve, future)
        try:
            await future
        finally:
            timer.cancel()

    @property
    def pending(self) -> int:
        """Number of timers that have neither fired nor been cancelled."""
        return sum(1 for _, _, timer in self._timers if not timer.cancelled())

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in deadline order."""
        target = self._now + seconds
        await self.settle()
        while self._timers and self._timers[0][0] <= target:
            when, _, timer = heapq.heappop(self._timers)
            if timer.cancelled():
                continue
            self._now = when
            timer._run()
            await self.settle()
        self._now = target
        await self.settle()

    async def settle(self) -> None:
        """Let ready callbacks and woken tasks run without moving time."""
        for _ in range(self.settle_iterations):
            await asyncio.sleep(0)
