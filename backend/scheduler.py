"""
Repeating and one-shot scheduled tasks with explicit cancellation.

Timers in this service (countdown polling, autosave ticks, the auto-submit
sweeper) are never free-running: every one is a ScheduledTask returned by a
Scheduler and is cancelled through that handle. AsyncioScheduler runs on the
event loop in real time; VirtualScheduler is driven by a ManualClock so tests
can advance time deterministically.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional, Protocol

from datetime_utils import Clock, ManualClock, SystemClock

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledTask:
    """Handle for a scheduled callback. cancel() is the cancellation token."""

    def __init__(self, name: str):
        self.name = name
        self._cancelled = False
        self._wakeup: Optional[asyncio.Event] = None
        self._runner: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        # Wake a sleeping runner; a callback already executing is left to finish
        if self._wakeup is not None:
            self._wakeup.set()
        logger.debug(f"Cancelled scheduled task '{self.name}'")


class Scheduler(Protocol):
    clock: Clock

    def every(self, interval: float, callback: Callback, *, name: str = "task") -> ScheduledTask:
        ...

    def call_soon(self, callback: Callback, *, name: str = "task") -> ScheduledTask:
        ...

    async def shutdown(self) -> None:
        ...


async def _invoke(handle: ScheduledTask, callback: Callback) -> None:
    try:
        await callback()
    except Exception:
        # One failing run must not stop the repetition
        logger.exception(f"Scheduled task '{handle.name}' failed")


class AsyncioScheduler:
    """Real-time scheduler on the running asyncio event loop."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._handles: List[ScheduledTask] = []

    def every(self, interval: float, callback: Callback, *, name: str = "task") -> ScheduledTask:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = ScheduledTask(name)
        handle._wakeup = asyncio.Event()
        handle._runner = asyncio.create_task(self._run_every(handle, interval, callback))
        self._track(handle)
        return handle

    def call_soon(self, callback: Callback, *, name: str = "task") -> ScheduledTask:
        handle = ScheduledTask(name)
        handle._runner = asyncio.create_task(self._run_once(handle, callback))
        self._track(handle)
        return handle

    async def _run_every(self, handle: ScheduledTask, interval: float, callback: Callback) -> None:
        while not handle.cancelled:
            try:
                await asyncio.wait_for(handle._wakeup.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if handle.cancelled:
                return
            await _invoke(handle, callback)

    async def _run_once(self, handle: ScheduledTask, callback: Callback) -> None:
        await asyncio.sleep(0)
        if not handle.cancelled:
            await _invoke(handle, callback)

    def _track(self, handle: ScheduledTask) -> None:
        self._handles = [h for h in self._handles if h._runner is None or not h._runner.done()]
        self._handles.append(handle)

    async def shutdown(self) -> None:
        runners = []
        for handle in self._handles:
            handle.cancel()
            if handle._runner is not None:
                runners.append(handle._runner)
        self._handles = []
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)


@dataclass(order=True)
class _VirtualEntry:
    due: float
    seq: int
    interval: Optional[float] = field(compare=False)
    callback: Callback = field(compare=False)
    handle: ScheduledTask = field(compare=False)


class VirtualScheduler:
    """Scheduler on virtual time. Nothing runs until advance() is awaited."""

    def __init__(self, clock: Optional[ManualClock] = None):
        self.clock = clock or ManualClock()
        self._origin = self.clock.now()
        self._entries: List[_VirtualEntry] = []
        self._seq = 0

    def _elapsed(self) -> float:
        return (self.clock.now() - self._origin).total_seconds()

    def _add(self, due: float, interval: Optional[float], callback: Callback, name: str) -> ScheduledTask:
        handle = ScheduledTask(name)
        self._seq += 1
        self._entries.append(_VirtualEntry(due, self._seq, interval, callback, handle))
        return handle

    def every(self, interval: float, callback: Callback, *, name: str = "task") -> ScheduledTask:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return self._add(self._elapsed() + interval, interval, callback, name)

    def call_soon(self, callback: Callback, *, name: str = "task") -> ScheduledTask:
        return self._add(self._elapsed(), None, callback, name)

    @property
    def pending(self) -> int:
        return sum(1 for e in self._entries if not e.handle.cancelled)

    async def advance(self, seconds: float = 0) -> None:
        """Move virtual time forward, running every callback that falls due on the way."""
        target = self._elapsed() + seconds
        while True:
            self._entries = [e for e in self._entries if not e.handle.cancelled]
            due = [e for e in self._entries if e.due <= target]
            if not due:
                break
            entry = min(due)
            if entry.due > self._elapsed():
                self.clock.set(self._origin + timedelta(seconds=entry.due))
            if entry.interval is None:
                self._entries.remove(entry)
            else:
                self._seq += 1
                entry.due += entry.interval
                entry.seq = self._seq
            await _invoke(entry.handle, entry.callback)
        self.clock.set(self._origin + timedelta(seconds=target))

    async def run_pending(self) -> None:
        await self.advance(0)

    async def shutdown(self) -> None:
        for entry in self._entries:
            entry.handle.cancel()
        self._entries = []
