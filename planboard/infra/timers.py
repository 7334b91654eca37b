from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def active(self) -> bool: ...


class Scheduler(Protocol):
    def schedule(self, fn: Callable[[], None], delay_ms: int) -> TimerHandle: ...


class _AsyncioTimer:
    def __init__(self, fn: Callable[[], None]) -> None:
        self._fn = fn
        self._handle: Optional[asyncio.TimerHandle] = None
        self._fired = False

    def _fire(self) -> None:
        self._fired = True
        self._fn()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._fired and not self._handle.cancelled()


class AsyncioScheduler:
    """One-shot timers on an asyncio loop (the running loop unless one is given)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def schedule(self, fn: Callable[[], None], delay_ms: int) -> _AsyncioTimer:
        loop = self._loop or asyncio.get_running_loop()
        timer = _AsyncioTimer(fn)
        timer._handle = loop.call_later(max(delay_ms, 0) / 1000, timer._fire)
        return timer


class Debouncer:
    """Coalesce bursts of `trigger()` into one call `delay_ms` after the last one."""

    def __init__(self, scheduler: Scheduler, delay_ms: int, fn: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._delay_ms = delay_ms
        self._fn = fn
        self._handle: TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None and self._handle.active

    def trigger(self) -> None:
        self.cancel()
        self._handle = self._scheduler.schedule(self._run, self._delay_ms)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _run(self) -> None:
        self._handle = None
        self._fn()
