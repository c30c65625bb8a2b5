"""
Timer services used for the inactivity/handoff timer.

The interpreter only ever calls ``schedule`` and ``cancel``; hosts pick the
implementation. ManualTimerService is a fake clock for tests and replays,
ThreadingTimerService backs the CLI and the HTTP host.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerService(Protocol):
    def schedule(self, seconds: float, callback: Callback) -> Any:
        ...

    def cancel(self, token: Any) -> None:
        ...


@dataclass
class TimerHandle:
    """The two timers armed while a step waits: the countdown tick and the handoff."""
    generation: int
    fire_token: Any = None
    tick_token: Any = None

    def cancel(self, timers: TimerService) -> None:
        if self.tick_token is not None:
            timers.cancel(self.tick_token)
            self.tick_token = None
        if self.fire_token is not None:
            timers.cancel(self.fire_token)
            self.fire_token = None


class ManualTimerService:
    """Deterministic clock: nothing fires until ``advance`` is called."""

    def __init__(self) -> None:
        self.now: float = 0.0
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int]] = []
        self._callbacks: Dict[int, Callback] = {}

    def schedule(self, seconds: float, callback: Callback) -> int:
        token = next(self._seq)
        self._callbacks[token] = callback
        heapq.heappush(self._queue, (self.now + max(seconds, 0), token))
        return token

    def cancel(self, token: int) -> None:
        self._callbacks.pop(token, None)

    def pending(self) -> int:
        return len(self._callbacks)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing everything that comes due in order. Returns the number fired."""
        target = self.now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, token = heapq.heappop(self._queue)
            callback = self._callbacks.pop(token, None)
            if callback is None:
                continue
            self.now = due
            callback()
            fired += 1
        self.now = target
        return fired


class ThreadingTimerService:
    """One daemon ``threading.Timer`` per scheduled callback."""

    def __init__(self) -> None:
        self._seq = itertools.count()
        self._timers: Dict[int, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, seconds: float, callback: Callback) -> int:
        token = next(self._seq)

        def _run() -> None:
            with self._lock:
                if self._timers.pop(token, None) is None:
                    return
            try:
                callback()
            except Exception as e:
                logger.error(f"Timer callback failed: {e}")

        timer = threading.Timer(max(seconds, 0), _run)
        timer.daemon = True
        with self._lock:
            self._timers[token] = timer
        timer.start()
        return token

    def cancel(self, token: Optional[int]) -> None:
        with self._lock:
            timer = self._timers.pop(token, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
