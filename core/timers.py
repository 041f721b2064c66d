"""
Scheduled, cancellable timeouts for the session state machine.

Two interchangeable schedulers:
- TimerScheduler: real wall-clock delays backed by daemon threading.Timer
  objects (the engine serialises the callbacks under its own lock).
- ManualScheduler: a virtual clock advanced explicitly, used to replay
  recorded signal streams and to drive the engine deterministically.
"""

import heapq
import itertools
import logging
import threading
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    """Handle returned by call_later(); cancel() is idempotent."""

    def __init__(self, timer: Optional[threading.Timer] = None):
        self._timer = timer
        self.cancelled = False

    def cancel(self) -> None:
        """Cancel the pending callback if it has not run yet."""
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class TimerScheduler:
    """Wall-clock scheduler using daemon threads."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """
        Run callback after delay seconds on a background thread.

        Args:
            delay: Delay in seconds.
            callback: Zero-argument callable.
        """
        handle = TimerHandle()

        def _run() -> None:
            if handle.cancelled:
                return
            try:
                callback()
            except Exception as e:
                logger.error(f"Timer callback error: {e}")

        timer = threading.Timer(delay, _run)
        timer.daemon = True
        handle._timer = timer
        timer.start()
        return handle


class ManualScheduler:
    """
    Virtual-clock scheduler.

    Callbacks run synchronously inside advance()/advance_to(), in due-time
    order (ties in scheduling order).
    """

    def __init__(self, start: float = 0.0):
        self.now: float = start
        self._queue: List[Tuple[float, int, TimerHandle, Callable[[], None]]] = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Queue callback to run once the virtual clock reaches now + delay."""
        handle = TimerHandle()
        heapq.heappush(self._queue, (self.now + max(0.0, delay), next(self._counter), handle, callback))
        return handle

    def advance(self, seconds: float) -> None:
        """Move the clock forward by seconds, firing due callbacks."""
        self.advance_to(self.now + seconds)

    def advance_to(self, target: float) -> None:
        """
        Move the clock to an absolute time, firing due callbacks.

        Callbacks scheduled by other callbacks also fire if they fall due
        before target. Moving backwards is ignored.
        """
        if target < self.now:
            logger.debug(f"Ignoring backwards clock move to {target} (now {self.now})")
            return

        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.now = due
            if not handle.cancelled:
                callback()
        self.now = target

    def pending(self) -> int:
        """Number of callbacks still waiting to fire."""
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    def clock(self) -> float:
        """Current virtual time (usable as a violation timestamp source)."""
        return self.now
