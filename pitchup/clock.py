"""
Clocks: wall time plus one-shot timers.

Instants are unix timestamps (float seconds), like time.time().
Every timer callback of a clock runs on a single thread, so the engine's
state transitions are serialized without extra locking:

- ThreadedClock: one dispatcher thread for timers and call_soon() work.
- ManualClock: simulated time for tests and replay; callbacks run inline
  while advance()/advance_to() moves time forward.
"""

import heapq
import itertools
import threading
import time
import traceback
from typing import Callable, Dict, List, Optional, Tuple


class Clock:
    """Clock interface."""

    def now(self) -> float:
        """Current wall time (unix seconds)."""
        raise NotImplementedError

    def schedule_at(self, instant: float, callback: Callable[[], None]) -> int:
        """
        Run callback once at instant.

        Returns:
            Cancel token
        """
        raise NotImplementedError

    def cancel(self, token: Optional[int]) -> bool:
        """
        Cancel a pending timer.

        Returns:
            True if the timer was still pending
        """
        raise NotImplementedError

    def call_soon(self, callback: Callable[[], None]) -> None:
        """Run callback on the clock's execution thread as soon as possible."""
        raise NotImplementedError


class ManualClock(Clock):
    """
    Deterministic clock driven by the caller.

    Timers fire in (instant, scheduling order) order. While a timer fires,
    now() returns its target instant.
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)
        self._heap: List[Tuple[float, int]] = []
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count(1)

    def now(self) -> float:
        return self._now

    def schedule_at(self, instant: float, callback: Callable[[], None]) -> int:
        token = next(self._ids)
        self._callbacks[token] = callback
        heapq.heappush(self._heap, (float(instant), token))
        return token

    def cancel(self, token: Optional[int]) -> bool:
        if token is None:
            return False
        return self._callbacks.pop(token, None) is not None

    def call_soon(self, callback: Callable[[], None]) -> None:
        callback()

    def pending_count(self) -> int:
        """Number of timers still pending."""
        return len(self._callbacks)

    def set(self, instant: float):
        """
        Jump wall time without firing timers.

        Models a host that was suspended: timers that should have fired
        stay pending until the next advance.
        """
        self._now = float(instant)

    def advance(self, seconds: float):
        """Move time forward by seconds, firing due timers."""
        self.advance_to(self._now + seconds)

    def advance_to(self, instant: float):
        """Move time forward to instant, firing due timers in order."""
        while self._heap and self._heap[0][0] <= instant:
            due, token = heapq.heappop(self._heap)
            callback = self._callbacks.pop(token, None)
            if callback is None:
                continue  # cancelled
            self._now = max(self._now, due)
            callback()
        self._now = max(self._now, float(instant))


class ThreadedClock(Clock):
    """
    Real-time clock with a single dispatcher thread.

    Waits are measured on time.monotonic() so a wall clock jump does not
    stretch or shrink a pending timer; wall time deadlines are reconciled
    separately by the engine's overdue check.
    """

    def __init__(self, name: str = "pitchup-clock"):
        self.name = name
        self._heap: List[Tuple[float, int]] = []
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count(1)
        self._cond = threading.Condition()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def now(self) -> float:
        return time.time()

    def schedule_at(self, instant: float, callback: Callable[[], None]) -> int:
        delay = max(0.0, instant - time.time())
        return self._push(time.monotonic() + delay, callback)

    def cancel(self, token: Optional[int]) -> bool:
        if token is None:
            return False
        with self._cond:
            return self._callbacks.pop(token, None) is not None

    def call_soon(self, callback: Callable[[], None]) -> None:
        self._push(time.monotonic(), callback)

    def _push(self, due_monotonic: float, callback: Callable[[], None]) -> int:
        with self._cond:
            token = next(self._ids)
            self._callbacks[token] = callback
            heapq.heappush(self._heap, (due_monotonic, token))
            self._cond.notify()
            return token

    def start(self):
        """Start the dispatcher thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._dispatch_loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0):
        """Stop the dispatcher thread. Pending timers are dropped."""
        with self._cond:
            self._running = False
            self._cond.notify()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _dispatch_loop(self):
        """Main dispatcher loop (runs in background thread)."""
        while True:
            with self._cond:
                callback = None
                while self._running and callback is None:
                    if not self._heap:
                        self._cond.wait()
                        continue

                    due, token = self._heap[0]
                    wait_sec = due - time.monotonic()
                    if wait_sec > 0:
                        self._cond.wait(timeout=wait_sec)
                        continue

                    heapq.heappop(self._heap)
                    callback = self._callbacks.pop(token, None)

                if not self._running:
                    return

            # Run outside the lock so callbacks can schedule/cancel
            try:
                callback()
            except Exception:
                print(f"[CLOCK] Error in timer callback:\n{traceback.format_exc()}")
