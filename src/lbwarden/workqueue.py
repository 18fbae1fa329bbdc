"""Work queue for LoadBalancer keys.

The queue hands every key to at most one worker at a time. A key added while
it is being processed is remembered and handed out again once the worker calls
:meth:`WorkQueue.done`, so no change is lost and no key is reconciled twice in
parallel. Adding a key that is already waiting is a no-op.
"""

import heapq
import itertools
import logging
import threading
import time
from collections import deque

logger = logging.getLogger(__name__)

# Per key exponential backoff after failed reconciles, in seconds
BASE_DELAY = 0.005
MAX_DELAY = 1000.0


class ShutDown(Exception):
    """The queue has been shut down."""


class WorkQueue:
    """Rate limited, deduplicating work queue with single-flight per key."""

    def __init__(self, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY, clock=time.monotonic):
        """Initialize the queue.

        Args:
            base_delay: Delay after the first failure of a key.
            max_delay: Upper bound for the backoff delay.
            clock: Monotonic clock, for tests.
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.clock = clock

        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._waiting: list[tuple[float, int, str]] = []
        self._due: dict[str, float] = {}
        self._sequence = itertools.count()
        self._failures: dict[str, int] = {}
        self._shutting_down = False
        self._cond = threading.Condition()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str) -> None:
        """Mark a key for processing."""
        with self._cond:
            self._add(key)

    def _add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        """Add a key once the delay in seconds has passed.

        A key waits at most once. If it is already waiting, the earlier of both
        deadlines is kept.
        """
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            due = self.clock() + delay
            current = self._due.get(key)
            if current is not None and current <= due:
                return
            self._due[key] = due
            heapq.heappush(self._waiting, (due, next(self._sequence), key))
            self._cond.notify()

    def add_rate_limited(self, key: str) -> float:
        """Add a key after its current backoff delay and increase the backoff.

        Returns:
            The delay the key was added with.
        """
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * 2 ** failures, self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        """Reset the backoff of a key."""
        with self._cond:
            self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def get(self, timeout: float | None = None) -> str | None:
        """Wait for the next key and mark it as being processed.

        Args:
            timeout: Seconds to wait at most, None to wait forever.

        Returns:
            The key, or None if the timeout passed without one.

        Raises:
            ShutDown: If the queue has been shut down.
        """
        deadline = None if timeout is None else self.clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    raise ShutDown()
                self._promote_waiting()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key

                wait = None
                if self._waiting:
                    wait = max(self._waiting[0][0] - self.clock(), 0)
                if deadline is not None:
                    remaining = deadline - self.clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: str) -> None:
        """Mark a key as processed. A key added meanwhile is queued again."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop handing out keys and wake up all waiting workers."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def _promote_waiting(self) -> None:
        now = self.clock()
        while self._waiting and self._waiting[0][0] <= now:
            due, _, key = heapq.heappop(self._waiting)
            # superseded by an earlier deadline
            if self._due.get(key) != due:
                continue
            del self._due[key]
            self._add(key)

    def waiting(self) -> int:
        """Number of keys waiting for their delay to pass."""
        with self._cond:
            return len(self._due)
