"""Rate-limited work queue for reconciliation keys."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Hashable
from datetime import timedelta
from typing import Generic, TypeVar

#: Type of key held in the queue.
K = TypeVar("K", bound=Hashable)

__all__ = ["WorkQueue"]


class WorkQueue(Generic[K]):
    """Queue of object keys waiting to be reconciled.

    A key is held in the queue at most once no matter how many times it is
    added before a worker picks it up. A key that a worker is currently
    processing is never handed to another worker. If it is added again while
    being processed, it is queued once processing is finished.

    Failed keys are re-added after an exponentially increasing delay until
    `forget` is called for them.

    Parameters
    ----------
    base_delay
        Delay before retrying a key after its first failure.
    max_delay
        Maximum delay before retrying a key.
    """

    def __init__(self, *, base_delay: timedelta, max_delay: timedelta) -> None:
        self._base_delay = base_delay.total_seconds()
        self._max_delay = max_delay.total_seconds()
        self._queue: deque[K] = deque()
        self._dirty: set[K] = set()
        self._processing: set[K] = set()
        self._failures: dict[K, int] = {}
        self._delayed: dict[K, asyncio.TimerHandle] = {}
        self._wakeup = asyncio.Event()
        self._shutdown = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_shutdown(self) -> bool:
        """Whether the queue has been shut down."""
        return self._shutdown

    def add(self, key: K) -> None:
        """Add a key to the queue.

        Does nothing if the key is already waiting in the queue or if the
        queue has been shut down.

        Parameters
        ----------
        key
            Key to add.
        """
        if self._shutdown or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._wakeup.set()

    def add_after(self, key: K, delay: float) -> None:
        """Add a key to the queue after a delay.

        If the key is already scheduled to be added later than this, it is
        rescheduled. If it is scheduled to be added sooner, nothing changes.

        Parameters
        ----------
        key
            Key to add.
        delay
            Delay in seconds.
        """
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        if handle := self._delayed.get(key):
            if handle.when() <= when:
                return
            handle.cancel()
        self._delayed[key] = loop.call_at(when, self._add_delayed, key)

    def add_rate_limited(self, key: K) -> None:
        """Add a key to the queue after its current backoff delay.

        Each call increases the delay for the next call for the same key,
        doubling from the base delay up to the maximum delay.

        Parameters
        ----------
        key
            Key to add.
        """
        failures = self._failures.get(key, 0)
        self._failures[key] = failures + 1
        delay = self._base_delay * 2 ** min(failures, 32)
        self.add_after(key, min(delay, self._max_delay))

    def done(self, key: K) -> None:
        """Mark a key as no longer being processed.

        Must be called once for each key returned by `get`. If the key was
        added again while it was being processed, it is queued again.

        Parameters
        ----------
        key
            Key that was being processed.
        """
        self._processing.discard(key)
        if key in self._dirty and not self._shutdown:
            self._queue.append(key)
            self._wakeup.set()

    def forget(self, key: K) -> None:
        """Reset the backoff delay of a key after a success."""
        self._failures.pop(key, None)

    async def get(self) -> K | None:
        """Wait for the next key to process.

        Returns
        -------
        object or None
            Next key, or `None` if the queue has been shut down.
        """
        while not self._queue:
            if self._shutdown:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._shutdown:
            return None
        key = self._queue.popleft()
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def num_requeues(self, key: K) -> int:
        """Return the number of consecutive failures of a key."""
        return self._failures.get(key, 0)

    def shutdown(self) -> None:
        """Shut down the queue and release all waiting workers.

        Keys that are waiting or scheduled for later are discarded.
        """
        self._shutdown = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._queue.clear()
        self._dirty.clear()
        self._wakeup.set()

    def _add_delayed(self, key: K) -> None:
        del self._delayed[key]
        self.add(key)
