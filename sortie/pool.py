"""Bounded, thread-safe pool of reusable floating IP identifiers.

A Flight owns one pool. Machines check identifiers out without ever blocking
(an empty pool simply means "allocate a fresh IP") and hand them back on
teardown. The pool is sized from the backend's quota ceiling, so a release
can never legitimately find it full: that situation is reported as
``PoolOverflowError`` instead of blocking.
"""

from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable, Iterable
from queue import Empty, Full, Queue

from loguru import logger

from sortie.core.exceptions import PoolClosedError, PoolOverflowError

type DeleteFn = Callable[[str], Awaitable[None]]


class ResourcePool:
    """Fixed-capacity pool of string identifiers.

    ``Queue.get_nowait()`` and ``Queue.put_nowait()`` are atomic, so
    ``try_acquire`` and ``release`` are linearizable from any number of
    threads or tasks and no identifier is handed out twice before it is
    released.
    """

    def __init__(
        self,
        capacity: int,
        seed: Iterable[str] = (),
        *,
        log=None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._queue: Queue[str] = Queue(maxsize=capacity)
        self._lock = threading.Lock()
        self._closed = False
        self._drained = False
        self._checked_out = 0
        self._log = log or logger.bind(component="pool")

        for identifier in seed:
            self._put(identifier)

    def try_acquire(self) -> str | None:
        """Check out an identifier, or return None immediately if none is available."""
        try:
            identifier = self._queue.get_nowait()
        except Empty:
            return None
        with self._lock:
            self._checked_out += 1
        self._log.debug("Checked out {id} ({n} left)", id=identifier, n=self.available)
        return identifier

    def release(self, identifier: str) -> None:
        """Return ``identifier`` to the pool without blocking.

        Raises:
            PoolClosedError: The pool was already drained by its Flight.
            PoolOverflowError: The pool is at capacity, which breaks its sizing invariant.
        """
        with self._lock:
            if self._closed:
                raise PoolClosedError(identifier)
            self._put(identifier)
            self._checked_out = max(0, self._checked_out - 1)
        self._log.debug("Released {id} ({n} available)", id=identifier, n=self.available)

    def _put(self, identifier: str) -> None:
        try:
            self._queue.put_nowait(identifier)
        except Full:
            raise PoolOverflowError(identifier, self._capacity) from None

    async def drain_and_destroy(self, delete: DeleteFn) -> list[tuple[str, Exception]]:
        """Close the pool and delete every identifier still in it.

        Called once, by ``Flight.destroy``. Per-identifier failures are logged
        and collected; they never stop the remaining deletions.

        Returns:
            ``(identifier, exception)`` for every deletion that failed.
        """
        with self._lock:
            if self._drained:
                return []
            self._closed = True
            self._drained = True

        failures: list[tuple[str, Exception]] = []
        for identifier in self._take_all():
            try:
                await delete(identifier)
                self._log.info("Deleted pooled floating IP {id}", id=identifier)
            except Exception as e:
                self._log.error("Deleting pooled floating IP {id}: {error}", id=identifier, error=e)
                failures.append((identifier, e))
        return failures

    def _take_all(self) -> list[str]:
        taken: list[str] = []
        while True:
            try:
                taken.append(self._queue.get_nowait())
            except Empty:
                return taken

    def snapshot(self) -> list[str]:
        """Identifiers currently available, oldest first. Does not check anything out."""
        with self._queue.mutex:
            return list(self._queue.queue)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available(self) -> int:
        return self._queue.qsize()

    @property
    def checked_out(self) -> int:
        """Identifiers acquired and not yet released."""
        return self._checked_out

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self.available

    def __repr__(self) -> str:
        return (
            f"ResourcePool(capacity={self._capacity}, available={self.available}, "
            f"checked_out={self._checked_out}, closed={self._closed})"
        )


__all__ = ["ResourcePool"]
