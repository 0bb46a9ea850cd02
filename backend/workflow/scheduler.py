"""Scheduling primitives for the execution controller.

- ``InFlightRegistry``: capacity-bounded set of executions currently being
  walked. It is the only shared mutable state of the controller; every
  mutation happens under one ``asyncio.Lock``.
- ``RetryScheduler``: deferred re-entry of failed nodes as asyncio tasks,
  keyed by execution id so pause/cancel can drop pending retries.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class InFlightRegistry:
    """Capacity-bounded registry of in-flight execution ids."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._active: dict[str, float] = {}
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    async def try_acquire(self, execution_id: str) -> bool:
        """Register ``execution_id`` if a slot is free.

        Re-acquiring an id that is already registered succeeds without
        taking a second slot.
        """
        async with self._lock:
            if execution_id in self._active:
                return True
            if len(self._active) >= self._capacity:
                return False
            self._active[execution_id] = asyncio.get_running_loop().time()
            return True

    async def register(self, execution_id: str) -> None:
        """Register without a capacity check (used by resume)."""
        async with self._lock:
            self._active.setdefault(execution_id, asyncio.get_running_loop().time())

    async def release(self, execution_id: str) -> bool:
        async with self._lock:
            return self._active.pop(execution_id, None) is not None

    def __contains__(self, execution_id: str) -> bool:
        return execution_id in self._active

    def __len__(self) -> int:
        return len(self._active)

    def snapshot(self) -> list[str]:
        return list(self._active)


@dataclass(eq=False)
class RetryHandle:
    """Cancellable handle for one scheduled retry."""
    execution_id: str
    node_id: str
    delay: float
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    fired: bool = False

    def cancel(self) -> bool:
        """Cancel while still sleeping. A retry that already fired runs on."""
        if self.task is None or self.task.done() or self.fired:
            return False
        return self.task.cancel()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()


class RetryScheduler:
    """Runs deferred callbacks after a delay, grouped by execution."""

    def __init__(self):
        self._handles: dict[str, set[RetryHandle]] = {}

    def schedule(
        self,
        execution_id: str,
        node_id: str,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> RetryHandle:
        """Run ``callback`` after ``delay`` seconds as a background task."""
        handle = RetryHandle(execution_id=execution_id, node_id=node_id, delay=delay)

        async def _run() -> None:
            await asyncio.sleep(delay)
            handle.fired = True
            try:
                await callback()
            except Exception:
                logger.exception(
                    "Deferred retry failed",
                    execution_id=execution_id,
                    node_id=node_id,
                )

        handle.task = asyncio.create_task(_run(), name=f"retry:{execution_id}:{node_id}")
        self._handles.setdefault(execution_id, set()).add(handle)
        handle.task.add_done_callback(lambda _t: self._discard(handle))
        return handle

    def _discard(self, handle: RetryHandle) -> None:
        handles = self._handles.get(handle.execution_id)
        if handles is None:
            return
        handles.discard(handle)
        if not handles:
            self._handles.pop(handle.execution_id, None)

    def pending(self, execution_id: Optional[str] = None) -> list[RetryHandle]:
        if execution_id is not None:
            return [h for h in self._handles.get(execution_id, ()) if not h.done]
        return [h for hs in self._handles.values() for h in hs if not h.done]

    def cancel_for(self, execution_id: str) -> int:
        """Cancel all pending retries of one execution. Returns the count."""
        cancelled = sum(1 for h in list(self._handles.get(execution_id, ())) if h.cancel())
        if cancelled:
            logger.info("Cancelled pending retries", execution_id=execution_id, count=cancelled)
        return cancelled

    def cancel_all(self) -> int:
        return sum(self.cancel_for(eid) for eid in list(self._handles))

    async def join(self) -> None:
        """Wait until no retry is pending, including retries scheduled meanwhile."""
        while True:
            tasks = [h.task for h in self.pending() if h.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
