"""Single-slot admission gate that serializes benchmark runs.

At most one caller holds the slot at a time. Callers that arrive while the
slot is taken wait in FIFO order without polling; a release hands the slot
directly to the oldest waiter. Waiting is cancelled through ordinary
asyncio task cancellation, and a cancelled waiter is never left holding
the slot.

The gate's state is only touched from the event loop thread, so each
mutation below is atomic with respect to every other caller.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
from types import TracebackType

from benchmark_tool.progress import ProgressSink, report_progress

logger = logging.getLogger(__name__)

_QUEUED_PERCENT = 5
_ADMITTED_PERCENT = 10


class RunSlot:
    """Single-use capability representing ownership of the gate.

    ``release()`` frees the gate the first time it is called; later calls
    do nothing. Usable as a sync or async context manager.
    """

    def __init__(self, gate: RunSlotGate) -> None:
        self._gate: RunSlotGate | None = gate

    @property
    def released(self) -> bool:
        """Whether this slot has already been given back."""
        return self._gate is None

    def release(self) -> None:
        """Give the slot back to the gate; a no-op after the first call."""
        gate, self._gate = self._gate, None
        if gate is None:
            return
        gate._release()

    def __enter__(self) -> RunSlot:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    async def __aenter__(self) -> RunSlot:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()


class RunSlotGate:
    """Capacity-1 FIFO gate.

    Construct one per process and pass it to whatever needs it; the gate
    is bound to the event loop its waiters run on.
    """

    def __init__(self) -> None:
        self._running = False
        self._waiters: collections.deque[asyncio.Future[None]] = collections.deque()

    @property
    def is_running(self) -> bool:
        """Whether some caller currently holds the slot."""
        return self._running

    @property
    def waiting_count(self) -> int:
        """Number of callers queued but not yet admitted."""
        return len(self._waiters)

    async def acquire(self, progress: ProgressSink | None = None) -> RunSlot:
        """Wait for exclusive ownership of the gate.

        Admission is immediate when the gate is free and nobody is queued.
        Otherwise one queue-position update is reported and the caller
        suspends until a release hands it the slot.

        Args:
            progress: Optional sink for queue and admission updates.

        Returns:
            The ``RunSlot`` to release when the run is over.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled while
                queued. The caller does not hold the gate in that case.
        """
        if not self._running and not self._waiters:
            self._running = True
            report_progress(progress, "Starting benchmark...", _ADMITTED_PERCENT)
            return RunSlot(self)

        ahead = len(self._waiters)
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.info("Run slot busy; queued with %d caller(s) ahead", ahead)
        report_progress(
            progress,
            f"Another benchmark is running. Waiting in queue... ({ahead} ahead)",
            _QUEUED_PERCENT,
        )

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation landed.
                self._release()
            else:
                self._discard(waiter)
            raise

        report_progress(progress, "Acquired runner slot. Preparing to start...", _ADMITTED_PERCENT)
        return RunSlot(self)

    def _discard(self, waiter: asyncio.Future[None]) -> None:
        with contextlib.suppress(ValueError):
            self._waiters.remove(waiter)

    def _release(self) -> None:
        """Hand the slot to the oldest live waiter, or mark the gate free."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._running = False
