"""
Bounded work channel between the range producer and the workers.

Holds at most `capacity` block numbers. The producer closes it exactly
once after its last send; readers get None once it is closed and drained.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

@dataclass
class QueueStats:
    produced: int = 0
    consumed: int = 0
    stored: int = 0
    failed: int = 0
    pending: int = 0
    blocks_per_second: float = 0.0


class BlockChannel:
    """
    Closable FIFO of block numbers on top of asyncio.Queue.

    Features:
    - put() blocks while full (the only flow control)
    - put() can be abandoned through a stop event
    - close() is a plain signal; waiting readers wake up and get None
    - Stats tracking for progress logs
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = False
        self._closed_event = asyncio.Event()

        self._produced = 0
        self._consumed = 0
        self._stored = 0
        self._failed = 0
        self._done_timestamps: list[float] = []  # For calculating blocks/sec

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def produced(self) -> int:
        return self._produced

    def qsize(self) -> int:
        """Number of block numbers waiting in the channel."""
        return self._produced - self._consumed

    async def put(self, block_number: int, stop: Optional[asyncio.Event] = None) -> bool:
        """
        Send a block number, waiting for room.

        Returns False (and sends nothing) if `stop` is set before there was room.
        """
        if self._closed:
            raise RuntimeError("put() on a closed channel")

        if stop is None:
            await self._queue.put(block_number)
        elif stop.is_set():
            return False
        elif not self._queue.full():
            self._queue.put_nowait(block_number)
        else:
            put_task = asyncio.ensure_future(self._queue.put(block_number))
            stop_task = asyncio.ensure_future(stop.wait())
            try:
                await asyncio.wait({put_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                stop_task.cancel()
                if not put_task.done():
                    put_task.cancel()
            if put_task.cancelled() or not put_task.done():
                return False

        self._produced += 1
        return True

    def close(self) -> None:
        """Signal that no more block numbers will be sent. Never waits."""
        if self._closed:
            raise RuntimeError("channel already closed")
        self._closed = True
        self._closed_event.set()

    def abort(self) -> None:
        """Close if still open, used when the producer is cancelled."""
        if not self._closed:
            self.close()

    async def get(self) -> Optional[int]:
        """Receive the next block number, or None when closed and drained."""
        while True:
            if not self._queue.empty():
                self._consumed += 1
                return self._queue.get_nowait()
            if self._closed:
                return None

            # Wait for either a block number or the close signal
            get_task = asyncio.ensure_future(self._queue.get())
            closed_task = asyncio.ensure_future(self._closed_event.wait())
            try:
                await asyncio.wait({get_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                closed_task.cancel()
                if not get_task.done():
                    get_task.cancel()
            if get_task.done() and not get_task.cancelled():
                self._consumed += 1
                return get_task.result()

    def mark_done(self, success: bool) -> None:
        """Record the outcome of one consumed block."""
        if success:
            self._stored += 1
        else:
            self._failed += 1
        now = time.time()
        self._done_timestamps.append(now)

        # Keep only last 60 seconds of timestamps
        cutoff = now - 60
        if self._done_timestamps[0] <= cutoff:
            self._done_timestamps = [t for t in self._done_timestamps if t > cutoff]

    def get_stats(self) -> QueueStats:
        stats = QueueStats(
            produced=self._produced,
            consumed=self._consumed,
            stored=self._stored,
            failed=self._failed,
            pending=self.qsize(),
        )

        cutoff = time.time() - 60
        recent = [t for t in self._done_timestamps if t > cutoff]
        if len(recent) >= 2:
            duration = recent[-1] - recent[0]
            if duration > 0:
                stats.blocks_per_second = len(recent) / duration

        return stats
