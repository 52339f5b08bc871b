"""
Worker: takes block numbers from the channel, fetches and stores them.
"""

import asyncio
from typing import Optional

import structlog

from ..interfaces import BlockSink, BlockSource
from .channel import BlockChannel


class Worker:
    """
    Worker that fetches blocks from the source and stores them in the sink.

    Lifecycle:
    1. Receive a block number (stop when the channel is closed and empty)
    2. Fetch the block
    3. Store it
    4. Log the outcome and repeat

    A failed block is logged and skipped; it never stops the worker.
    Cancellation stops the worker immediately.
    """

    def __init__(
        self,
        worker_id: str,
        channel: BlockChannel,
        source: BlockSource,
        sink: BlockSink,
        logger=None,
    ):
        self.worker_id = worker_id
        self.channel = channel
        self.source = source
        self.sink = sink
        self.log = (logger or structlog.get_logger()).bind(worker_id=worker_id)

        self.running = False
        self.stored = 0
        self.fetch_failed = 0
        self.store_failed = 0
        self._current_block: Optional[int] = None

    @property
    def processed(self) -> int:
        return self.stored + self.fetch_failed + self.store_failed

    async def run(self) -> None:
        """Worker loop; returns once the channel is closed and drained."""
        self.running = True
        self.log.debug("Worker starting")

        try:
            while True:
                block_number = await self.channel.get()
                if block_number is None:
                    break

                self._current_block = block_number
                await self._process_block(block_number)
                self._current_block = None

        except asyncio.CancelledError:
            if self._current_block is not None:
                self.channel.mark_done(success=False)
                self.log.warning(
                    f"block {self._current_block} error: cancelled",
                    block_number=self._current_block,
                    phase="cancelled",
                )
            raise
        finally:
            self.running = False
            self.log.debug(
                "Worker stopped",
                stored=self.stored,
                fetch_failed=self.fetch_failed,
                store_failed=self.store_failed,
            )

    async def _process_block(self, block_number: int) -> None:
        try:
            record = await self.source.fetch(block_number)
        except Exception as e:
            self.fetch_failed += 1
            self._log_failure(block_number, "fetch", e)
            return

        try:
            await self.sink.store(record)
        except Exception as e:
            self.store_failed += 1
            self._log_failure(block_number, "store", e)
            return

        self.stored += 1
        self.channel.mark_done(success=True)
        self.log.info(f"block {block_number} stored", block_number=block_number)

    def _log_failure(self, block_number: int, phase: str, error: Exception) -> None:
        self.channel.mark_done(success=False)
        self.log.warning(
            f"block {block_number} error: {error}",
            block_number=block_number,
            phase=phase,
            error_type=type(error).__name__,
        )
