"""
RangeProducer: feeds a closed block range into the work channel.
"""

import asyncio
from typing import Optional

import structlog

from .channel import BlockChannel


class RangeProducer:
    """
    Emits start..end (inclusive) in ascending order, then closes the channel.

    Stops emitting early when `stop` is set; the channel is closed either way
    so workers can drain what was already sent.
    """

    def __init__(
        self,
        start: int,
        end: int,
        channel: BlockChannel,
        stop: Optional[asyncio.Event] = None,
        logger=None,
    ):
        self.start = start
        self.end = end
        self.channel = channel
        self.stop = stop
        self.log = (logger or structlog.get_logger()).bind(component="producer")
        self.emitted = 0

    async def run(self) -> int:
        """Returns the number of block numbers sent."""
        try:
            for block_number in range(self.start, self.end + 1):
                if not await self.channel.put(block_number, stop=self.stop):
                    self.log.info(
                        "Stop requested, producer halting",
                        next_block=block_number,
                        emitted=self.emitted,
                    )
                    break
                self.emitted += 1
        except asyncio.CancelledError:
            self.channel.abort()
            raise

        self.channel.close()
        self.log.debug("Producer finished", emitted=self.emitted)
        return self.emitted
