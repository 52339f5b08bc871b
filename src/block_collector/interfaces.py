"""
Capabilities consumed by the collection pipeline.

Workers only see these shapes, so any object with matching async methods
(RPC client, database store, in-memory fake) can be plugged in.
"""

from typing import Protocol

from .models import BlockRecord


class BlockSource(Protocol):
    """
    Protocol for anything that can return a block by number.

    Must be safe for concurrent use by all workers.
    """

    async def fetch(self, number: int) -> BlockRecord:
        """
        Fetch one block.

        Args:
            number: Block number to fetch

        Returns:
            BlockRecord whose number equals the requested one

        Raises:
            FetchError: transport, not-found or decoding failure
            asyncio.CancelledError: if the caller cancels
        """
        ...

    async def close(self) -> None:
        ...


class BlockSink(Protocol):
    """
    Protocol for anything that can durably store a block.

    One call commits exactly one row. Must be safe for concurrent use.
    """

    async def store(self, record: BlockRecord) -> None:
        """
        Raises:
            StoreError: constraint, transient or permanent backend failure
        """
        ...

    async def close(self) -> None:
        ...
