"""
Collector: owns the block source and sink and runs the fetch/store pipeline.

This is the main entry point for library use:

    async with await Collector.create(config) as collector:
        result = await collector.collect(start, end)
"""

import asyncio
from typing import Optional

import structlog

from .config import CollectorConfig
from .errors import CollectorError, ConfigInvalid, FetchError, SinkUnreachable, SourceUnreachable, StoreError
from .interfaces import BlockSink, BlockSource
from .models import CollectResult
from .pipeline import BlockChannel, RangeProducer, Worker
from .rpc import RPCClient
from .store import BlockStore


class Collector:
    """
    Collects a closed range of blocks with a fixed pool of workers.

    Features:
    - Bounded channel between producer and workers (memory <= queue_capacity)
    - Per-block failures are logged and counted, never fatal
    - Optional stop event: producer stops emitting, workers drain what was sent
    - Stats logging
    """

    def __init__(
        self,
        source: BlockSource,
        sink: BlockSink,
        worker_count: int = 10,
        queue_capacity: int = 1000,
        stats_interval: float = 0.0,
        default_range: Optional[tuple[int, int]] = None,
        logger=None,
    ):
        if worker_count <= 0:
            raise ConfigInvalid("worker_count must be positive")
        if queue_capacity <= 0:
            raise ConfigInvalid("queue_capacity must be positive")

        self.source = source
        self.sink = sink
        self.worker_count = worker_count
        self.queue_capacity = queue_capacity
        self.stats_interval = stats_interval
        self.default_range = default_range
        self.log = logger or structlog.get_logger()

        self._closed = False
        self._workers: list[Worker] = []

    @classmethod
    async def create(
        cls,
        config: CollectorConfig,
        source: Optional[BlockSource] = None,
        sink: Optional[BlockSink] = None,
        logger=None,
    ) -> "Collector":
        """
        Connect to the RPC endpoint and the database.

        Adapters built here (or passed in) belong to the Collector. On failure
        everything opened so far is closed before the error is raised.

        Raises:
            SourceUnreachable: the node did not answer eth_blockNumber
            SinkUnreachable: the database could not be reached or prepared
        """
        log = logger or structlog.get_logger()

        if source is None:
            client = RPCClient(
                endpoint=config.rpc_endpoint,
                max_concurrent=config.worker_count,
                timeout=config.rpc_timeout,
                max_retries=config.rpc_max_retries,
            )
            await client.open()
            try:
                head = await client.get_block_number()
            except FetchError as e:
                await client.close()
                raise SourceUnreachable(f"RPC endpoint unreachable: {e}") from e
            except BaseException:
                await client.close()
                raise
            log.info("Connected to RPC", chain_head=head)
            source = client

        try:
            if sink is None:
                sink = await BlockStore.connect(
                    config.db_endpoint,
                    min_size=config.db_pool_min_size,
                    max_size=config.pool_max_size,
                    table=config.db_table,
                )
                if config.create_table:
                    try:
                        await sink.ensure_schema()
                    except StoreError as e:
                        await sink.close()
                        raise SinkUnreachable(f"Cannot create table: {e}") from e
        except BaseException:
            await source.close()
            raise

        collector = cls(
            source=source,
            sink=sink,
            worker_count=config.worker_count,
            queue_capacity=config.queue_capacity,
            stats_interval=config.stats_interval,
            default_range=(config.start_block, config.end_block),
            logger=log,
        )
        log.info(
            "Collector ready",
            worker_count=collector.worker_count,
            queue_capacity=collector.queue_capacity,
        )
        return collector

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _resolve_range(self, start: Optional[int], end: Optional[int]) -> tuple[int, int]:
        if start is None or end is None:
            if self.default_range is None:
                raise ConfigInvalid("start and end are required")
            start = self.default_range[0] if start is None else start
            end = self.default_range[1] if end is None else end

        for name, value in (("start", start), ("end", end)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigInvalid(f"{name} must be an integer, got {value!r}")
        if start < 0:
            raise ConfigInvalid(f"start must be >= 0, got {start}")
        if start > end:
            raise ConfigInvalid(f"start ({start}) must be <= end ({end})")
        return start, end

    async def collect(
        self,
        start: Optional[int] = None,
        end: Optional[int] = None,
        stop: Optional[asyncio.Event] = None,
    ) -> CollectResult:
        """
        Fetch and store every block in [start, end].

        Returns only after every worker has terminated, so each block in the
        range has been stored, logged as failed, or (after a stop request)
        never sent. Defaults to the configured range.
        """
        if self._closed:
            raise CollectorError("Collector is closed")
        start, end = self._resolve_range(start, end)

        channel = BlockChannel(self.queue_capacity)
        producer = RangeProducer(start, end, channel, stop=stop, logger=self.log)
        self._workers = [
            Worker(f"worker-{i+1}", channel, self.source, self.sink, logger=self.log)
            for i in range(self.worker_count)
        ]

        self.log.info(
            "Collection starting",
            start_block=start,
            end_block=end,
            worker_count=self.worker_count,
            queue_capacity=self.queue_capacity,
        )

        worker_tasks = [
            asyncio.create_task(worker.run(), name=worker.worker_id)
            for worker in self._workers
        ]
        producer_task = asyncio.create_task(producer.run(), name="producer")
        stats_task = None
        if self.stats_interval > 0:
            stats_task = asyncio.create_task(self._stats_logger_loop(channel))

        try:
            outcomes = await asyncio.gather(*worker_tasks, return_exceptions=True)
            for worker, outcome in zip(self._workers, outcomes):
                if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                    self.log.error(
                        "Worker error",
                        worker_id=worker.worker_id,
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )

            if all(isinstance(o, BaseException) for o in outcomes):
                # No worker left to drain the channel, the producer may be stuck on a full channel
                producer_task.cancel()
            await asyncio.gather(producer_task, return_exceptions=True)
        finally:
            leftover = [
                t for t in (producer_task, stats_task, *worker_tasks)
                if t is not None and not t.done()
            ]
            for task in leftover:
                task.cancel()
            if leftover:
                await asyncio.gather(*leftover, return_exceptions=True)

        result = CollectResult(requested=end - start + 1, produced=channel.produced)
        for worker in self._workers:
            result.stored += worker.stored
            result.fetch_failed += worker.fetch_failed
            result.store_failed += worker.store_failed
        result.cancelled = result.produced - result.stored - result.fetch_failed - result.store_failed

        self.log.info("Collection finished", start_block=start, end_block=end, **result.as_dict())
        return result

    async def _stats_logger_loop(self, channel: BlockChannel) -> None:
        """Periodically log stats."""
        while True:
            await asyncio.sleep(self.stats_interval)

            stats = channel.get_stats()
            active_workers = len([w for w in self._workers if w.running])

            self.log.info(
                "Stats",
                produced=stats.produced,
                pending=stats.pending,
                stored=stats.stored,
                failed=stats.failed,
                blocks_per_sec=f"{stats.blocks_per_second:.1f}",
                workers=active_workers,
            )

    async def close(self) -> None:
        """Release the sink pool and the RPC client. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.sink.close()
        finally:
            await self.source.close()
        self.log.info("Collector closed")
