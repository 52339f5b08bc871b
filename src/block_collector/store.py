"""
BlockStore: Postgres-backed BlockSink.

One parameterised INSERT per block on a pooled connection. asyncpg
errors are mapped onto the StoreError taxonomy so workers never see
driver exceptions.
"""

import asyncio
import re
from contextlib import contextmanager

import asyncpg
import structlog

from .errors import (
    ConstraintViolation,
    PermanentBackendError,
    SinkUnreachable,
    StoreError,
    TransientBackendError,
)
from .models import BlockRecord

logger = structlog.get_logger()

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

# Errors worth retrying later: lost connections, pool timeouts, deadlocks, overload
TRANSIENT_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.TransactionRollbackError,
    asyncpg.exceptions.InsufficientResourcesError,
    asyncpg.exceptions.OperatorInterventionError,
)


class BlockStore:
    """
    Stores BlockRecords in a `blocks(number, hash, timestamp)` table.

    The pool handles its own locking, so one instance is shared by
    every worker.
    """

    def __init__(self, pool, table: str = "blocks"):
        if not TABLE_NAME_PATTERN.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self.table = table
        self._pool = pool
        self._insert_sql = (
            f'INSERT INTO {table} ("number", "hash", "timestamp") VALUES ($1, $2, $3)'
        )

    @classmethod
    async def connect(
        cls,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        table: str = "blocks",
        timeout: float = 10.0,
    ) -> "BlockStore":
        """Open a connection pool and check it answers."""
        try:
            pool = await asyncpg.create_pool(
                dsn=dsn,
                min_size=min_size,
                max_size=max_size,
                timeout=timeout,
            )
        except (ValueError, asyncpg.PostgresError, *TRANSIENT_ERRORS) as e:
            raise SinkUnreachable(f"Cannot connect to database: {e}") from e

        store = cls(pool, table=table)
        try:
            await store.ping()
        except StoreError as e:
            await store.close()
            raise SinkUnreachable(f"Database did not answer: {e}") from e

        logger.info("Connected to database", table=table, max_size=max_size)
        return store

    @property
    def closed(self) -> bool:
        return self._pool is None

    @contextmanager
    def _translate_errors(self):
        """Map asyncpg and socket errors onto StoreError subclasses."""
        try:
            yield
        except StoreError:
            raise
        except asyncpg.IntegrityConstraintViolationError as e:
            raise ConstraintViolation(f"{type(e).__name__}: {e}") from e
        except TRANSIENT_ERRORS as e:
            raise TransientBackendError(f"{type(e).__name__}: {e}") from e
        except asyncpg.PostgresError as e:
            raise PermanentBackendError(f"{type(e).__name__}: {e}") from e

    def _acquire(self):
        if self._pool is None:
            raise TransientBackendError("BlockStore is closed")
        return self._pool.acquire()

    async def ping(self) -> None:
        with self._translate_errors():
            async with self._acquire() as conn:
                await conn.fetchval("SELECT 1")

    async def ensure_schema(self) -> None:
        """Create the blocks table if it does not exist."""
        ddl = f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                "number" BIGINT PRIMARY KEY,
                "hash" CHAR(66) NOT NULL,
                "timestamp" BIGINT NOT NULL
            )
        """
        with self._translate_errors():
            async with self._acquire() as conn:
                await conn.execute(ddl)
        logger.info("Ensured table exists", table=self.table)

    async def store(self, record: BlockRecord) -> None:
        """Insert one row. Each call is its own committed statement."""
        with self._translate_errors():
            async with self._acquire() as conn:
                await conn.execute(self._insert_sql, *record.to_row())

    async def close(self) -> None:
        """Close the pool. Safe to call more than once."""
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()
