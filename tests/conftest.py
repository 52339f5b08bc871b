import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Optional

import pytest
from structlog.testing import capture_logs

from block_collector.config import ENV_VARS
from block_collector.errors import ConstraintViolation
from block_collector.models import BlockRecord


def make_record(number: int) -> BlockRecord:
    return BlockRecord(
        number=number,
        hash=f"0x{number:064x}",
        timestamp=1680000000 + number * 12,
    )


class FakeSource:
    """In-memory BlockSource. `failures` maps block number -> exception to raise."""

    def __init__(
        self,
        records: Optional[dict] = None,
        failures: Optional[dict] = None,
        delay: Callable[[int], float] = lambda n: 0.0,
        on_fetch: Optional[Callable[[int], None]] = None,
    ):
        self.records = records or {}
        self.failures = failures or {}
        self.delay = delay
        self.on_fetch = on_fetch
        self.calls: list[int] = []
        self.close_calls = 0

    async def fetch(self, number: int) -> BlockRecord:
        self.calls.append(number)
        if self.on_fetch:
            self.on_fetch(number)
        await asyncio.sleep(self.delay(number))
        if number in self.failures:
            raise self.failures[number]
        return self.records.get(number) or make_record(number)

    async def close(self) -> None:
        self.close_calls += 1


class FakeSink:
    """In-memory BlockSink with a unique constraint on number."""

    def __init__(self, existing=()):
        self.rows = {record.number: record for record in existing}
        self.calls: list[int] = []
        self.order: list[int] = []
        self.close_calls = 0

    async def store(self, record: BlockRecord) -> None:
        self.calls.append(record.number)
        await asyncio.sleep(0)
        if record.number in self.rows:
            raise ConstraintViolation(
                f"duplicate key value violates unique constraint (number)=({record.number})"
            )
        self.rows[record.number] = record
        self.order.append(record.number)

    async def close(self) -> None:
        self.close_calls += 1


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Unset collector env vars; anything set during the test is removed afterwards."""
    for var in ENV_VARS.values():
        monkeypatch.setenv(var, "unset")
        monkeypatch.delenv(var)


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def logs():
    with capture_logs() as captured:
        yield captured


class FakeConnection:
    """Stands in for an asyncpg connection; raises `error` on every statement when set."""

    def __init__(self, error: Optional[BaseException] = None):
        self.error = error
        self.executed: list[tuple] = []

    async def execute(self, sql: str, *args):
        if self.error is not None:
            raise self.error
        self.executed.append((sql, args))
        return "INSERT 0 1"

    async def fetchval(self, sql: str, *args):
        if self.error is not None:
            raise self.error
        return 1


class FakePool:
    def __init__(self, conn: FakeConnection):
        self.conn = conn
        self.closed = False
        self.acquired = 0

    @asynccontextmanager
    async def acquire(self):
        self.acquired += 1
        yield self.conn

    async def close(self) -> None:
        self.closed = True
