import asyncpg
import pytest

from block_collector.errors import (
    ConstraintViolation,
    PermanentBackendError,
    SinkUnreachable,
    TransientBackendError,
)
from block_collector.store import BlockStore

from conftest import FakeConnection, FakePool, make_record


async def test_store_inserts_one_row():
    conn = FakeConnection()
    store = BlockStore(FakePool(conn))

    await store.store(make_record(42))

    assert conn.executed == [
        (
            'INSERT INTO blocks ("number", "hash", "timestamp") VALUES ($1, $2, $3)',
            (42, f"0x{42:064x}", 1680000000 + 42 * 12),
        )
    ]


async def test_custom_table_name():
    conn = FakeConnection()
    store = BlockStore(FakePool(conn), table="chain.blocks")

    await store.store(make_record(1))

    assert conn.executed[0][0].startswith("INSERT INTO chain.blocks ")


@pytest.mark.parametrize("table", ["blocks; drop table x", "1blocks", "", "a.b.c"])
def test_rejects_unsafe_table_name(table):
    with pytest.raises(ValueError):
        BlockStore(FakePool(FakeConnection()), table=table)


@pytest.mark.parametrize(
    "error,expected",
    [
        (asyncpg.UniqueViolationError("duplicate key value"), ConstraintViolation),
        (asyncpg.exceptions.NotNullViolationError("null value"), ConstraintViolation),
        (asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed"), TransientBackendError),
        (asyncpg.exceptions.DeadlockDetectedError("deadlock detected"), TransientBackendError),
        (ConnectionResetError("reset by peer"), TransientBackendError),
        (asyncpg.exceptions.UndefinedTableError('relation "blocks" does not exist'), PermanentBackendError),
    ],
)
async def test_store_maps_driver_errors(error, expected):
    store = BlockStore(FakePool(FakeConnection(error=error)))

    with pytest.raises(expected) as excinfo:
        await store.store(make_record(1))

    assert excinfo.value.__cause__ is error


async def test_ensure_schema():
    conn = FakeConnection()
    store = BlockStore(FakePool(conn))

    await store.ensure_schema()

    ddl = conn.executed[0][0]
    assert "CREATE TABLE IF NOT EXISTS blocks" in ddl
    assert '"number" BIGINT PRIMARY KEY' in ddl
    assert '"hash" CHAR(66)' in ddl


async def test_close_is_idempotent():
    pool = FakePool(FakeConnection())
    store = BlockStore(pool)

    await store.close()
    await store.close()

    assert pool.closed
    assert store.closed
    with pytest.raises(TransientBackendError):
        await store.store(make_record(1))


async def test_connect_success(monkeypatch):
    pool = FakePool(FakeConnection())
    seen = {}

    async def create_pool(**kwargs):
        seen.update(kwargs)
        return pool

    monkeypatch.setattr(asyncpg, "create_pool", create_pool)

    store = await BlockStore.connect("postgresql://localhost/blocks", min_size=2, max_size=5)

    assert seen["dsn"] == "postgresql://localhost/blocks"
    assert (seen["min_size"], seen["max_size"]) == (2, 5)
    assert pool.acquired == 1
    assert not store.closed


async def test_connect_refused(monkeypatch):
    async def create_pool(**kwargs):
        raise ConnectionRefusedError("connection refused")

    monkeypatch.setattr(asyncpg, "create_pool", create_pool)

    with pytest.raises(SinkUnreachable):
        await BlockStore.connect("postgresql://localhost/blocks")


async def test_connect_ping_failure_closes_pool(monkeypatch):
    pool = FakePool(FakeConnection(error=asyncpg.exceptions.InvalidPasswordError("bad password")))

    async def create_pool(**kwargs):
        return pool

    monkeypatch.setattr(asyncpg, "create_pool", create_pool)

    with pytest.raises(SinkUnreachable):
        await BlockStore.connect("postgresql://localhost/blocks")

    assert pool.closed
