"""Unit tests for src/infrastructure/database/session.py."""

import asyncio
from typing import Any

import pytest
from pytest_mock import MockerFixture, MockType
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncTransaction

from src.core.exceptions import DatabaseConnectionError, TransactionError
from src.infrastructure.database.models import SettingEntry
from src.infrastructure.database.session import (
    ConnectionManager,
    create_database_engine,
)

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
def mock_engine(mocker: MockerFixture) -> MockType:
    """Patch engine creation and return the fake engine."""
    engine = mocker.MagicMock()
    engine.dialect.name = "postgresql"
    engine.dispose = mocker.AsyncMock()
    mocker.patch(
        "src.infrastructure.database.session.create_database_engine",
        return_value=engine,
    )
    return engine


def _fake_connection(mocker: MockerFixture) -> MockType:
    connection = mocker.MagicMock()
    connection.closed = False
    connection.close = mocker.AsyncMock()
    return connection


async def _count_rows(manager: ConnectionManager) -> int:
    async with manager.transaction() as conn:
        return int(await conn.scalar(text("SELECT COUNT(*) FROM items")) or 0)


@pytest.mark.unit
class TestCreateDatabaseEngine:
    """Engine construction."""

    def test_sqlite_engine_has_no_driver_timeouts(self, mocker: MockerFixture) -> None:
        """asyncpg-only connect arguments are not passed to SQLite."""
        mock_create = mocker.patch(
            "src.infrastructure.database.session.create_async_engine"
        )

        create_database_engine(SQLITE_URL)

        assert mock_create.call_args.args[0] == SQLITE_URL
        assert mock_create.call_args.kwargs["connect_args"] == {}

    def test_postgres_engine_gets_timeouts(self, mocker: MockerFixture) -> None:
        """PostgreSQL connections carry connect and command timeouts."""
        mock_create = mocker.patch(
            "src.infrastructure.database.session.create_async_engine"
        )

        create_database_engine("postgresql+asyncpg://u:p@db/tracker")

        connect_args = mock_create.call_args.kwargs["connect_args"]
        assert connect_args == {"timeout": 10.0, "command_timeout": 60.0}


@pytest.mark.unit
class TestConnectionEstablishment:
    """Lazy, shared and non-poisoning connection establishment."""

    async def test_concurrent_callers_share_one_attempt(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """Callers arriving during establishment get the same connection."""
        gate = asyncio.Event()
        connection = _fake_connection(mocker)

        async def connect() -> Any:
            await gate.wait()
            return connection

        mock_engine.connect = mocker.AsyncMock(side_effect=connect)
        manager = ConnectionManager()

        waiters = [asyncio.create_task(manager.get_connection()) for _ in range(5)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*waiters)

        assert all(result is connection for result in results)
        assert mock_engine.connect.await_count == 1
        assert manager.is_connected

    async def test_connected_manager_reuses_connection(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """Once connected, no further attempt is made."""
        mock_engine.connect = mocker.AsyncMock(return_value=_fake_connection(mocker))
        manager = ConnectionManager()

        first = await manager.get_connection()
        second = await manager.get_connection()

        assert first is second
        assert mock_engine.connect.await_count == 1

    async def test_failure_reaches_every_waiter(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """All callers waiting on a failed attempt see DatabaseConnectionError."""
        gate = asyncio.Event()

        async def connect() -> Any:
            await gate.wait()
            raise OSError("connection refused")

        mock_engine.connect = mocker.AsyncMock(side_effect=connect)
        manager = ConnectionManager()

        waiters = [asyncio.create_task(manager.get_connection()) for _ in range(3)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, DatabaseConnectionError) for r in results)
        assert isinstance(results[0].__cause__, OSError)
        mock_engine.dispose.assert_awaited_once()
        assert not manager.is_connected

    async def test_failed_attempt_is_not_cached(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """The next call after a failure makes a fresh attempt."""
        connection = _fake_connection(mocker)
        mock_engine.connect = mocker.AsyncMock(
            side_effect=[OSError("connection refused"), connection]
        )
        manager = ConnectionManager()

        with pytest.raises(DatabaseConnectionError):
            await manager.get_connection()

        assert await manager.get_connection() is connection
        assert mock_engine.connect.await_count == 2

    async def test_connect_timeout(
        self,
        mocker: MockerFixture,
        mock_engine: MockType,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """An attempt that hangs past connect_timeout fails."""
        monkeypatch.setenv("DATABASE_CONFIG__CONNECT_TIMEOUT", "0.05")

        async def connect() -> Any:
            await asyncio.sleep(10)

        mock_engine.connect = mocker.AsyncMock(side_effect=connect)
        manager = ConnectionManager()

        with pytest.raises(DatabaseConnectionError) as exc_info:
            await manager.get_connection()

        assert isinstance(exc_info.value.cause, TimeoutError)

    async def test_connect_failure_from_driver(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """Driver errors are wrapped as well."""
        mock_engine.connect = mocker.AsyncMock(
            side_effect=OperationalError("SELECT 1", {}, Exception("auth failed"))
        )

        with pytest.raises(DatabaseConnectionError, match="Could not connect"):
            await ConnectionManager().get_connection()

    async def test_unexpected_error_is_not_cached(
        self, mocker: MockerFixture
    ) -> None:
        """An error outside the wrapped kinds propagates and is forgotten too."""
        connection = _fake_connection(mocker)
        engine = mocker.MagicMock()
        engine.dialect.name = "postgresql"
        engine.connect = mocker.AsyncMock(return_value=connection)
        mocker.patch(
            "src.infrastructure.database.session.create_database_engine",
            side_effect=[ValueError("bad database url"), engine],
        )
        manager = ConnectionManager()

        with pytest.raises(ValueError, match="bad database url"):
            await manager.get_connection()

        assert await manager.get_connection() is connection


@pytest.mark.unit
class TestClose:
    """Closing the connection."""

    async def test_close_without_connection_is_noop(self) -> None:
        """Closing a manager that never connected does nothing."""
        manager = ConnectionManager(SQLITE_URL)

        await manager.close()

        assert not manager.is_connected

    async def test_close_disposes_engine(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """Closing releases the connection and the engine."""
        connection = _fake_connection(mocker)
        mock_engine.connect = mocker.AsyncMock(return_value=connection)
        manager = ConnectionManager()
        await manager.get_connection()

        await manager.close()

        connection.close.assert_awaited_once()
        mock_engine.dispose.assert_awaited_once()
        assert not manager.is_connected

    async def test_reconnects_after_close(self) -> None:
        """A closed manager connects again on demand."""
        manager = ConnectionManager(SQLITE_URL)
        first = await manager.get_connection()
        await manager.close()

        second = await manager.get_connection()

        assert second is not first
        assert manager.is_connected
        await manager.close()

    async def test_close_failure_still_clears_state(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """A failing close is reported, and the manager is disconnected anyway."""
        connection = _fake_connection(mocker)
        connection.close.side_effect = OperationalError(
            "CLOSE", {}, Exception("socket gone")
        )
        mock_engine.connect = mocker.AsyncMock(return_value=connection)
        manager = ConnectionManager()
        await manager.get_connection()

        with pytest.raises(DatabaseConnectionError, match="Failed to close"):
            await manager.close()

        assert not manager.is_connected


@pytest.mark.unit
class TestTransactions:
    """Explicit and scoped transactions on a real SQLite connection."""

    @pytest.fixture
    async def manager(
        self, sqlite_manager: ConnectionManager
    ) -> ConnectionManager:
        """Manager with an ``items`` table."""
        async with sqlite_manager.transaction() as conn:
            await conn.execute(text("CREATE TABLE items (value INTEGER)"))
        return sqlite_manager

    async def test_commit_persists(self, manager: ConnectionManager) -> None:
        """Committed changes are visible to later transactions."""
        conn = await manager.begin_transaction()
        await conn.execute(text("INSERT INTO items VALUES (1)"))
        await manager.commit()

        assert await _count_rows(manager) == 1
        assert not manager.in_transaction

    async def test_rollback_discards(self, manager: ConnectionManager) -> None:
        """Rolled back changes are gone."""
        conn = await manager.begin_transaction()
        await conn.execute(text("INSERT INTO items VALUES (1)"))
        await manager.rollback()

        assert await _count_rows(manager) == 0

    @pytest.mark.parametrize("action", ["commit", "rollback"])
    async def test_without_transaction(
        self, manager: ConnectionManager, action: str
    ) -> None:
        """Committing or rolling back with nothing open is an error."""
        with pytest.raises(TransactionError, match="no transaction in progress"):
            await getattr(manager, action)()

    async def test_scoped_transaction_rolls_back_on_error(
        self, manager: ConnectionManager
    ) -> None:
        """An error inside the block undoes its writes and propagates."""
        with pytest.raises(RuntimeError, match="boom"):
            async with manager.transaction() as conn:
                await conn.execute(text("INSERT INTO items VALUES (1)"))
                raise RuntimeError("boom")

        assert await _count_rows(manager) == 0
        assert not manager.in_transaction

    async def test_failed_rollback_keeps_original_error(
        self, manager: ConnectionManager, mocker: MockerFixture
    ) -> None:
        """The original error wins; the rollback failure is noted on it."""
        mocker.patch.object(
            manager, "rollback", side_effect=TransactionError("rollback broke")
        )

        with pytest.raises(RuntimeError, match="boom") as exc_info:
            async with manager.transaction():
                raise RuntimeError("boom")

        assert any("rollback broke" in note for note in exc_info.value.__notes__)

    async def test_transactions_do_not_interleave(
        self, manager: ConnectionManager
    ) -> None:
        """A second transaction waits until the first one ends."""
        await manager.begin_transaction()
        second = asyncio.create_task(manager.begin_transaction())
        for _ in range(5):
            await asyncio.sleep(0)

        assert not second.done()

        await manager.commit()
        await second

        assert manager.in_transaction
        await manager.rollback()

    async def test_session_flushes_into_transaction(
        self, manager: ConnectionManager
    ) -> None:
        """ORM changes made in a session are committed with its transaction."""
        await manager.ensure_schema(SettingEntry.__table__)

        async with manager.session() as session:
            session.add(SettingEntry(key="counter", value=5))

        async with manager.session() as session:
            entry = await session.get(SettingEntry, "counter")

        assert entry is not None
        assert entry.value == 5

    async def test_session_rolls_back_on_error(
        self, manager: ConnectionManager
    ) -> None:
        """Nothing from a failed session block is persisted."""
        await manager.ensure_schema(SettingEntry.__table__)

        with pytest.raises(ValueError, match="abort"):
            async with manager.session() as session:
                session.add(SettingEntry(key="counter", value=5))
                await session.flush()
                raise ValueError("abort")

        async with manager.session() as session:
            assert await session.get(SettingEntry, "counter") is None

    async def test_failed_begin_releases_lock(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """A transaction that cannot start leaves nothing held."""
        connection = _fake_connection(mocker)
        connection.in_transaction = mocker.Mock(return_value=False)
        connection.begin = mocker.AsyncMock(
            side_effect=[
                OperationalError("BEGIN", {}, Exception("database is locked")),
                mocker.MagicMock(),
            ]
        )
        mock_engine.connect = mocker.AsyncMock(return_value=connection)
        manager = ConnectionManager()

        with pytest.raises(TransactionError, match="Failed to begin"):
            await manager.begin_transaction()

        assert not manager.in_transaction
        await asyncio.wait_for(manager.begin_transaction(), timeout=1)
        assert manager.in_transaction

    async def test_failed_commit_is_rolled_back(
        self, manager: ConnectionManager, mocker: MockerFixture
    ) -> None:
        """A commit error leaves no open transaction and no written rows."""
        mocker.patch.object(
            AsyncTransaction,
            "commit",
            side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")),
        )

        with pytest.raises(TransactionError, match="Failed to commit"):
            async with manager.transaction() as conn:
                await conn.execute(text("INSERT INTO items VALUES (1)"))
        mocker.stopall()

        connection = await manager.get_connection()
        assert not connection.in_transaction()
        assert not manager.in_transaction
        assert await _count_rows(manager) == 0

    async def test_close_leaves_transaction_with_its_owner(
        self, manager: ConnectionManager
    ) -> None:
        """Closing mid-transaction does not hand the lock to a waiting caller."""
        await manager.begin_transaction()
        waiting = asyncio.create_task(manager.begin_transaction())
        await asyncio.sleep(0)

        await manager.close()
        for _ in range(5):
            await asyncio.sleep(0)

        assert not waiting.done()

        with pytest.raises(TransactionError, match="Failed to commit"):
            await manager.commit()
        await waiting

        assert manager.in_transaction
        await manager.rollback()


@pytest.mark.unit
class TestHealthCheck:
    """check_connection()."""

    async def test_healthy(self, sqlite_manager: ConnectionManager) -> None:
        """A reachable database reports healthy."""
        assert await sqlite_manager.check_connection() == (True, None)

    async def test_unreachable(
        self, mocker: MockerFixture, mock_engine: MockType
    ) -> None:
        """An unreachable database reports the error instead of raising."""
        mock_engine.connect = mocker.AsyncMock(side_effect=OSError("refused"))

        is_healthy, error = await ConnectionManager().check_connection()

        assert is_healthy is False
        assert error is not None
        assert "Could not connect" in error
