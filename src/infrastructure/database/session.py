"""Single-connection persistence manager with explicit transaction boundaries.

The application talks to its database through exactly one ``AsyncConnection``
owned by a ``ConnectionManager``:

- **Shared establishment**: callers arriving while the connection is being
  opened await the same pending attempt; no duplicate connections are made.
- **No poisoned state**: a failed attempt is reported to every waiter as
  ``DatabaseConnectionError`` and forgotten, so the next call starts afresh.
  The manager itself never retries.
- **One transaction at a time**: ``begin_transaction()`` takes an
  ``asyncio.Lock`` that ``commit()`` / ``rollback()`` release, so logical
  operations never interleave on the shared connection.
- **Scoped helpers**: ``transaction()`` and ``session()`` commit on success
  and roll back on any error, re-raising the original error even when the
  rollback fails too.

Engines use ``NullPool``; pooling would only hide the single connection the
manager already holds.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger
from sqlalchemy import Table, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    AsyncTransaction,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.core.config import get_settings
from src.core.exceptions import (
    DatabaseConnectionError,
    TaskTrackerError,
    TransactionError,
)
from src.infrastructure.database.base import Base


def create_database_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async SQLAlchemy engine without connection pooling.

    Args:
        database_url: Optional database URL. If not provided, uses the
                     configured database URL from settings.

    Returns:
        AsyncEngine: Configured async engine instance.
    """
    db_config = get_settings().database_config
    url = database_url or db_config.database_url

    connect_args: dict[str, Any] = {}
    if url.startswith("postgresql+asyncpg://"):
        connect_args = {
            "timeout": db_config.connect_timeout,
            "command_timeout": db_config.command_timeout,
        }

    engine = create_async_engine(
        url,
        poolclass=NullPool,
        echo=db_config.echo,
        connect_args=connect_args,
    )
    logger.info("Created database engine for {} backend", engine.dialect.name)
    return engine


class ConnectionManager:
    """Owns the single persistence connection and its transactions.

    Args:
        database_url: Database URL; defaults to ``database_config.database_url``.

    Example:
        manager = ConnectionManager("sqlite+aiosqlite:///:memory:")
        async with manager.transaction() as conn:
            await conn.execute(text("SELECT 1"))
        await manager.close()
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url
        self._engine: AsyncEngine | None = None
        self._connection: AsyncConnection | None = None
        self._pending: asyncio.Future[AsyncConnection] | None = None
        self._transaction: AsyncTransaction | None = None
        self._transaction_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether a live connection is currently held."""
        return self._connection is not None and not self._connection.closed

    @property
    def in_transaction(self) -> bool:
        """Whether a transaction opened by ``begin_transaction()`` is active."""
        return self._transaction is not None

    async def get_connection(self) -> AsyncConnection:
        """Return the live connection, establishing it on first use.

        Returns:
            AsyncConnection: The connection shared by all operations.

        Raises:
            DatabaseConnectionError: If the connection cannot be established.
        """
        if self._connection is not None and not self._connection.closed:
            return self._connection

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._establish())

        # Shielded so a cancelled waiter does not abort the attempt for the others
        return await asyncio.shield(self._pending)

    async def _establish(self) -> AsyncConnection:
        timeout = get_settings().database_config.connect_timeout
        engine: AsyncEngine | None = None
        try:
            engine = create_database_engine(self._database_url)
            async with asyncio.timeout(timeout):
                connection = await engine.connect()
        except BaseException as e:
            if engine is not None:
                await engine.dispose()
            logger.error("Database connection failed: {}: {}", type(e).__name__, e)
            if isinstance(e, SQLAlchemyError | OSError | TimeoutError):
                raise DatabaseConnectionError(
                    "Could not connect to the database", cause=e
                ) from e
            raise
        finally:
            # Forget the attempt however it ended; the next caller starts afresh
            self._pending = None

        self._engine = engine
        self._connection = connection
        logger.info("Database connection established", backend=engine.dialect.name)
        return connection

    async def close(self) -> None:
        """Close the connection and dispose of the engine.

        Does nothing when no connection is held. State is cleared even if
        closing fails. A transaction that is still open is rolled back by the
        close but stays owned by whoever began it: its ``commit()`` fails and
        other transactions keep waiting until it is finalized.

        Raises:
            DatabaseConnectionError: If closing the connection fails.
        """
        connection, engine = self._connection, self._engine
        if connection is None:
            return

        try:
            await connection.close()
            if engine is not None:
                await engine.dispose()
        except SQLAlchemyError as e:
            logger.error("Failed to close database connection: {}", e)
            raise DatabaseConnectionError(
                "Failed to close the database connection", cause=e
            ) from e
        finally:
            self._connection = None
            self._engine = None

        logger.info("Database connection closed")

    async def begin_transaction(self) -> AsyncConnection:
        """Begin a transaction, waiting for any other transaction to finish.

        Every successful call must be paired with ``commit()`` or ``rollback()``.

        Returns:
            AsyncConnection: The connection the transaction runs on.

        Raises:
            DatabaseConnectionError: If the connection cannot be established.
            TransactionError: If the transaction cannot be started.
        """
        await self._transaction_lock.acquire()
        try:
            connection = await self.get_connection()
            # Clear a transaction left behind by a failed commit or an autobegin
            if connection.in_transaction():
                await connection.rollback()
            self._transaction = await connection.begin()
        except SQLAlchemyError as e:
            self._transaction_lock.release()
            raise TransactionError("Failed to begin transaction", cause=e) from e
        except BaseException:
            self._transaction_lock.release()
            raise

        logger.debug("Transaction started")
        return connection

    async def commit(self) -> None:
        """Commit the active transaction.

        A failed commit is rolled back before the error is raised, so the
        connection is clean for the next transaction.

        Raises:
            TransactionError: If there is no active transaction or the commit fails.
        """
        transaction = self._take_transaction("commit")
        try:
            await transaction.commit()
        except SQLAlchemyError as e:
            error = TransactionError("Failed to commit transaction", cause=e)
            await self._discard_failed_commit(transaction.connection, error)
            raise error from e
        finally:
            self._transaction_lock.release()
        logger.debug("Transaction committed")

    async def _discard_failed_commit(
        self, connection: AsyncConnection, error: TransactionError
    ) -> None:
        # Nothing to undo when the connection was closed underneath the transaction
        if connection.closed or not connection.in_transaction():
            return
        try:
            await connection.rollback()
        except SQLAlchemyError as rollback_error:
            logger.error("Rollback after failed commit failed: {}", rollback_error)
            error.add_note(f"Rollback also failed: {rollback_error}")

    async def rollback(self) -> None:
        """Roll back the active transaction.

        Raises:
            TransactionError: If there is no active transaction or the rollback fails.
        """
        transaction = self._take_transaction("rollback")
        try:
            await transaction.rollback()
        except SQLAlchemyError as e:
            raise TransactionError("Failed to roll back transaction", cause=e) from e
        finally:
            self._transaction_lock.release()
        logger.debug("Transaction rolled back")

    def _take_transaction(self, action: str) -> AsyncTransaction:
        if self._transaction is None:
            raise TransactionError(
                f"Cannot {action}: no transaction in progress",
                context={"action": action},
            )
        transaction, self._transaction = self._transaction, None
        return transaction

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncConnection]:
        """Run the enclosed block in a transaction.

        Commits on normal exit. On any error the transaction is rolled back
        and the original error re-raised; a failing rollback is logged and
        noted on that error instead of replacing it.

        Yields:
            AsyncGenerator[AsyncConnection]: The connection to execute statements on.
        """
        connection = await self.begin_transaction()
        try:
            yield connection
        except BaseException as exc:
            try:
                await self.rollback()
            except TransactionError as rollback_error:
                logger.error(
                    "Rollback failed after {}: {}",
                    type(exc).__name__,
                    rollback_error,
                )
                exc.add_note(f"Rollback also failed: {rollback_error}")
            raise
        await self.commit()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Provide an ORM session bound to a managed transaction.

        Pending changes are flushed before the transaction commits; the
        session itself never commits.

        Yields:
            AsyncGenerator[AsyncSession]: Session joined to the transaction.

        Example:
            async with manager.session() as session:
                session.add(record)
        """
        async with self.transaction() as connection:
            session = AsyncSession(
                bind=connection,
                expire_on_commit=False,
                join_transaction_mode="rollback_only",
            )
            try:
                yield session
                await session.flush()
            finally:
                await session.close()

    async def ensure_schema(self, *tables: Table) -> None:
        """Create the given tables (all mapped tables if none) when missing."""
        async with self.transaction() as connection:
            await connection.run_sync(
                Base.metadata.create_all,
                tables=list(tables) or None,
                checkfirst=True,
            )

    async def check_connection(self) -> tuple[bool, str | None]:
        """Check that the database answers a trivial query.

        Returns:
            tuple[bool, str | None]: Success flag and the error message on failure.

        Example:
            is_healthy, error = await manager.check_connection()
        """
        try:
            async with self.transaction() as connection:
                await connection.execute(text("SELECT 1"))
        except (TaskTrackerError, SQLAlchemyError) as e:
            return False, str(e)
        return True, None
