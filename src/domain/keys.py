"""Human-readable entity keys such as ``PROJ-42``.

All prefixes share one persisted counter, so the numeric part is unique
across every entity type. Each allocation is a single read-modify-write
transaction:

1. make sure the ``settings`` table and the counter row exist
2. ``SELECT ... FOR UPDATE`` the counter (absent reads as 0)
3. write ``current + 1`` in the same transaction and commit

The row lock serializes allocations across processes on PostgreSQL. Inside a
process the ``ConnectionManager`` transaction lock already admits one
transaction at a time, which is also what keeps SQLite correct. A failed
allocation rolls back and leaves the counter untouched.
"""

from collections.abc import Callable
from typing import Any, Final

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection

from src.core.config import get_settings
from src.core.exceptions import ValidationError
from src.core.observability import trace_operation
from src.infrastructure.database.models import SettingEntry
from src.infrastructure.database.session import ConnectionManager

ISSUE_TYPE_PREFIXES: Final[dict[str, str]] = {
    "Task": "TASK",
    "Story": "STOR",
    "Epic": "EPIC",
    "Bug": "BUG",
    "Subtask": "SUBT",
}

_settings_table = SettingEntry.__table__

# Dialect specific INSERT constructs that support ON CONFLICT DO NOTHING
_INSERT_BY_DIALECT: Final[dict[str, Callable[..., Any]]] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def normalize_prefix(prefix: str) -> str:
    """Validate a key prefix and return it upper-cased.

    Raises:
        ValidationError: If the prefix is empty or not purely letters and digits.
    """
    if not isinstance(prefix, str) or not prefix.isascii() or not prefix.isalnum():
        raise ValidationError(
            "Key prefix must be a non-empty string of letters and digits",
            context={"prefix": prefix},
        )
    return prefix.upper()


def prefix_for_issue_type(issue_type: str) -> str:
    """Return the key prefix used for an issue type.

    Raises:
        ValidationError: If the issue type is unknown.
    """
    try:
        return ISSUE_TYPE_PREFIXES[issue_type]
    except KeyError:
        raise ValidationError(
            f"Unknown issue type: {issue_type}",
            context={
                "issue_type": issue_type,
                "allowed": sorted(ISSUE_TYPE_PREFIXES),
            },
        ) from None


class KeyAllocator:
    """Allocates ``{PREFIX}-{n}`` keys from a persisted counter.

    Args:
        connections: Connection manager providing transactions.
        counter_name: Key of the counter row; defaults to ``key_config.counter_name``.
    """

    def __init__(
        self, connections: ConnectionManager, counter_name: str | None = None
    ) -> None:
        self._connections = connections
        self._counter_name = counter_name or get_settings().key_config.counter_name
        self._schema_ready = False

    @property
    def counter_name(self) -> str:
        """Name of the counter row in the settings table."""
        return self._counter_name

    async def allocate(self, prefix: str) -> str:
        """Reserve the next counter value and format it as a key.

        Args:
            prefix: Entity-type prefix, letters and digits only.

        Returns:
            str: The key, e.g. ``"EPIC-1"``.

        Raises:
            ValidationError: If the prefix is invalid.
            DatabaseConnectionError: If the database is unreachable.
            TransactionError: If the transaction cannot be started or committed.
        """
        normalized = normalize_prefix(prefix)

        with trace_operation("keys.allocate", prefix=normalized):
            await self._ensure_counter()
            async with self._connections.transaction() as connection:
                current = await self._read_counter(connection, for_update=True)
                next_value = current + 1
                await self._write_counter(connection, next_value, exists=current > 0)

        key = f"{normalized}-{next_value}"
        logger.info("Allocated key {}", key, key=key, prefix=normalized)
        return key

    async def allocate_for_issue_type(self, issue_type: str) -> str:
        """Allocate a key using the prefix registered for ``issue_type``."""
        return await self.allocate(prefix_for_issue_type(issue_type))

    async def current_value(self) -> int:
        """Return the last allocated counter value (0 if nothing was allocated)."""
        await self._ensure_counter()
        async with self._connections.transaction() as connection:
            return await self._read_counter(connection)

    async def _ensure_counter(self) -> None:
        if self._schema_ready:
            return

        async with self._connections.transaction() as connection:
            await connection.run_sync(_settings_table.create, checkfirst=True)
            insert = _INSERT_BY_DIALECT[connection.dialect.name]
            await connection.execute(
                insert(_settings_table)
                .values(key=self._counter_name, value=0)
                .on_conflict_do_nothing(index_elements=[_settings_table.c.key])
            )

        self._schema_ready = True
        logger.debug("Key counter ready", counter=self._counter_name)

    async def _read_counter(
        self, connection: AsyncConnection, *, for_update: bool = False
    ) -> int:
        stmt = select(_settings_table.c.value).where(
            _settings_table.c.key == self._counter_name
        )
        if for_update:
            stmt = stmt.with_for_update()
        value = await connection.scalar(stmt)
        return value or 0

    async def _write_counter(
        self, connection: AsyncConnection, value: int, *, exists: bool
    ) -> None:
        if exists:
            await connection.execute(
                update(_settings_table)
                .where(_settings_table.c.key == self._counter_name)
                .values(value=value)
            )
            return

        # The row may be missing or still hold the seeded 0
        insert = _INSERT_BY_DIALECT[connection.dialect.name]
        await connection.execute(
            insert(_settings_table)
            .values(key=self._counter_name, value=value)
            .on_conflict_do_update(
                index_elements=[_settings_table.c.key],
                set_={"value": value},
            )
        )
