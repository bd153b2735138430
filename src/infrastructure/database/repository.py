"""Generic async repository over an ``AsyncSession``.

Repositories flush but never commit: the surrounding
``ConnectionManager.session()`` block owns the transaction, so a failure
anywhere in that block discards every change made through them.
"""

from collections.abc import Mapping
from typing import ClassVar

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database.base import BaseModel


class BaseRepository[T: BaseModel]:
    """CRUD by primary key for one mapped class.

    Subclasses name the class they manage::

        class SubscriptionRepository(BaseRepository[WebhookSubscriptionRecord]):
            model = WebhookSubscriptionRecord
    """

    model: ClassVar[type[BaseModel]]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @property
    def _name(self) -> str:
        return self.model.__name__

    async def get_by_id(self, entity_id: int) -> T | None:
        result = await self.session.execute(
            select(self.model).where(self.model.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_all(self, offset: int = 0, limit: int | None = None) -> list[T]:
        """Return rows in insertion (id) order; ``limit=None`` returns all."""
        stmt = select(self.model).order_by(self.model.id).offset(offset).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def create(self, obj: T) -> T:
        """Insert ``obj`` and load its generated id and timestamps."""
        self.session.add(obj)
        await self.session.flush()
        await self.session.refresh(obj)
        logger.debug("Inserted {} {}", self._name, obj.id)
        return obj

    async def update(self, entity_id: int, changes: Mapping[str, object]) -> T | None:
        """Set the given attributes on one row.

        Returns:
            T | None: The refreshed row, or None if ``entity_id`` does not exist.

        Raises:
            AttributeError: If a key in ``changes`` is not a mapped attribute.
        """
        instance = await self.get_by_id(entity_id)
        if instance is None:
            return None

        unknown = [key for key in changes if not hasattr(type(instance), key)]
        if unknown:
            raise AttributeError(f"{self._name} has no attributes {unknown}")
        for key, value in changes.items():
            setattr(instance, key, value)

        await self.session.flush()
        await self.session.refresh(instance)
        logger.debug("Updated {} {}: {}", self._name, entity_id, sorted(changes))
        return instance

    async def delete(self, entity_id: int) -> bool:
        """Delete one row; False when nothing matched."""
        result = await self.session.execute(
            delete(self.model).where(self.model.id == entity_id)
        )
        return result.rowcount > 0
