"""Declarative base shared by all tables.

``BigInteger`` ids become ``INTEGER`` on SQLite, where only an
``INTEGER PRIMARY KEY`` column autoincrements.
"""

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, MetaData, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.infrastructure.constants import NAMING_CONVENTION

ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
    type_annotation_map = {datetime: DateTime(timezone=True)}


class BaseModel(Base):
    """Abstract table with a surrogate id and server-side UTC timestamps."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id}>"
