"""Database access: one managed connection, explicit transactions, repositories.

Core components:
- **session**: ``ConnectionManager`` and engine creation
- **base**: Declarative base and common model fields
- **models**: ``settings`` and ``webhook_subscriptions`` tables
- **repository**: Generic repository with CRUD operations

PostgreSQL (asyncpg) is the production backend; SQLite (aiosqlite) serves
local runs and tests.
"""

from src.infrastructure.database.base import Base, BaseModel
from src.infrastructure.database.models import SettingEntry, WebhookSubscriptionRecord
from src.infrastructure.database.repository import BaseRepository
from src.infrastructure.database.session import (
    ConnectionManager,
    create_database_engine,
)

__all__ = [
    "Base",
    "BaseModel",
    "BaseRepository",
    "ConnectionManager",
    "SettingEntry",
    "WebhookSubscriptionRecord",
    "create_database_engine",
]
