"""Table mappings for the persisted counter and webhook subscriptions."""

from sqlalchemy import JSON, BigInteger, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.constants import SETTINGS_TABLE, WEBHOOK_SUBSCRIPTIONS_TABLE
from src.infrastructure.database.base import Base, BaseModel


class SettingEntry(Base):
    """Named integer setting; the key allocator stores its counter here."""

    __tablename__ = SETTINGS_TABLE

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        """Return the setting key and value."""
        return f"<SettingEntry(key={self.key!r}, value={self.value})>"


class WebhookSubscriptionRecord(BaseModel):
    """Persisted webhook subscription."""

    __tablename__ = WEBHOOK_SUBSCRIPTIONS_TABLE

    url: Mapped[str] = mapped_column(Text, nullable=False)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    secret: Mapped[str | None] = mapped_column(Text, nullable=True)
