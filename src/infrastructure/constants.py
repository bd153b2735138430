"""Infrastructure-related constants, particularly for the database."""

# Table holding named integer settings such as the issue key counter
SETTINGS_TABLE = "settings"
WEBHOOK_SUBSCRIPTIONS_TABLE = "webhook_subscriptions"

# Keeps constraint names stable across PostgreSQL and SQLite
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
