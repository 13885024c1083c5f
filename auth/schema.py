"""
auth/schema.py -- SQLAlchemy Core table definitions shared by the auth stores.

UserStore (auth/store.py) owns users and password_history; SessionStore
(auth/sessions.py) owns refresh_tokens. Both call metadata.create_all() on
their engine, which is idempotent.

Timestamps use DateTime(timezone=True). On SQLite the value is stored as a
fixed-width text column, so every bound datetime must already be UTC for
range comparisons (expires_at > :now) to be correct. The stores guarantee that.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    event,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(150), nullable=False, unique=True),  # normalized lower-case
    Column("full_name", String(150), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default="USER"),
    Column("plan", String(20), nullable=False, server_default="FREE"),
    Column("resume_generation_limit", Integer, nullable=False, server_default="5"),
    Column("resume_generation_used", Integer, nullable=False, server_default="0"),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

password_history = Table(
    "password_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("idx_password_history_user_id", "user_id"),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default="0"),
    Column("revoked_at", DateTime(timezone=True)),
    Column("last_used_at", DateTime(timezone=True)),
    Column("replaced_by_id", Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL")),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("idx_refresh_tokens_user_id", "user_id"),
    Index("idx_refresh_tokens_expires_at", "expires_at"),
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return value as an aware UTC datetime. SQLite hands back naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed while a writer holds the lock. Set per-connection
    because SQLite PRAGMAs are not inherited by new pooled connections.
    In-memory databases silently keep their own journal mode.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def configure_sqlite(engine) -> None:
    """Attach the WAL listener to a SQLite engine."""
    event.listen(engine, "connect", _set_wal_mode)


def sqlite_connect_args(db_url: str) -> dict:
    """Connection args needed for SQLite under a threaded ASGI server."""
    if db_url.startswith("sqlite"):
        # TestClient and uvicorn run sync routes in a worker thread pool.
        return {"check_same_thread": False}
    return {}
