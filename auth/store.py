"""
auth/store.py -- SQLAlchemy Core persistence for principals and password history.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_principal / _row_to_history are the
mappers. Route and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are normalized (strip + lower) on every write and every lookup, so
  "Alice@Example.com" and "alice@example.com" are the same principal. The
  UNIQUE index on users.email is the final guard; create_user() lets the
  IntegrityError propagate and the caller translates it into a conflict.

  Principals are never deleted here. Account removal belongs to the
  account-management side of the application.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import PasswordHistoryEntry, Plan, Principal, Role
from auth.schema import (
    as_utc,
    configure_sqlite,
    metadata,
    password_history,
    sqlite_connect_args,
    users,
    utcnow,
)

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'resumeagent_auth.db'}"

# Columns update_user() may touch. Anything else is a programming error.
_MUTABLE_FIELDS = {
    "full_name",
    "password_hash",
    "role",
    "plan",
    "resume_generation_limit",
    "resume_generation_used",
    "email_verified",
    "is_active",
}


def normalize_email(email: str) -> str:
    """Canonical form used for storage and lookup."""
    return email.strip().lower()


class UserStore:
    """Repository for Principal and PasswordHistoryEntry entities.

    Usage:
        store = UserStore()
        uid = store.create_user(Principal(email="a@b.com", full_name="A", password_hash=hash_password("pw")))
        principal = store.get_by_email("A@B.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_engine(db_url, connect_args=sqlite_connect_args(db_url))
        if db_url.startswith("sqlite"):
            configure_sqlite(self.engine)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def create_user(self, principal: Principal) -> int:
        """Insert a new principal and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                users.insert().values(
                    email=normalize_email(principal.email),
                    full_name=principal.full_name,
                    password_hash=principal.password_hash,
                    role=Role(principal.role).value,
                    plan=Plan(principal.plan).value,
                    resume_generation_limit=principal.resume_generation_limit,
                    resume_generation_used=principal.resume_generation_used,
                    email_verified=principal.email_verified,
                    is_active=principal.is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Principal | None:
        """Look up a principal by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == normalize_email(email))).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_id(self, user_id: int) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing principal and stamp updated_at.

        Returns True if a row was updated, False if user_id was not found.
        Raises ValueError for fields outside _MUTABLE_FIELDS.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "plan" in fields:
            fields["plan"] = Plan(fields["plan"]).value
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(updated_at=utcnow(), **fields))
        return result.rowcount > 0

    def set_email_verified(self, user_id: int, verified: bool = True) -> bool:
        """Flip the verification flag. Called by the email-verification collaborator."""
        return self.update_user(user_id, email_verified=verified)

    # ------------------------------------------------------------------
    # Password history
    # ------------------------------------------------------------------

    def add_password_history(self, user_id: int, password_hash: str) -> int:
        """Append a password hash to the principal's history. Never updated or deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(
                password_history.insert().values(
                    user_id=user_id,
                    password_hash=password_hash,
                    created_at=utcnow(),
                )
            )
            return result.inserted_primary_key[0]

    def get_password_history(self, user_id: int) -> list[PasswordHistoryEntry]:
        """Return the principal's previous password hashes, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                password_history.select()
                .where(password_history.c.user_id == user_id)
                .order_by(password_history.c.created_at.desc(), password_history.c.id.desc())
            ).fetchall()
        return [_row_to_history(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        password_hash=row.password_hash,
        role=Role(row.role),
        plan=Plan(row.plan),
        resume_generation_limit=row.resume_generation_limit,
        resume_generation_used=row.resume_generation_used,
        email_verified=bool(row.email_verified),
        is_active=bool(row.is_active),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _row_to_history(row) -> PasswordHistoryEntry:
    return PasswordHistoryEntry(
        id=row.id,
        user_id=row.user_id,
        password_hash=row.password_hash,
        created_at=as_utc(row.created_at),
    )
