"""
auth/sessions.py -- Durable store of issued refresh tokens.

Pattern: Repository + Data Mapper (same shape as auth/store.py).

Each refresh token the service hands out has exactly one row here, keyed by
SHA-256(token). The plaintext is never stored and never logged; the hash is
deterministic so lookup is a single indexed equality match. SHA-256 rather
than bcrypt because refresh tokens are long, high-entropy signed strings --
the slow-hash protection bcrypt gives low-entropy passwords is unnecessary.

Record states:
  active    revoked = false AND expires_at > now
  terminal  revoked = true OR expires_at <= now
Nothing ever moves a record from terminal back to active.

Rotation [R1]:
  rotate() runs in one transaction whose first statement is
      UPDATE refresh_tokens SET revoked = true ... WHERE id = :old AND revoked = false AND expires_at > :now
  The row count of that conditional update is the gate. Two concurrent
  rotations of the same record both issue the UPDATE; the database
  serializes them and only the first sees revoked = false. The loser gets
  rowcount 0 and rotate() returns None without creating a child.

Reuse detection [R2]:
  A rotated record (revoked, replaced_by_id set) whose token is presented
  again before it expires means two parties hold the same refresh token.
  validate() treats that as theft: it revokes every record reachable through
  replaced_by_id from the replayed one and, when revoke_all_on_reuse is set,
  every active session of the principal. The caller still only sees "invalid".

Expiry sweep:
  purge_expired() deletes rows whose expires_at is in the past. Revoked rows
  that have not yet expired are kept so that a replay of them is still
  detected under [R2].

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.engine import Engine

from auth.models import ClientContext, RefreshTokenRecord
from auth.schema import (
    as_utc,
    configure_sqlite,
    metadata,
    refresh_tokens,
    sqlite_connect_args,
    utcnow,
)

logger = logging.getLogger("resumeagent.auth.sessions")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'resumeagent_auth.db'}"

_USER_AGENT_MAX = 512


def hash_token(token: str) -> str:
    """Return the SHA-256 hex digest used as the lookup key for a refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _active_clause(now: datetime):
    return refresh_tokens.c.revoked.is_(False) & (refresh_tokens.c.expires_at > now)


class SessionStore:
    """Repository for RefreshTokenRecord entities.

    Usage:
        sessions = SessionStore(db_url)
        record = sessions.create(user_id, refresh_token, expires_at, ClientContext(ip_address="10.0.0.1"))
        current = sessions.validate(refresh_token)       # record or None
        child = sessions.rotate(current, new_token, new_expires_at, context)  # record or None
        sessions.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, revoke_all_on_reuse: bool = True) -> None:
        self.engine: Engine = create_engine(db_url, connect_args=sqlite_connect_args(db_url))
        if db_url.startswith("sqlite"):
            configure_sqlite(self.engine)
        metadata.create_all(self.engine)
        self.revoke_all_on_reuse = revoke_all_on_reuse

    # ------------------------------------------------------------------
    # Create / lookup
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: int,
        refresh_token: str,
        expires_at: datetime,
        context: ClientContext | None = None,
    ) -> RefreshTokenRecord:
        """Persist a new active record for refresh_token.

        expires_at must be the token's own exp instant so the record and the
        signed token expire together.
        """
        with self.engine.begin() as conn:
            record_id = self._insert(conn, user_id, refresh_token, expires_at, context)
        logger.info("Refresh session %d created for user %d", record_id, user_id)
        return self.get(record_id)

    def _insert(self, conn, user_id, refresh_token, expires_at, context) -> int:
        context = context or ClientContext()
        user_agent = context.user_agent[:_USER_AGENT_MAX] if context.user_agent else None
        result = conn.execute(
            refresh_tokens.insert().values(
                user_id=user_id,
                token_hash=hash_token(refresh_token),
                expires_at=as_utc(expires_at),
                revoked=False,
                ip_address=context.ip_address,
                user_agent=user_agent,
                created_at=utcnow(),
            )
        )
        return result.inserted_primary_key[0]

    def get(self, record_id: int) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.id == record_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def find(self, refresh_token: str) -> RefreshTokenRecord | None:
        """Return the record for refresh_token regardless of state."""
        with self.engine.connect() as conn:
            row = conn.execute(
                refresh_tokens.select().where(refresh_tokens.c.token_hash == hash_token(refresh_token))
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def validate(self, refresh_token: str, now: datetime | None = None) -> RefreshTokenRecord | None:
        """Return the active record for refresh_token, or None.

        Not found, revoked and expired all return None so callers cannot tell
        them apart. A replayed rotated token additionally triggers [R2].
        """
        now = now or utcnow()
        record = self.find(refresh_token)
        if record is None:
            logger.warning("Refresh token rejected: no matching session")
            return None
        if record.revoked:
            if record.replaced_by_id is not None and not record.is_expired(now):
                self._handle_reuse(record)
            else:
                logger.warning("Refresh token rejected: session %d is revoked", record.id)
            return None
        if record.is_expired(now):
            logger.warning("Refresh token rejected: session %d expired", record.id)
            return None
        return record

    def _handle_reuse(self, record: RefreshTokenRecord) -> None:
        chain = self.revoke_chain(record.id)
        logger.warning(
            "Refresh token reuse detected: session %d (user %d) was already rotated; revoked %d chained session(s)",
            record.id,
            record.user_id,
            chain,
        )
        if self.revoke_all_on_reuse:
            revoked = self.revoke_all(record.user_id)
            logger.warning("Revoked %d remaining session(s) for user %d after token reuse", revoked, record.user_id)

    # ------------------------------------------------------------------
    # Rotation [R1]
    # ------------------------------------------------------------------

    def rotate(
        self,
        old: RefreshTokenRecord,
        new_refresh_token: str,
        expires_at: datetime,
        context: ClientContext | None = None,
    ) -> RefreshTokenRecord | None:
        """Atomically retire old and persist the record for new_refresh_token.

        Returns the new record, or None if old was no longer active when the
        conditional update ran (already rotated, revoked or expired).
        """
        now = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.id == old.id) & _active_clause(now))
                .values(revoked=True, revoked_at=now, last_used_at=now)
            )
            if result.rowcount != 1:
                logger.warning("Rotation of session %d refused: no longer active", old.id)
                return None
            new_id = self._insert(conn, old.user_id, new_refresh_token, expires_at, context)
            conn.execute(refresh_tokens.update().where(refresh_tokens.c.id == old.id).values(replaced_by_id=new_id))
        logger.info("Refresh session %d rotated to %d for user %d", old.id, new_id, old.user_id)
        return self.get(new_id)

    # ------------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------------

    def revoke(self, record_id: int) -> bool:
        """Flip one active record to revoked. Returns False if it was already terminal."""
        now = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.id == record_id) & refresh_tokens.c.revoked.is_(False))
                .values(revoked=True, revoked_at=now)
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Revoke every non-revoked record of a principal. Returns the number revoked."""
        now = utcnow()
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.user_id == user_id) & refresh_tokens.c.revoked.is_(False))
                .values(revoked=True, revoked_at=now)
            )
        if result.rowcount:
            logger.info("Revoked %d session(s) for user %d", result.rowcount, user_id)
        return result.rowcount

    def revoke_chain(self, record_id: int) -> int:
        """Revoke every record reachable from record_id through replaced_by_id.

        record_id itself is not counted. Returns the number newly revoked.
        """
        revoked = 0
        seen: set[int] = {record_id}
        current = self.get(record_id)
        while current is not None and current.replaced_by_id is not None:
            next_id = current.replaced_by_id
            if next_id in seen:
                break
            seen.add(next_id)
            if self.revoke(next_id):
                revoked += 1
            current = self.get(next_id)
        return revoked

    # ------------------------------------------------------------------
    # Visibility and limits
    # ------------------------------------------------------------------

    def count_active(self, user_id: int, now: datetime | None = None) -> int:
        now = now or utcnow()
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(refresh_tokens)
                .where((refresh_tokens.c.user_id == user_id) & _active_clause(now))
            ).scalar()
        return result or 0

    def list_active(self, user_id: int, now: datetime | None = None) -> list[RefreshTokenRecord]:
        """Return the principal's active sessions, newest first."""
        now = now or utcnow()
        with self.engine.connect() as conn:
            rows = conn.execute(
                refresh_tokens.select()
                .where((refresh_tokens.c.user_id == user_id) & _active_clause(now))
                .order_by(refresh_tokens.c.created_at.desc(), refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def enforce_limit(self, user_id: int, limit: int) -> int:
        """Revoke the oldest active sessions beyond limit. limit <= 0 means no cap."""
        if limit <= 0:
            return 0
        excess = self.list_active(user_id)[limit:]
        revoked = sum(1 for record in excess if self.revoke(record.id))
        if revoked:
            logger.info("Session cap %d reached for user %d; revoked %d oldest", limit, user_id, revoked)
        return revoked

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete records whose expiry is in the past. Returns number of rows removed.

        Active records are never touched: an active record has expires_at > now.
        """
        now = now or utcnow()
        with self.engine.begin() as conn:
            # Detach survivors that still point at rows about to be deleted.
            expired_ids = select(refresh_tokens.c.id).where(refresh_tokens.c.expires_at < now)
            conn.execute(
                refresh_tokens.update()
                .where(refresh_tokens.c.replaced_by_id.in_(expired_ids) & (refresh_tokens.c.expires_at >= now))
                .values(replaced_by_id=None)
            )
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expires_at < now))
        if result.rowcount:
            logger.info("Purged %d expired refresh session(s)", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=as_utc(row.expires_at),
        revoked=bool(row.revoked),
        revoked_at=as_utc(row.revoked_at),
        last_used_at=as_utc(row.last_used_at),
        replaced_by_id=row.replaced_by_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=as_utc(row.created_at),
    )
