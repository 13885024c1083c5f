"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Dataclasses own domain shape;
stores, the token codec and routes do the work.

Timestamps are timezone-aware UTC datetimes. Stores convert on the way in
and out so callers never see naive values.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Plan(str, Enum):
    FREE = "FREE"
    PRO = "PRO"


@dataclass
class Principal:
    """An identity that owns credentials.

    email is stored normalized (stripped, lower-cased) and is the JWT subject.
    email_verified gates login; is_active=False marks a blocked account.
    The password hash is excluded from repr so it never lands in a log line.
    """

    email: str
    full_name: str
    password_hash: str = field(repr=False)
    role: Role = Role.USER
    plan: Plan = Plan.FREE
    id: int | None = None
    resume_generation_limit: int = 5
    resume_generation_used: int = 0
    email_verified: bool = False
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class PasswordHistoryEntry:
    """One previous password hash. Append-only; used to reject reuse."""

    user_id: int
    password_hash: str = field(repr=False)
    id: int | None = None
    created_at: datetime | None = None


@dataclass
class ClientContext:
    """Audit context captured when a refresh token is issued."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class RefreshTokenRecord:
    """Server-side record of one issued refresh token.

    token_hash is SHA-256 of the token string; the plaintext is never stored.
    replaced_by_id links a rotated record to its successor, forming the
    rotation chain. A record is active while not revoked and not expired;
    once terminal it stays terminal.
    """

    user_id: int
    token_hash: str = field(repr=False)
    expires_at: datetime
    id: int | None = None
    revoked: bool = False
    revoked_at: datetime | None = None
    last_used_at: datetime | None = None
    replaced_by_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now

    def is_active(self, now: datetime | None = None) -> bool:
        return not self.revoked and not self.is_expired(now)


@dataclass
class Identity:
    """Request-scoped identity established by the AuthenticationGate."""

    principal: Principal

    @property
    def user_id(self) -> int | None:
        return self.principal.id

    @property
    def email(self) -> str:
        return self.principal.email

    @property
    def role(self) -> Role:
        return self.principal.role

    @property
    def is_admin(self) -> bool:
        return self.principal.role == Role.ADMIN
