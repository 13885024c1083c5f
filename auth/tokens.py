"""
auth/tokens.py -- Signed access/refresh token encoding and verification.

Security design decisions:
  Algorithm: python-jose with RS256. Tokens are signed with the private key
       from auth.keys and verified with the public key. The accepted algorithm
       list is pinned to RS256 so alg:none and HS/RS key-confusion tokens are
       rejected as malformed.

  Claims: {sub, role, type, jti, iat, exp, iss, aud}. sub is the principal's
       normalized email. jti is random so two tokens minted in the same second
       for the same principal are still distinct strings (the session store
       keys refresh records by token hash).

  Failures: verify() raises TokenError with a TokenFailure reason. The reason
       separates bad signature, malformed structure, expiry and issuer/audience
       mismatch for audit logging; every caller maps all of them to
       "unauthenticated".

  Type confusion: check_type() compares the decoded `type` claim against the
       expected class. It is independent of the signature check -- a refresh
       token signed with the right key is still rejected where an access
       token is expected. Cookie names are never used to infer the type.

  Clock: exp is an absolute instant (epoch seconds). Verification uses the
       server wall clock with no leeway unless TOKEN_LEEWAY_SECONDS is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWSSignatureError, JWTClaimsError, JWTError

from auth.errors import TokenError, TokenFailure
from auth.keys import KeyMaterial
from auth.models import Principal, Role

if TYPE_CHECKING:
    from core.config import Settings

ALGORITHM = "RS256"

_REQUIRED_CLAIMS = ("sub", "role", "type", "jti", "iat", "exp", "iss", "aud")


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, verified claim set."""

    subject: str
    role: Role
    token_type: TokenType
    token_id: str
    issued_at: int
    expires_at: int
    issuer: str
    audience: str

    @property
    def expires_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc)

    @property
    def lifetime_seconds(self) -> int:
        return max(self.expires_at - self.issued_at, 0)

    def to_payload(self) -> dict:
        return {
            "sub": self.subject,
            "role": self.role.value,
            "type": self.token_type.value,
            "jti": self.token_id,
            "iat": self.issued_at,
            "exp": self.expires_at,
            "iss": self.issuer,
            "aud": self.audience,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims":
        """Build claims from a decoded payload. Raises TokenError(MALFORMED)."""
        missing = [c for c in _REQUIRED_CLAIMS if c not in payload]
        if missing:
            raise TokenError(TokenFailure.MALFORMED, f"missing claims: {', '.join(missing)}")
        try:
            return cls(
                subject=str(payload["sub"]),
                role=Role(payload["role"]),
                token_type=TokenType(payload["type"]),
                token_id=str(payload["jti"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                issuer=str(payload["iss"]),
                audience=str(payload["aud"]),
            )
        except (TypeError, ValueError) as exc:
            raise TokenError(TokenFailure.MALFORMED, f"invalid claim value: {exc}") from exc


@dataclass(frozen=True)
class TokenPair:
    """An access token and a refresh token issued together."""

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    access_claims: TokenClaims
    refresh_claims: TokenClaims

    @property
    def access_max_age(self) -> int:
        return self.access_claims.lifetime_seconds

    @property
    def refresh_max_age(self) -> int:
        return self.refresh_claims.lifetime_seconds


class TokenCodec:
    """Issues and verifies RS256 tokens for one issuer/audience pair.

    Usage:
        codec = TokenCodec(keys, issuer="resumeagent-backend", audience="resumeagent-frontend",
                           access_ttl_seconds=900, refresh_ttl_seconds=2592000)
        token = codec.issue(principal, TokenType.ACCESS)
        claims = codec.verify_as(token, TokenType.ACCESS)
    """

    def __init__(
        self,
        keys: KeyMaterial,
        issuer: str,
        audience: str,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
        leeway_seconds: int = 0,
    ) -> None:
        self._keys = keys
        self.issuer = issuer
        self.audience = audience
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.leeway_seconds = leeway_seconds

    @classmethod
    def from_settings(cls, keys: KeyMaterial, settings: Settings) -> "TokenCodec":
        return cls(
            keys,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_ttl_seconds=settings.access_token_ttl_seconds,
            refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
            leeway_seconds=settings.token_leeway_seconds,
        )

    def ttl_for(self, token_type: TokenType) -> int:
        if token_type == TokenType.ACCESS:
            return self.access_ttl_seconds
        return self.refresh_ttl_seconds

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def _build_claims(
        self,
        principal: Principal,
        token_type: TokenType,
        ttl_seconds: int | None,
        now: datetime | None,
    ) -> TokenClaims:
        now = now or datetime.now(timezone.utc)
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_for(token_type)
        return TokenClaims(
            subject=principal.email,
            role=Role(principal.role),
            token_type=token_type,
            token_id=uuid.uuid4().hex,
            issued_at=int(now.timestamp()),
            expires_at=int((now + timedelta(seconds=ttl)).timestamp()),
            issuer=self.issuer,
            audience=self.audience,
        )

    def _encode(self, claims: TokenClaims) -> str:
        return jwt.encode(claims.to_payload(), self._keys.private_pem, algorithm=ALGORITHM)

    def issue(
        self,
        principal: Principal,
        token_type: TokenType,
        ttl_seconds: int | None = None,
        now: datetime | None = None,
    ) -> str:
        """Sign a token of the given type for principal.

        ttl_seconds defaults to the configured TTL for the type. now is the
        issue instant (defaults to the current UTC time).
        """
        return self._encode(self._build_claims(principal, token_type, ttl_seconds, now))

    def issue_pair(self, principal: Principal, now: datetime | None = None) -> TokenPair:
        """Issue an access token and a refresh token sharing the same issue instant."""
        now = now or datetime.now(timezone.utc)
        access_claims = self._build_claims(principal, TokenType.ACCESS, None, now)
        refresh_claims = self._build_claims(principal, TokenType.REFRESH, None, now)
        return TokenPair(
            access_token=self._encode(access_claims),
            refresh_token=self._encode(refresh_claims),
            access_claims=access_claims,
            refresh_claims=refresh_claims,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str) -> TokenClaims:
        """Check signature, issuer, audience and expiry. Raises TokenError.

        Does NOT check the token type -- use verify_as() or check_type().
        """
        if not token or not isinstance(token, str):
            raise TokenError(TokenFailure.MALFORMED, "empty token")
        try:
            payload = jwt.decode(
                token,
                self._keys.public_pem,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "leeway": self.leeway_seconds,
                    "require_aud": True,
                    "require_iat": True,
                    "require_exp": True,
                    "require_iss": True,
                    "require_sub": True,
                    "require_jti": True,
                },
            )
        except ExpiredSignatureError as exc:
            raise TokenError(TokenFailure.EXPIRED, str(exc)) from exc
        except JWTClaimsError as exc:
            raise TokenError(TokenFailure.CLAIM_MISMATCH, str(exc)) from exc
        except JWTError as exc:
            # jose wraps the underlying JWS error as the first argument.
            cause = exc.args[0] if exc.args else None
            if isinstance(cause, JWSSignatureError) or "signature verification failed" in str(exc).lower():
                raise TokenError(TokenFailure.BAD_SIGNATURE, "signature verification failed") from exc
            raise TokenError(TokenFailure.MALFORMED, str(exc)) from exc
        return TokenClaims.from_payload(payload)

    @staticmethod
    def check_type(claims: TokenClaims, expected: TokenType) -> bool:
        """Return True only if the decoded type claim equals expected."""
        return claims.token_type == expected

    def verify_as(self, token: str, expected: TokenType) -> TokenClaims:
        """verify() plus the mandatory type check. Raises TokenError(WRONG_TYPE)."""
        claims = self.verify(token)
        if not self.check_type(claims, expected):
            raise TokenError(
                TokenFailure.WRONG_TYPE,
                f"expected {expected.value} token, got {claims.token_type.value}",
            )
        return claims
