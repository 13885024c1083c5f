"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Callers treat this module as a one-way hash with a verify(plain, hash) -> bool
contract; nothing outside it knows the algorithm.
"""

from __future__ import annotations

from collections.abc import Iterable

import bcrypt

# bcrypt only reads the first 72 bytes; bcrypt 5 rejects anything longer.
MAX_PASSWORD_BYTES = 72


def fits_bcrypt(plain: str) -> bool:
    """Return True if plain encodes to at most MAX_PASSWORD_BYTES of UTF-8."""
    return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises ValueError for passwords over MAX_PASSWORD_BYTES. Callers check
    fits_bcrypt() first: the API models reject such passwords with a 422.
    """
    if not fits_bcrypt(plain):
        raise ValueError(f"password cannot be longer than {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not fits_bcrypt(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed or empty stored hash
        return False


def matches_any(plain: str, hashes: Iterable[str]) -> bool:
    """Return True if plain matches any of the given hashes."""
    return any(verify_password(plain, h) for h in hashes)


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Verify against it when the email is unknown so
# response time does not reveal whether an account exists.
DUMMY_HASH: str = hash_password("resumeagent_timing_dummy")
