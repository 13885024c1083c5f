"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it; api/routes/v1/auth.py decorates the credential
endpoints with it. Counters are per client address and live in process memory.

login_limit() is passed to @limiter.limit() as a callable so LOGIN_RATE_LIMIT
is read from Settings when the limit is evaluated, not at import time.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Rate limit string for credential endpoints (login, register)."""
    return get_settings().login_rate_limit
