"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Settings reads the environment and an optional .env file; field names map to
upper-case variable names (jwt_issuer -> JWT_ISSUER). validate_auth_policy()
checks the cross-field rules once every field is resolved, so a token, cookie
or key misconfiguration stops the process before it serves a request.

Security notes:
  [K1] Outside DEBUG mode the RSA key paths are mandatory. The key files
       themselves are loaded and checked by auth.keys at startup.

  [C4] Cookie hardening flags (Secure, HttpOnly) may only be relaxed with
       DEBUG=true, for local development over plain HTTP.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("resumeagent.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'resumeagent_auth.db'}"

SameSite = Literal["lax", "strict", "none"]


class Settings(BaseSettings):
    """Auth service configuration. Every field except the key paths has a default."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ------------------------------------------------------------------
    # Signing keys and token claims
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    jwt_private_key_path: str = ""
    jwt_public_key_path: str = ""
    jwt_issuer: str = "resumeagent-backend"
    jwt_audience: str = "resumeagent-frontend"
    access_token_ttl_seconds: int = 15 * 60
    refresh_token_ttl_seconds: int = 30 * 24 * 60 * 60
    # Clock-skew tolerance on exp checks. Zero unless explicitly configured.
    token_leeway_seconds: int = 0

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    access_token_cookie_name: str = "accessToken"
    refresh_token_cookie_name: str = "refreshToken"
    # Must equal the mounted path of POST /auth/refresh.
    refresh_cookie_path: str = "/api/v1/auth/refresh"
    cookie_http_only: bool = True
    cookie_secure: bool = True
    access_cookie_samesite: SameSite = "lax"
    refresh_cookie_samesite: SameSite = "strict"
    cookie_domain: Optional[str] = None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # 0 disables the per-principal cap.
    max_active_sessions: int = 0
    session_reuse_revokes_all: bool = True
    session_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Rate limiting and registration
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_auth_policy(self) -> "Settings":
        """Refuse to start with an unsafe or incoherent auth configuration.

        Key paths are required in production mode [K1]. Relaxed cookie flags
        are tolerated only in DEBUG mode, with a warning [C4]. TTLs must be
        positive and an access token must never outlive its refresh token.
        """
        if not self.debug and not (self.jwt_private_key_path and self.jwt_public_key_path):
            raise ValueError(
                "JWT_PRIVATE_KEY_PATH and JWT_PUBLIC_KEY_PATH are required in production mode. "
                "Generate a keypair with `python main.py generate-keys` and point both settings at it."
            )
        if self.access_token_ttl_seconds <= 0 or self.refresh_token_ttl_seconds <= 0:
            raise ValueError("Token TTLs must be positive.")
        if self.access_token_ttl_seconds >= self.refresh_token_ttl_seconds:
            raise ValueError("ACCESS_TOKEN_TTL_SECONDS must be shorter than REFRESH_TOKEN_TTL_SECONDS.")
        if self.token_leeway_seconds < 0:
            raise ValueError("TOKEN_LEEWAY_SECONDS cannot be negative.")
        if self.max_active_sessions < 0:
            raise ValueError("MAX_ACTIVE_SESSIONS cannot be negative.")

        if not self.cookie_secure or not self.cookie_http_only:
            if not self.debug:
                raise ValueError("COOKIE_SECURE and COOKIE_HTTP_ONLY can only be disabled with DEBUG=true.")
            logger.warning("WARNING: Auth cookies are running without Secure/HttpOnly. Local development only.")
        if "none" in (self.access_cookie_samesite, self.refresh_cookie_samesite) and not self.cookie_secure:
            raise ValueError("SameSite=None cookies must also be Secure.")
        if not self.refresh_cookie_path.startswith("/"):
            raise ValueError("REFRESH_COOKIE_PATH must be an absolute path.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    The CLI tests call get_settings.cache_clear() after changing DATABASE_URL.
    """
    return Settings()
