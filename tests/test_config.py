"""
tests/test_config.py -- Settings validation rules.

Init kwargs take precedence over the environment conftest sets up, so each
test overrides exactly the fields it is about.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings


def _settings(**overrides) -> Settings:
    base = {"_env_file": None}
    base.update(overrides)
    return Settings(**base)


class TestDefaults:
    def test_defaults(self) -> None:
        settings = _settings()
        assert settings.jwt_issuer == "resumeagent-backend"
        assert settings.jwt_audience == "resumeagent-frontend"
        assert settings.access_token_ttl_seconds == 900
        assert settings.refresh_token_ttl_seconds == 30 * 24 * 3600
        assert settings.access_token_cookie_name == "accessToken"
        assert settings.refresh_token_cookie_name == "refreshToken"
        assert settings.refresh_cookie_path == "/api/v1/auth/refresh"
        assert settings.access_cookie_samesite == "lax"
        assert settings.refresh_cookie_samesite == "strict"
        assert settings.cookie_secure is True
        assert settings.cookie_http_only is True


class TestValidation:
    def test_production_requires_key_paths(self) -> None:
        with pytest.raises(ValidationError, match="JWT_PRIVATE_KEY_PATH"):
            _settings(debug=False, jwt_private_key_path="", jwt_public_key_path="")

    def test_debug_allows_missing_key_paths(self) -> None:
        settings = _settings(debug=True, jwt_private_key_path="", jwt_public_key_path="")
        assert settings.jwt_private_key_path == ""

    def test_access_ttl_must_be_shorter(self) -> None:
        with pytest.raises(ValidationError, match="shorter"):
            _settings(access_token_ttl_seconds=3600, refresh_token_ttl_seconds=3600)

    def test_ttls_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="positive"):
            _settings(access_token_ttl_seconds=0)

    def test_negative_leeway_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(token_leeway_seconds=-1)

    def test_insecure_cookies_need_debug(self) -> None:
        with pytest.raises(ValidationError, match="DEBUG"):
            _settings(debug=False, cookie_secure=False)

    def test_insecure_cookies_allowed_in_debug(self) -> None:
        assert _settings(debug=True, cookie_secure=False).cookie_secure is False

    def test_samesite_none_requires_secure(self) -> None:
        with pytest.raises(ValidationError, match="SameSite"):
            _settings(debug=True, cookie_secure=False, access_cookie_samesite="none")

    def test_unknown_samesite_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _settings(refresh_cookie_samesite="sometimes")

    def test_refresh_path_must_be_absolute(self) -> None:
        with pytest.raises(ValidationError, match="absolute"):
            _settings(refresh_cookie_path="auth/refresh")
