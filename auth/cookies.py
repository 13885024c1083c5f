"""
auth/cookies.py -- Cookie transport for access and refresh tokens.

Tokens travel only in cookies, never in response bodies. The two cookie
classes deliberately get different scopes:

  access   path "/"                     SameSite=Lax     short max-age
           sent on top-level navigation so protected pages load.
  refresh  path = refresh endpoint      SameSite=Strict  long max-age
           never the target of a cross-site navigation, so the browser only
           ever attaches it to POST /auth/refresh.

Both are HttpOnly and Secure unless DEBUG relaxes them (see core/config.py).

Deletion re-issues the cookie with the same name and the same path, an empty
value and Max-Age=0. A deletion with a different path is a different cookie to
the browser and leaves the original in place.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import Response

from auth.tokens import TokenPair

if TYPE_CHECKING:
    from core.config import Settings


@dataclass(frozen=True)
class CookieSpec:
    """Everything needed to emit one Set-Cookie header."""

    name: str
    value: str = field(repr=False)
    path: str
    max_age: int
    http_only: bool = True
    secure: bool = True
    same_site: str = "lax"
    domain: str | None = None

    @property
    def is_deletion(self) -> bool:
        return self.max_age == 0 and self.value == ""


class CookieTransport:
    """Builds, applies and reads the two auth cookies.

    Usage:
        cookies = CookieTransport.from_settings(get_settings())
        cookies.set_token_pair(response, pair)
        token = cookies.get_refresh_token(request)
        cookies.clear(response)
    """

    def __init__(
        self,
        access_name: str = "accessToken",
        refresh_name: str = "refreshToken",
        refresh_path: str = "/api/v1/auth/refresh",
        http_only: bool = True,
        secure: bool = True,
        access_same_site: str = "lax",
        refresh_same_site: str = "strict",
        domain: str | None = None,
    ) -> None:
        self.access_name = access_name
        self.refresh_name = refresh_name
        self.refresh_path = refresh_path
        self.http_only = http_only
        self.secure = secure
        self.access_same_site = access_same_site
        self.refresh_same_site = refresh_same_site
        self.domain = domain or None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CookieTransport":
        return cls(
            access_name=settings.access_token_cookie_name,
            refresh_name=settings.refresh_token_cookie_name,
            refresh_path=settings.refresh_cookie_path,
            http_only=settings.cookie_http_only,
            secure=settings.cookie_secure,
            access_same_site=settings.access_cookie_samesite,
            refresh_same_site=settings.refresh_cookie_samesite,
            domain=settings.cookie_domain,
        )

    # ------------------------------------------------------------------
    # Descriptors
    # ------------------------------------------------------------------

    def access_cookie(self, token: str, max_age: int) -> CookieSpec:
        return CookieSpec(
            name=self.access_name,
            value=token,
            path="/",
            max_age=max_age,
            http_only=self.http_only,
            secure=self.secure,
            same_site=self.access_same_site,
            domain=self.domain,
        )

    def refresh_cookie(self, token: str, max_age: int) -> CookieSpec:
        return CookieSpec(
            name=self.refresh_name,
            value=token,
            path=self.refresh_path,
            max_age=max_age,
            http_only=self.http_only,
            secure=self.secure,
            same_site=self.refresh_same_site,
            domain=self.domain,
        )

    def delete_access_cookie(self) -> CookieSpec:
        return self.access_cookie("", 0)

    def delete_refresh_cookie(self) -> CookieSpec:
        return self.refresh_cookie("", 0)

    # ------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------

    @staticmethod
    def apply(response: Response, cookie: CookieSpec) -> None:
        """Write cookie as a Set-Cookie header on response."""
        response.set_cookie(
            cookie.name,
            value=cookie.value,
            max_age=cookie.max_age,
            path=cookie.path,
            domain=cookie.domain,
            secure=cookie.secure,
            httponly=cookie.http_only,
            samesite=cookie.same_site,
        )

    def set_token_pair(self, response: Response, pair: TokenPair) -> None:
        """Attach both cookies. Max-age follows each token's own lifetime."""
        self.apply(response, self.access_cookie(pair.access_token, pair.access_max_age))
        self.apply(response, self.refresh_cookie(pair.refresh_token, pair.refresh_max_age))

    def clear(self, response: Response) -> None:
        """Attach deletion cookies for both names."""
        self.apply(response, self.delete_access_cookie())
        self.apply(response, self.delete_refresh_cookie())

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    def get_access_token(self, request: Request) -> str | None:
        return _non_blank(request.cookies.get(self.access_name))

    def get_refresh_token(self, request: Request) -> str | None:
        return _non_blank(request.cookies.get(self.refresh_name))


def _non_blank(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value
