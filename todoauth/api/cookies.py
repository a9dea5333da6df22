from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from fastapi import Response

from todoauth.config import Settings

REFRESH_COOKIE = "todoauth_refresh_token"
SESSION_COOKIE = "todoauth_session_token"


@dataclass(frozen=True)
class CookieParams:
    max_age: Optional[int] = None
    http_only: bool = True
    domain: Optional[str] = None
    path: str = "/"

    def with_max_age(self, max_age: int) -> "CookieParams":
        return replace(self, max_age=max_age)


def set_cookie(
    response: Response,
    settings: Settings,
    name: str,
    value: str,
    params: CookieParams = CookieParams(),
) -> None:
    """Write a cookie; ``secure`` follows the deployment environment."""

    response.set_cookie(
        key=name,
        value=value,
        max_age=params.max_age,
        path=params.path,
        domain=params.domain or settings.domain or None,
        secure=settings.is_production,
        httponly=params.http_only,
        samesite="lax",
    )


def clear_cookie(
    response: Response,
    settings: Settings,
    name: str,
    params: CookieParams = CookieParams(),
) -> None:
    set_cookie(response, settings, name, "", params.with_max_age(0))


def set_login_cookies(
    response: Response, settings: Settings, refresh_token: str, session_token: str
) -> None:
    set_cookie(
        response,
        settings,
        REFRESH_COOKIE,
        refresh_token,
        CookieParams(max_age=settings.refresh_token_expiration, http_only=True),
    )
    # readable by the frontend for display
    set_cookie(
        response,
        settings,
        SESSION_COOKIE,
        session_token,
        CookieParams(max_age=settings.session_token_expiration, http_only=False),
    )


def clear_login_cookies(response: Response, settings: Settings) -> None:
    clear_cookie(response, settings, REFRESH_COOKIE, CookieParams(http_only=True))
    clear_cookie(response, settings, SESSION_COOKIE, CookieParams(http_only=False))
