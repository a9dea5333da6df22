from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, Response

from todoauth.api.cookies import (
    REFRESH_COOKIE,
    clear_login_cookies,
    set_login_cookies,
)
from todoauth.api.schemas import (
    AccessTokenResponse,
    Envelope,
    LoginRequest,
    LoginResponse,
    ReauthRequest,
    ReauthResponse,
    RegisterRequest,
    SessionListResponse,
    SessionResponse,
    UserResponse,
)
from todoauth.service.auth import AuthContext
from todoauth.service.runtime import get_runtime
from todoauth.storage.models import User

router = APIRouter(prefix="/v1")

NEW_ACCESS_TOKEN_HEADER = "X-New-Access-Token"
REAUTH_HEADER = "X-Reauth-Token"


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


def _user_response(user: User) -> UserResponse:
    runtime = get_runtime()
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        photo_url=runtime.auth.avatar_for(user),
        created_at=user.created_at,
    )


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an account.

    Raises:
        409: If the email is already registered
    """
    runtime = get_runtime()
    user = await runtime.auth.register(body.email, body.password, body.name)
    return Envelope(status="ok", data=_user_response(user))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Authenticate with email and password.

    The refresh token travels only in an HttpOnly cookie; the access token is
    returned in the body and the ``X-New-Access-Token`` header.
    """
    runtime = get_runtime()
    user, issued = await runtime.auth.login(body.email, body.password)
    set_login_cookies(
        response,
        runtime.settings,
        issued.refresh_token.token,
        issued.session_token.token,
    )
    response.headers[NEW_ACCESS_TOKEN_HEADER] = issued.access_token.token
    return Envelope(
        status="ok",
        data=LoginResponse(
            user_id=user.id,
            access_token=issued.access_token.token,
            access_expires_at=issued.access_token.expires_at,
        ),
    )


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(
    response: Response,
    refresh_token: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    runtime = get_runtime()
    access = await runtime.auth.refresh(refresh_token)
    response.headers[NEW_ACCESS_TOKEN_HEADER] = access.token
    return Envelope(
        status="ok",
        data=AccessTokenResponse(access_token=access.token, expires_at=access.expires_at),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    response: Response,
    refresh_token: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    runtime = get_runtime()
    await runtime.auth.logout(refresh_token)
    clear_login_cookies(response, runtime.settings)
    return Envelope(status="ok", data={"message": "logged out"})


@router.post("/auth/reauth", response_model=Envelope, tags=["auth"])
async def reauth(body: ReauthRequest, principal: AuthContext = Depends(get_user)):
    """Exchange the password for a short-lived token gating sensitive operations."""
    runtime = get_runtime()
    issued = await runtime.auth.reauth(principal, body.password)
    return Envelope(
        status="ok",
        data=ReauthResponse(reauth_token=issued.token, expires_at=issued.expires_at),
    )


@router.get("/users/me", response_model=Envelope, tags=["users"])
async def get_current_user(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = runtime.auth.get_user(principal)
    return Envelope(status="ok", data=_user_response(user))


@router.get("/users/me/sessions", response_model=Envelope, tags=["users"])
async def list_sessions(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    records = await runtime.auth.list_sessions(principal)
    items = [
        SessionResponse(
            id=record.id,
            created_at=record.created_at,
            expires_at=record.expires_at,
            current=record.id == principal.rjti,
        )
        for record in records
    ]
    return Envelope(status="ok", data=SessionListResponse(items=items))


@router.delete("/users/me", response_model=Envelope, tags=["users"])
async def delete_current_user(
    response: Response,
    principal: AuthContext = Depends(get_user),
    reauth_token: Optional[str] = Header(None, alias=REAUTH_HEADER),
):
    """Delete the account and revoke every session it holds.

    Requires a reauth token from ``POST /v1/auth/reauth`` in ``X-Reauth-Token``.
    """
    runtime = get_runtime()
    await runtime.auth.delete_account(principal, reauth_token)
    clear_login_cookies(response, runtime.settings)
    return Envelope(status="ok", data={"deleted": True})
