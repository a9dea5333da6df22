from __future__ import annotations

import asyncio
from dataclasses import dataclass
from urllib.parse import quote

from todoauth.config import Settings
from todoauth.service.token_kinds import TokenKind
from todoauth.service.tokens import TokenParams, TokenResponse, TokenService
from todoauth.storage.models import User


@dataclass(frozen=True)
class LoginTokens:
    refresh_token: TokenResponse
    access_token: TokenResponse
    session_token: TokenResponse

    @property
    def rjti(self) -> str:
        return self.refresh_token.rjti

    @property
    def ajti(self) -> str:
        return self.access_token.jti


def avatar_url(settings: Settings, name: str) -> str:
    return settings.avatar_url_template.format(seed=quote(name, safe=""))


async def issue_login_tokens(tokens: TokenService, user: User) -> LoginTokens:
    """Issue the refresh, access and session tokens for a fresh login.

    The refresh token goes first since it binds the access id in the registry;
    the access token then reuses that id, so only one registry round trip is
    made for the pair.
    """

    refresh = await tokens.create(TokenKind.REFRESH, TokenParams(subject=user.id))
    access, session = await asyncio.gather(
        tokens.create(
            TokenKind.ACCESS,
            TokenParams(subject=user.id, rjti=refresh.rjti, ajti=refresh.ajti),
        ),
        tokens.create(
            TokenKind.SESSION,
            TokenParams(
                subject=user.id,
                email=user.email,
                name=user.name,
                photo_url=avatar_url(tokens.settings, user.name),
            ),
        ),
    )
    return LoginTokens(refresh_token=refresh, access_token=access, session_token=session)
