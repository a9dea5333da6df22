from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from todoauth.config import Settings
from todoauth.logging import get_logger
from todoauth.service.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    TokenValidationError,
)
from todoauth.service.factory import LoginTokens, avatar_url, issue_login_tokens
from todoauth.service.token_kinds import TokenKind
from todoauth.service.tokens import TokenParams, TokenResponse, TokenService
from todoauth.storage.errors import ConstraintViolation
from todoauth.storage.models import SessionRecord, User

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class AuthStore(Protocol):
    def create_user(self, email: str, name: str) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...


@dataclass
class AuthContext:
    """Identity resolved from a verified access token."""

    user_id: str
    rjti: str
    ajti: str


class AuthService:
    """Account and session flows on top of ``TokenService``."""

    def __init__(self, store: AuthStore, tokens: TokenService, settings: Settings) -> None:
        self.store = store
        self.tokens = tokens
        self.settings = settings
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = logger

    async def register(self, email: str, password: str, name: str) -> User:
        try:
            user = self.store.create_user(email=email, name=name)
        except ConstraintViolation as exc:
            raise ConflictError("email already registered", detail=exc.detail) from exc
        pwd_hash, algo = self._hash_password(password)
        self.store.save_password(user.id, pwd_hash, algo)
        self.logger.info("user_registered", user_id=user.id)
        return user

    async def login(self, email: str, password: str) -> Tuple[User, LoginTokens]:
        user = self.store.get_user_by_email(email)
        if not user or not self.verify_password(user.id, password):
            raise AuthenticationError("invalid email or password")
        issued = await issue_login_tokens(self.tokens, user)
        self.tokens.schedule_housekeeping(user.id)
        self.logger.info("user_logged_in", user_id=user.id, rjti=issued.rjti)
        return user, issued

    async def refresh(self, refresh_token: Optional[str]) -> TokenResponse:
        if not refresh_token:
            raise AuthenticationError("refresh token missing")
        claims = await self.tokens.verify(refresh_token, TokenKind.REFRESH)
        if not self.store.get_user(claims.sub):
            raise AuthenticationError("user no longer exists")
        return await self.tokens.rotate(claims.rjti, claims.sub)

    async def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            raise AuthenticationError("refresh token missing")
        claims = await self.tokens.verify(refresh_token, TokenKind.REFRESH)
        await self.tokens.revoke(claims.rjti)
        self.logger.info("user_logged_out", user_id=claims.sub, rjti=claims.rjti)

    @staticmethod
    def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
        if not authorization:
            return None
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() != "bearer" or not value.strip():
            return None
        return value.strip()

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        token = self._extract_bearer(authorization)
        if not token:
            raise AuthenticationError("access token missing")
        claims = await self.tokens.verify(token, TokenKind.ACCESS)
        return AuthContext(user_id=claims.sub, rjti=claims.rjti, ajti=claims.jti)

    async def reauth(self, ctx: AuthContext, password: str) -> TokenResponse:
        if not self.verify_password(ctx.user_id, password):
            raise AuthenticationError("invalid password")
        return await self.tokens.create(
            TokenKind.REAUTH, TokenParams(subject=ctx.user_id, rjti=ctx.rjti)
        )

    async def check_reauth(self, ctx: AuthContext, reauth_token: Optional[str]) -> None:
        if not reauth_token:
            raise AuthenticationError("reauthentication required")
        claims = await self.tokens.verify(reauth_token, TokenKind.REAUTH)
        if claims.sub != ctx.user_id or claims.rjti != ctx.rjti:
            raise TokenValidationError("reauth token was issued for another session")

    def get_user(self, ctx: AuthContext) -> User:
        user = self.store.get_user(ctx.user_id)
        if not user:
            raise NotFoundError("user not found")
        return user

    def avatar_for(self, user: User) -> str:
        return avatar_url(self.settings, user.name)

    async def list_sessions(self, ctx: AuthContext) -> List[SessionRecord]:
        return await self.tokens.list_sessions(ctx.user_id)

    async def delete_account(self, ctx: AuthContext, reauth_token: Optional[str]) -> None:
        await self.check_reauth(ctx, reauth_token)
        revoked = await self.tokens.revoke_user(ctx.user_id)
        if not self.store.delete_user(ctx.user_id):
            raise NotFoundError("user not found")
        self.logger.info("user_deleted", user_id=ctx.user_id, revoked_families=revoked)

    def _hash_password(self, password: str) -> Tuple[str, str]:
        digest = self._pwd_hasher.hash(password)
        return digest, PASSWORD_ALGO

    def verify_password(self, user_id: str, password: str) -> bool:
        """Verify a user's password against stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != PASSWORD_ALGO:
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError):
            self.logger.warning("password_verification_failed", user_id=user_id)
            return False
