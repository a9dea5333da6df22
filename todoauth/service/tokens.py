from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Protocol, Set, Tuple

from todoauth.config import Settings
from todoauth.logging import get_logger
from todoauth.service.claims import BaseClaims, ExtendedClaims, PrimaryClaims, TokenIdFactory
from todoauth.service.errors import TokenStoreError, TokenValidationError
from todoauth.service.signer import KeyRing, sign, verify
from todoauth.service.token_kinds import RegistryPolicy, TokenKind, policy_for
from todoauth.storage.errors import ConstraintViolation, StoreUnavailable
from todoauth.storage.models import SessionRecord

logger = get_logger(__name__)

ACCESS_PREFIX = TokenKind.ACCESS.key("")


class CredentialRegistry(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def set_many(self, entries: Iterable[Tuple[str, str, int]]) -> None: ...

    async def rebind(
        self,
        family_key: str,
        bound_prefix: str,
        family_id: str,
        new_bound_id: str,
        ttl: int,
    ) -> Optional[str]: ...

    async def unbind(self, family_key: str, bound_prefix: str) -> Optional[str]: ...

    async def close(self) -> None: ...


class SessionLedger(Protocol):
    def insert_session(
        self, session_id: str, user_id: str, expires_at: datetime
    ) -> SessionRecord: ...

    def delete_session(self, session_id: str) -> bool: ...

    def delete_expired_sessions(self, user_id: str, threshold: datetime) -> int: ...

    def list_user_sessions(self, user_id: str) -> List[SessionRecord]: ...

    def delete_user_sessions(self, user_id: str) -> int: ...


@dataclass
class TokenParams:
    """Inputs for ``TokenService.create``.

    Access tokens need ``rjti``; passing ``ajti`` as well reuses an id the
    refresh token already bound, so no registry write happens. Session tokens
    need the display profile.
    """

    subject: str
    rjti: Optional[str] = None
    ajti: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    photo_url: Optional[str] = None


@dataclass(frozen=True)
class TokenResponse:
    kind: TokenKind
    token: str
    jti: str
    rjti: str
    expires_at: datetime
    ajti: Optional[str] = None


def _to_datetime(epoch: int) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


class TokenService:
    """Issues, verifies, rotates and revokes the four token kinds.

    Registry state per refresh family ``rjti``::

        refresh:<rjti> -> ajti      (the access id currently bound)
        access:<ajti>  -> rjti

    Only the refresh token writes both entries; rotation swaps the access
    entry and repoints the family in one atomic registry call; revocation
    removes both and then the ledger row.
    """

    def __init__(
        self,
        settings: Settings,
        keys: KeyRing,
        registry: CredentialRegistry,
        ledger: SessionLedger,
        *,
        clock: Optional[Callable[[], float]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.settings = settings
        self.keys = keys
        self.registry = registry
        self.ledger = ledger
        self.clock = clock or time.time
        self.new_id = id_factory or TokenIdFactory()
        self._background: Set[asyncio.Task] = set()

    def _now(self) -> int:
        return int(self.clock())

    async def _registry_call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except StoreUnavailable as exc:
            raise TokenStoreError(
                "credential registry unavailable",
                transient=True,
                detail={"operation": operation},
            ) from exc

    async def _ledger_call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except StoreUnavailable as exc:
            raise TokenStoreError(
                "session ledger unavailable",
                transient=True,
                detail={"operation": operation},
            ) from exc
        except ConstraintViolation as exc:
            raise TokenStoreError(
                "session ledger rejected the write",
                detail={"operation": operation, **exc.detail},
            ) from exc

    def _build_claims(
        self, kind: TokenKind, params: TokenParams, jti: str, issued_at: int
    ) -> BaseClaims:
        policy = policy_for(kind)
        ttl = policy.ttl(self.settings)
        issuer = self.settings.issuer
        audience = kind.audience(issuer)
        if kind is TokenKind.SESSION:
            if params.email is None or params.name is None or params.photo_url is None:
                raise TokenStoreError("session token requires a display profile")
            return ExtendedClaims.new(
                params.subject,
                jti=jti,
                issued_at=issued_at,
                ttl=ttl,
                issuer=issuer,
                audience=audience,
                email=params.email,
                name=params.name,
                photo_url=params.photo_url,
            )
        rjti = params.rjti
        if kind is TokenKind.ACCESS and not rjti:
            raise TokenStoreError("access token requires a refresh family id")
        if kind is TokenKind.REFRESH:
            rjti = jti
        return PrimaryClaims.new(
            params.subject,
            jti=jti,
            rjti=rjti,
            issued_at=issued_at,
            ttl=ttl,
            issuer=issuer,
            audience=audience,
        )

    async def create(self, kind: TokenKind, params: TokenParams) -> TokenResponse:
        policy = policy_for(kind)
        issued_at = self._now()
        jti = params.ajti if kind is TokenKind.ACCESS and params.ajti else self.new_id()
        claims = self._build_claims(kind, params, jti, issued_at)
        token = sign(claims.to_payload(), policy.keys(self.keys))
        expires_at = _to_datetime(claims.exp)
        ajti: Optional[str] = None

        if kind is TokenKind.REFRESH:
            ajti = self.new_id()
            await self._bind_family(params.subject, jti, ajti, expires_at)
        elif kind is TokenKind.ACCESS:
            ajti = jti
            if not params.ajti:
                await self._registry_call(
                    "set",
                    self.registry.set(
                        TokenKind.ACCESS.key(jti),
                        claims.rjti,
                        policy.ttl(self.settings),
                    ),
                )

        logger.info("token_issued", kind=kind.value, jti=jti, user_id=params.subject)
        return TokenResponse(
            kind=kind,
            token=token,
            jti=jti,
            rjti=claims.rjti,
            expires_at=expires_at,
            ajti=ajti,
        )

    async def _bind_family(
        self, user_id: str, rjti: str, ajti: str, expires_at: datetime
    ) -> None:
        await self._ledger_call("insert_session", self.ledger.insert_session, rjti, user_id, expires_at)
        entries = [
            (TokenKind.REFRESH.key(rjti), ajti, self.settings.refresh_token_expiration),
            (TokenKind.ACCESS.key(ajti), rjti, self.settings.access_token_expiration),
        ]
        try:
            await self._registry_call("set_many", self.registry.set_many(entries))
        except BaseException:
            try:
                await asyncio.to_thread(self.ledger.delete_session, rjti)
            except Exception as exc:
                logger.error("session_rollback_failed", rjti=rjti, error=str(exc))
            raise

    def decode(self, token: str, kind: TokenKind) -> BaseClaims:
        """Signature, validity window and audience checks only; no registry access."""

        policy = policy_for(kind)
        payload = verify(
            token,
            policy.keys(self.keys),
            audience=kind.audience(self.settings.issuer),
            issuer=self.settings.issuer,
            leeway=self.settings.token_leeway_seconds,
        )
        return policy.claims_type.from_payload(payload)

    async def verify(self, token: str, kind: TokenKind) -> BaseClaims:
        claims = self.decode(token, kind)
        registry_policy = policy_for(kind).registry
        if registry_policy is RegistryPolicy.BOUND:
            bound = await self._registry_call(
                "get", self.registry.get(TokenKind.ACCESS.key(claims.jti))
            )
            if bound is None or bound != claims.rjti:
                raise TokenValidationError("access token is no longer valid")
        elif registry_policy is RegistryPolicy.FAMILY:
            bound = await self._registry_call(
                "get", self.registry.get(TokenKind.REFRESH.key(claims.rjti))
            )
            if not bound:
                raise TokenValidationError("refresh token is no longer valid")
        return claims

    async def rotate(self, rjti: str, subject: str) -> TokenResponse:
        """Mint a new access token for the family and revoke the previous one."""

        new_ajti = self.new_id()
        params = TokenParams(subject=subject, rjti=rjti, ajti=new_ajti)
        claims = self._build_claims(TokenKind.ACCESS, params, new_ajti, self._now())
        token = sign(claims.to_payload(), policy_for(TokenKind.ACCESS).keys(self.keys))
        previous = await self._registry_call(
            "rebind",
            self.registry.rebind(
                TokenKind.REFRESH.key(rjti),
                ACCESS_PREFIX,
                rjti,
                new_ajti,
                self.settings.access_token_expiration,
            ),
        )
        if previous is None:
            raise TokenValidationError("refresh token not found")
        logger.info("access_token_rotated", rjti=rjti, previous_ajti=previous, ajti=new_ajti)
        return TokenResponse(
            kind=TokenKind.ACCESS,
            token=token,
            jti=new_ajti,
            rjti=rjti,
            expires_at=_to_datetime(claims.exp),
            ajti=new_ajti,
        )

    async def revoke(self, rjti: str) -> None:
        previous = await self._registry_call(
            "unbind", self.registry.unbind(TokenKind.REFRESH.key(rjti), ACCESS_PREFIX)
        )
        if previous is None:
            raise TokenValidationError("refresh token not found")
        await self._ledger_call("delete_session", self.ledger.delete_session, rjti)
        logger.info("credential_family_revoked", rjti=rjti)

    async def revoke_user(self, user_id: str) -> int:
        """Revoke every family the ledger lists for ``user_id``."""

        records = await self._ledger_call(
            "list_user_sessions", self.ledger.list_user_sessions, user_id
        )
        for record in records:
            await self._registry_call(
                "unbind",
                self.registry.unbind(TokenKind.REFRESH.key(record.id), ACCESS_PREFIX),
            )
        await self._ledger_call(
            "delete_user_sessions", self.ledger.delete_user_sessions, user_id
        )
        logger.info("user_credentials_revoked", user_id=user_id, families=len(records))
        return len(records)

    async def list_sessions(self, user_id: str) -> List[SessionRecord]:
        return await self._ledger_call(
            "list_user_sessions", self.ledger.list_user_sessions, user_id
        )

    async def delete_expired(self, user_id: str) -> int:
        """Drop ledger rows expiring within the grace window, unbinding their families first.

        A family whose row is gone can no longer be found by ``revoke_user``,
        so it must not stay live in the registry.
        """

        threshold = _to_datetime(self._now() + self.settings.session_cleanup_grace_seconds)
        records = await self._ledger_call(
            "list_user_sessions", self.ledger.list_user_sessions, user_id
        )
        for record in records:
            if record.expires_at <= threshold:
                await self._registry_call(
                    "unbind",
                    self.registry.unbind(TokenKind.REFRESH.key(record.id), ACCESS_PREFIX),
                )
        return await self._ledger_call(
            "delete_expired_sessions", self.ledger.delete_expired_sessions, user_id, threshold
        )

    def schedule_housekeeping(self, user_id: str) -> asyncio.Task:
        task = asyncio.create_task(self._housekeep(user_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _housekeep(self, user_id: str) -> None:
        try:
            removed = await self.delete_expired(user_id)
        except Exception as exc:
            logger.warning("session_housekeeping_failed", user_id=user_id, error=str(exc))
            return
        if removed:
            logger.info("session_housekeeping_done", user_id=user_id, removed=removed)
