from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Type

from todoauth.config import Settings
from todoauth.service.claims import BaseClaims, ExtendedClaims, PrimaryClaims
from todoauth.service.signer import KeyPair, KeyRing


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    SESSION = "session"
    REAUTH = "reauth"

    def key(self, token_id: str) -> str:
        """Registry key for a token id of this kind."""
        return f"{self.value}:{token_id}"

    def audience(self, issuer: str) -> str:
        return f"{issuer}:{self.value}"


class RegistryPolicy(str, Enum):
    # access: access:<ajti> must map to the token's rjti
    BOUND = "bound"
    # refresh: refresh:<rjti> must exist
    FAMILY = "family"
    NONE = "none"


@dataclass(frozen=True)
class KindPolicy:
    key_pair: str
    expiration_setting: str
    claims_type: Type[BaseClaims]
    registry: RegistryPolicy

    def keys(self, ring: KeyRing) -> KeyPair:
        return getattr(ring, self.key_pair)

    def ttl(self, settings: Settings) -> int:
        return getattr(settings, self.expiration_setting)


POLICIES: dict[TokenKind, KindPolicy] = {
    TokenKind.ACCESS: KindPolicy(
        "access", "access_token_expiration", PrimaryClaims, RegistryPolicy.BOUND
    ),
    TokenKind.REFRESH: KindPolicy(
        "refresh", "refresh_token_expiration", PrimaryClaims, RegistryPolicy.FAMILY
    ),
    TokenKind.SESSION: KindPolicy(
        "session", "session_token_expiration", ExtendedClaims, RegistryPolicy.NONE
    ),
    TokenKind.REAUTH: KindPolicy(
        "access", "access_token_expiration", PrimaryClaims, RegistryPolicy.NONE
    ),
}


def policy_for(kind: TokenKind) -> KindPolicy:
    return POLICIES[kind]
