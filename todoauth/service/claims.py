from __future__ import annotations

import secrets
import threading
import time
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Mapping, Type, TypeVar

from todoauth.service.errors import TokenInvalidFormatError, TokenMissingClaimsError

_CROCKFORD = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_RANDOM_BITS = 80

C = TypeVar("C", bound="BaseClaims")


class TokenIdFactory:
    """Generate 26-character, lexicographically sortable token ids.

    Layout follows ULID: 48 bits of unix milliseconds followed by 80 random
    bits, Crockford base32 encoded. Ids issued within one millisecond reuse
    the timestamp and increment the random part, so ordering is strict per
    factory instance.
    """

    def __init__(self, clock=time.time_ns) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._last_random = 0

    def __call__(self) -> str:
        with self._lock:
            now_ms = self._clock() // 1_000_000
            if now_ms > self._last_ms:
                random_part = secrets.randbits(_RANDOM_BITS)
            else:
                now_ms = self._last_ms
                random_part = self._last_random + 1
                if random_part >> _RANDOM_BITS:
                    now_ms += 1
                    random_part = secrets.randbits(_RANDOM_BITS)
            self._last_ms = now_ms
            self._last_random = random_part
        return _encode((now_ms << _RANDOM_BITS) | random_part)


def _encode(value: int) -> str:
    chars = []
    for _ in range(26):
        chars.append(_CROCKFORD[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


@dataclass(frozen=True)
class BaseClaims:
    sub: str
    jti: str
    exp: int
    iat: int
    nbf: int
    iss: str
    aud: str

    _INT_FIELDS: ClassVar[frozenset[str]] = frozenset({"exp", "iat", "nbf"})

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls: Type[C], payload: Mapping[str, Any]) -> C:
        names = [f.name for f in fields(cls)]
        missing = [name for name in names if payload.get(name) in (None, "")]
        if missing:
            raise TokenMissingClaimsError(
                "token has some missing claims", detail={"missing": missing}
            )
        values: dict[str, Any] = {}
        for name in names:
            value = payload[name]
            if name in cls._INT_FIELDS:
                if isinstance(value, bool) or not isinstance(value, int):
                    raise TokenInvalidFormatError(
                        "invalid token format provided", detail={"claim": name}
                    )
            elif not isinstance(value, str):
                raise TokenInvalidFormatError(
                    "invalid token format provided", detail={"claim": name}
                )
            values[name] = value
        return cls(**values)


@dataclass(frozen=True)
class PrimaryClaims(BaseClaims):
    """Claims carried by access, refresh and reauth tokens.

    ``rjti`` names the refresh family the token belongs to; for a refresh
    token it equals ``jti``.
    """

    rjti: str

    @classmethod
    def new(
        cls,
        sub: str,
        *,
        jti: str,
        rjti: str | None,
        issued_at: int,
        ttl: int,
        issuer: str,
        audience: str,
    ) -> "PrimaryClaims":
        return cls(
            sub=sub,
            jti=jti,
            rjti=rjti or jti,
            exp=issued_at + ttl,
            iat=issued_at,
            nbf=issued_at,
            iss=issuer,
            aud=audience,
        )


@dataclass(frozen=True)
class ExtendedClaims(BaseClaims):
    """Session display claims; carries no privileged grant."""

    email: str
    name: str
    photo_url: str

    @property
    def rjti(self) -> str:
        return self.jti

    @classmethod
    def new(
        cls,
        sub: str,
        *,
        jti: str,
        issued_at: int,
        ttl: int,
        issuer: str,
        audience: str,
        email: str,
        name: str,
        photo_url: str,
    ) -> "ExtendedClaims":
        return cls(
            sub=sub,
            jti=jti,
            exp=issued_at + ttl,
            iat=issued_at,
            nbf=issued_at,
            iss=issuer,
            aud=audience,
            email=email,
            name=name,
            photo_url=photo_url,
        )
