from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from todoauth.config import Settings
from todoauth.logging import get_logger
from todoauth.service.errors import (
    ConfigurationError,
    TokenCreationError,
    TokenMissingClaimsError,
    TokenParsingError,
    TokenValidationError,
)

logger = get_logger(__name__)

ALGORITHM = "RS256"
REQUIRED_CLAIMS = ["sub", "jti", "exp", "iat", "nbf", "iss", "aud"]


@dataclass(frozen=True)
class KeyPair:
    name: str
    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey

    @classmethod
    def generate(cls, name: str) -> "KeyPair":
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        return cls(name=name, private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def from_encoded(cls, name: str, private_b64: str, public_b64: str) -> "KeyPair":
        """Load a pair from base64-encoded PEM blocks and check they match."""

        try:
            private_pem = base64.b64decode(private_b64, validate=True)
            public_pem = base64.b64decode(public_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError(f"{name} key pair is not valid base64") from exc
        try:
            private_key = serialization.load_pem_private_key(private_pem, password=None)
            public_key = serialization.load_pem_public_key(public_pem)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise ConfigurationError(f"{name} key pair is not a valid PEM block") from exc
        if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(
            public_key, rsa.RSAPublicKey
        ):
            raise ConfigurationError(f"{name} key pair must be RSA")
        if private_key.public_key().public_numbers() != public_key.public_numbers():
            raise ConfigurationError(f"{name} public key does not match its private key")
        return cls(name=name, private_key=private_key, public_key=public_key)

    def encoded(self) -> tuple[str, str]:
        """Return ``(private_b64, public_b64)`` in the format settings expect."""

        private_pem = self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(private_pem).decode(), base64.b64encode(public_pem).decode()


@dataclass(frozen=True)
class KeyRing:
    """The three signing pairs, loaded once at startup.

    Reauth tokens are signed with the access pair; kinds sharing a pair are
    told apart by audience.
    """

    access: KeyPair
    refresh: KeyPair
    session: KeyPair

    @classmethod
    def from_settings(cls, settings: Settings) -> "KeyRing":
        pairs = {}
        for name in ("access", "refresh", "session"):
            private_b64: Optional[str] = getattr(settings, f"{name}_token_private_key")
            public_b64: Optional[str] = getattr(settings, f"{name}_token_public_key")
            if private_b64 and public_b64:
                pairs[name] = KeyPair.from_encoded(name, private_b64, public_b64)
            elif settings.test_mode and not private_b64 and not public_b64:
                logger.warning("ephemeral_key_pair_generated", key_pair=name)
                pairs[name] = KeyPair.generate(name)
            else:
                raise ConfigurationError(
                    f"{name.upper()}_TOKEN_PRIVATE_KEY and {name.upper()}_TOKEN_PUBLIC_KEY must both be set"
                )
        return cls(**pairs)

    @classmethod
    def generate(cls) -> "KeyRing":
        return cls(
            access=KeyPair.generate("access"),
            refresh=KeyPair.generate("refresh"),
            session=KeyPair.generate("session"),
        )


def sign(payload: Dict[str, Any], key_pair: KeyPair) -> str:
    try:
        return jwt.encode(payload, key_pair.private_key, algorithm=ALGORITHM)
    except (jwt.PyJWTError, ValueError, TypeError) as exc:
        logger.error("token_sign_failed", key_pair=key_pair.name, error=str(exc))
        raise TokenCreationError("failed to create token") from exc


def verify(
    token: str,
    key_pair: KeyPair,
    *,
    audience: str,
    issuer: str,
    leeway: int = 0,
) -> Dict[str, Any]:
    """Check signature, validity window, audience and issuer; return the payload."""

    try:
        return jwt.decode(
            token,
            key_pair.public_key,
            algorithms=[ALGORITHM],
            audience=audience,
            issuer=issuer,
            leeway=leeway,
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.MissingRequiredClaimError as exc:
        raise TokenMissingClaimsError(
            "token has some missing claims", detail={"missing": [exc.claim]}
        ) from exc
    except jwt.ExpiredSignatureError as exc:
        raise TokenValidationError("token has expired") from exc
    except jwt.ImmatureSignatureError as exc:
        raise TokenValidationError("token is not yet valid") from exc
    except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as exc:
        raise TokenValidationError("token was not issued for this use") from exc
    except jwt.InvalidSignatureError as exc:
        raise TokenValidationError("token signature is invalid") from exc
    except jwt.DecodeError as exc:
        raise TokenParsingError("token could not be parsed") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenValidationError("token validation failed") from exc
