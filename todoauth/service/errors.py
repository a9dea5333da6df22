from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code:
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - validation_error (400)
    - conflict (409)
    - server_error (500)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class BadRequestError(ServiceError):
    """Request is malformed or invalid (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class ConfigurationError(RuntimeError):
    """Fatal startup misconfiguration such as malformed key material."""


class TokenError(ServiceError):
    """Base class for token lifecycle failures.

    ``category`` names the failure family so callers can branch without
    isinstance chains. Cryptographic and structural failures are
    deterministic and map to 401; creation and store failures map to 500.
    """

    category: str = "other"
    status_code = 401
    error_code = "unauthorized"


class TokenCreationError(TokenError):
    """Signing failed; indicates misconfigured key material."""
    category = "creation"
    status_code = 500
    error_code = "server_error"


class TokenValidationError(TokenError):
    """Signature, expiry, audience or registry consistency check failed."""
    category = "validation"


class TokenParsingError(TokenError):
    """Token string or key encoding could not be parsed."""
    category = "parsing"


class TokenInvalidFormatError(TokenError):
    """Token decoded but a claim has the wrong shape."""
    category = "invalid_format"


class TokenMissingClaimsError(TokenError):
    """Token decoded but a required claim is absent."""
    category = "missing_claims"


class TokenStoreError(TokenError):
    """Store I/O failure or internal contract violation.

    ``transient`` is set for timeouts and connection loss so the calling
    request handler may decide to retry the whole request.
    """

    category = "other"
    status_code = 500
    error_code = "server_error"

    def __init__(self, message: str, *, transient: bool = False, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.transient = transient


__all__ = [
    "ServiceError",
    "BadRequestError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "ConfigurationError",
    "TokenError",
    "TokenCreationError",
    "TokenValidationError",
    "TokenParsingError",
    "TokenInvalidFormatError",
    "TokenMissingClaimsError",
    "TokenStoreError",
]
