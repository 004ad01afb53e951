"""
Error taxonomy for the wallet authentication flow.

Every error carries the HTTP status it maps to and a generic public message.
The exception handlers in main.py only ever return ``public_message``; the
internal detail passed to the constructor is logged server-side.

    MatchifyError
    ├── ValidationError          400  malformed address / missing fields
    ├── AuthError                401
    │   ├── NonceNotFound
    │   ├── NonceExpired
    │   ├── NonceAlreadyUsed
    │   ├── InvalidSignature
    │   ├── AddressMismatch
    │   ├── Unauthorized
    │   └── TokenExpired
    ├── Forbidden                403  token subject does not own the request
    ├── ConflictError            400
    │   └── WalletAlreadyLinked
    ├── StorageError             500  database failure, safe to retry
    └── UpstreamError            500  identity provider failure, safe to retry
"""

from typing import Optional

from fastapi import status


class MatchifyError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, public_message: Optional[str] = None):
        if public_message is not None:
            self.public_message = public_message
        self.detail = detail or self.public_message
        super().__init__(self.detail)


class ValidationError(MatchifyError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Missing required fields"


class AuthError(MatchifyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Unauthorized"


class NonceNotFound(AuthError):
    public_message = "Invalid or expired nonce"


class NonceExpired(AuthError):
    public_message = "Nonce has expired"


class NonceAlreadyUsed(AuthError):
    # same public message as NonceNotFound; only the type tells them apart
    public_message = "Invalid or expired nonce"


class InvalidSignature(AuthError):
    public_message = "Invalid signature"


class AddressMismatch(AuthError):
    public_message = "Signature does not match wallet address"


class Unauthorized(AuthError):
    public_message = "Invalid or expired token"


class TokenExpired(AuthError):
    public_message = "Invalid or expired token"


class Forbidden(MatchifyError):
    status_code = status.HTTP_403_FORBIDDEN
    public_message = "Unauthorized"


class ConflictError(MatchifyError):
    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Conflict"


class WalletAlreadyLinked(ConflictError):
    public_message = "Wallet already linked to another account"


class StorageError(MatchifyError):
    public_message = "Internal server error"


class UpstreamError(MatchifyError):
    public_message = "Internal server error"
