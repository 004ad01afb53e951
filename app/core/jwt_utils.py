"""
JWT Token Utilities

This module handles JSON Web Token (JWT) creation and verification for wallet authentication.
After a user successfully verifies their wallet signature, this module creates a JWT token
(the session credential) that can be used for subsequent authenticated API requests.

Flow:
1. User verifies wallet signature -> create_access_token() generates JWT
2. User links another wallet or calls a protected endpoint -> verify_token() validates it
3. Protected endpoints use get_current_session() from dependencies.py to read the claims

The JWT contains:
- userId: The account the wallet resolved to
- walletAddress: The checksummed wallet address that signed in
- authMethod: Always "wallet" for tokens minted here
- iat: Issued at timestamp
- exp: Expiration timestamp (configurable via ACCESS_TOKEN_EXPIRE_SECONDS, 7 days)

Tokens are stateless: verification needs the signing key only, no store lookup.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.core.config import settings
from app.core.errors import TokenExpired, Unauthorized
from app.core.eth_auth import AUTH_METHOD_WALLET


if not settings.ENCODE_KEY:
    raise RuntimeError("ENCODE_KEY is not configured")


REQUIRED_CLAIMS = ("userId", "walletAddress", "exp")


def create_access_token(
    user_id: str,
    wallet_address: str,
    extra_claims: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Create a JWT access token for an authenticated wallet.

    This is called after successful wallet signature verification in /api/auth/verify.
    The token is returned to the frontend and presented again when linking wallets.

    Args:
        user_id: Id of the account the wallet resolved to
        wallet_address: The checksummed wallet address that was verified
        extra_claims: Optional additional claims to include in the JWT payload
        now: Issue time, defaults to the current UTC time

    Returns:
        A JWT token string that can be used in Authorization: Bearer <token> header

    Raises:
        ValueError: If user_id or wallet_address is empty
    """
    if not user_id:
        raise ValueError("user_id is required")
    if not wallet_address:
        raise ValueError("wallet_address is required")

    now = now or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "userId": user_id,
        "walletAddress": wallet_address,
        "authMethod": AUTH_METHOD_WALLET,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)).timestamp()),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(payload, settings.ENCODE_KEY, algorithm=settings.ENCODE_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Checks token signature, expiration, and required payload fields.

    Args:
        token: The JWT token string

    Returns:
        Decoded JWT payload dictionary containing userId, walletAddress and other claims

    Raises:
        TokenExpired: If the token is past its exp claim
        Unauthorized: If token is missing, tampered with, or missing required claims
    """
    if not token:
        raise Unauthorized("missing token")

    try:
        payload = jwt.decode(
            token,
            settings.ENCODE_KEY,
            algorithms=[settings.ENCODE_ALGORITHM],
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpired("token expired")
    except jwt.InvalidTokenError as exc:
        raise Unauthorized(f"invalid token: {exc}")

    if any(claim not in payload for claim in REQUIRED_CLAIMS):
        raise Unauthorized("invalid token payload")

    return payload
