"""
FastAPI Authentication Dependencies
This module provides FastAPI dependency functions that can be injected into route handlers
to automatically extract and validate session tokens from the Authorization header.
Usage in endpoints:
    @router.get("/protected")
    def protected_route(session: Dict[str, Any] = Depends(get_current_session)):
        # claims of the verified token
        return {"user": session["userId"]}
Flow:
1. Client sends request with Authorization: Bearer <token> header
2. FastAPI calls get_current_session() dependency
3. _extract_token() extracts token from header
4. verify_token() validates the JWT (from jwt_utils.py)
5. Returns the token claims to the route handler
"""

from typing import Any, Dict, Optional

from fastapi import Header

from app.core.errors import Unauthorized
from app.core.jwt_utils import verify_token


def _extract_token(authorization: Optional[str]) -> str:
    """
    Extract JWT token from Authorization header.
    Supports both "Bearer <token>" and plain token formats.
    Args:
        authorization: The Authorization header value (e.g., "Bearer eyJ...")
    Returns:
        The extracted token string
    Raises:
        Unauthorized: If Authorization header is missing or invalid
    """
    if not authorization:
        raise Unauthorized("authorization header missing")

    authorization = authorization.strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    else:
        token = authorization
    if not token:
        raise Unauthorized("invalid authorization header")

    return token


def get_current_session(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Dict[str, Any]:
    """
    returning the verified session claims.
    """
    return verify_token(_extract_token(authorization))
