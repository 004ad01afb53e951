from enum import Enum
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

import app.schemas.auth as schemas
from app.core.auth_events import AuthEvent, AuthEventType, auth_events
from app.core.dependencies import get_current_session
from app.core.errors import ValidationError
from app.core.eth_auth import extract_nonce, iso_timestamp, normalize_address, verify_signature
from app.core.jwt_utils import create_access_token
from app.db.session import get_db
from app.services.identity_resolver import IdentityResolver
from app.services.nonce_store import NonceStore
from app.services.wallet_linker import WalletLinker

router = APIRouter()
group_tags: List[str | Enum] = ["Auth"]

ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    status.HTTP_400_BAD_REQUEST: {"model": schemas.ErrorResponse},
    status.HTTP_401_UNAUTHORIZED: {"model": schemas.ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": schemas.ErrorResponse},
}


@router.get(
    "/nonce/{walletAddress}",
    tags=group_tags,
    response_model=schemas.NonceResponse,
    responses=ERROR_RESPONSES,
)
def request_nonce(walletAddress: str, db: Session = Depends(get_db)) -> schemas.NonceResponse:
    """
    Generate and store a sign-in nonce for a wallet address.

    The returned message must be signed as-is (personal_sign) and sent back to /verify.
    The nonce expires after 5 minutes and can be used once.
    """
    issued = NonceStore(db).issue(normalize_address(walletAddress))
    return schemas.NonceResponse(
        nonce=issued.nonce,
        message=issued.message,
        expiresAt=iso_timestamp(issued.expires_at),
    )


@router.post(
    "/verify",
    tags=group_tags,
    response_model=schemas.VerifyResponse,
    responses=ERROR_RESPONSES,
)
def verify_wallet(body: schemas.VerifyRequest, db: Session = Depends(get_db)) -> schemas.VerifyResponse:
    """
    Verify a signed challenge and return a session token.

    Security checks, in order:
    1. The message carries a "Nonce: <hex>" segment
    2. The signature recovers to walletAddress over exactly this message
    3. The nonce was issued to walletAddress, is unexpired and unused; it is marked used
    4. The wallet resolves to an account, created on first sign-in
    """
    if not body.walletAddress or not body.signature or not body.message:
        raise ValidationError("verify request is missing fields")

    wallet_address = normalize_address(body.walletAddress)
    nonce = extract_nonce(body.message)
    wallet_address = verify_signature(body.message, body.signature, wallet_address)

    NonceStore(db).consume(wallet_address, nonce)
    user_id, is_new_user = IdentityResolver(db).resolve(wallet_address)
    token = create_access_token(user_id, wallet_address)

    if is_new_user:
        auth_events.publish(AuthEvent(AuthEventType.ACCOUNT_CREATED, user_id, wallet_address))
    auth_events.publish(AuthEvent(AuthEventType.SIGNED_IN, user_id, wallet_address))

    return schemas.VerifyResponse(
        success=True,
        token=token,
        userId=user_id,
        walletAddress=wallet_address,
        isNewUser=is_new_user,
        message="Account created successfully" if is_new_user else "Login successful",
    )


@router.post(
    "/link-wallet",
    tags=group_tags,
    response_model=schemas.LinkWalletResponse,
    responses={**ERROR_RESPONSES, status.HTTP_403_FORBIDDEN: {"model": schemas.ErrorResponse}},
)
def link_wallet(body: schemas.LinkWalletRequest, db: Session = Depends(get_db)) -> schemas.LinkWalletResponse:
    """Link an additional wallet to the account the presented session token belongs to."""
    if not body.walletAddress or not body.userId or not body.authToken:
        raise ValidationError("link request is missing fields")

    link = WalletLinker(db).link(body.walletAddress, body.userId, body.authToken)
    auth_events.publish(AuthEvent(AuthEventType.WALLET_LINKED, link.user_id, link.wallet_address))

    return schemas.LinkWalletResponse(
        success=True,
        message="Wallet linked successfully",
        walletAddress=link.wallet_address,
    )


@router.get(
    "/me",
    tags=group_tags,
    response_model=schemas.SessionResponse,
    responses={status.HTTP_401_UNAUTHORIZED: {"model": schemas.ErrorResponse}},
)
def read_session(
    session: Dict[str, Any] = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> schemas.SessionResponse:
    """Return the claims of the bearer token and the wallets linked to its account."""
    links = WalletLinker(db).list_links(session["userId"])
    return schemas.SessionResponse(
        userId=session["userId"],
        walletAddress=session["walletAddress"],
        authMethod=session.get("authMethod", "wallet"),
        wallets=[
            schemas.LinkedWallet(walletAddress=link.wallet_address, isPrimary=link.is_primary)
            for link in links
        ],
    )
