"""
Identity accounts for wallet sign-in.
tables: users, profiles

Wallet-only accounts get a placeholder email derived from the address and a
random password hash nobody knows, so they can only ever sign in by wallet.
"""

import logging
import secrets

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import UpstreamError
from app.core.eth_auth import AUTH_METHOD_WALLET
from app.models.users import Profile, User
from app.schemas.profile import PlaceholderProfile

logger = logging.getLogger(__name__)

# "!" never prefixes a real password hash, so this can't match any password
UNUSABLE_PASSWORD_PREFIX = "!"


def unusable_password() -> str:
    return UNUSABLE_PASSWORD_PREFIX + secrets.token_hex(32)


class AccountService:
    """Creates placeholder accounts through the caller's session.

    Nothing is committed here: the caller decides whether the account, its
    profile and whatever else it adds in the same transaction are kept.
    """

    def __init__(self, db: Session, email_domain: str = settings.PLACEHOLDER_EMAIL_DOMAIN):
        self._db = db
        self._email_domain = email_domain

    def create_placeholder(self, wallet_address: str) -> str:
        """
        Add a user row and its placeholder profile for a never-seen wallet.

        Args:
            wallet_address: Checksummed wallet address

        Returns:
            The new user id

        Raises:
            UpstreamError: If no valid placeholder profile can be built
            sqlalchemy.exc.IntegrityError: If the placeholder email is already taken
        """
        try:
            profile = PlaceholderProfile.for_wallet(wallet_address, self._email_domain)
        except PydanticValidationError as exc:
            raise UpstreamError(f"cannot build placeholder profile for {wallet_address}: {exc}") from exc
        user = User(
            email=profile.email,
            password_hash=unusable_password(),
            auth_method=AUTH_METHOD_WALLET,
        )
        self._db.add(user)
        self._db.flush()  # Flush to get the ID without committing

        self._db.add(Profile(id=user.id, **profile.model_dump()))
        self._db.flush()
        logger.debug("provisioned placeholder account %s for %s", user.id, wallet_address)
        return str(user.id)
