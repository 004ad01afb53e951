"""
Resolve a verified wallet address to the account that owns it, creating the
account on first sign-in.

Two first sign-ins for the same new address may race. The account, its profile
and its primary wallet link are written in one transaction and the wallet
address is unique, so the slower request fails on commit, rolls its account
back and resolves to the winner instead.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import MatchifyError, StorageError
from app.models.auth import WalletAddress
from app.services.accounts import AccountService

logger = logging.getLogger(__name__)


class IdentityResolver:
    def __init__(self, db: Session, accounts: Optional[AccountService] = None):
        self._db = db
        self._accounts = accounts or AccountService(db)

    def lookup(self, wallet_address: str) -> Optional[str]:
        """Return the id of the user owning wallet_address, if any."""
        link = (
            self._db.query(WalletAddress)
            .filter(WalletAddress.wallet_address == wallet_address)
            .first()
        )
        return str(link.user_id) if link else None

    def resolve(self, wallet_address: str) -> Tuple[str, bool]:
        """
        Find or create the account for a checksummed wallet address.

        Returns:
            (user_id, is_new_account)

        Raises:
            StorageError: On database failure
            UpstreamError: If the account service cannot provision the account
        """
        try:
            owner = self.lookup(wallet_address)
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise StorageError(str(exc)) from exc
        if owner:
            return owner, False

        try:
            user_id = self._accounts.create_placeholder(wallet_address)
            self._db.add(
                WalletAddress(user_id=user_id, wallet_address=wallet_address, is_primary=True)
            )
            self._db.commit()
        except IntegrityError:
            self._db.rollback()
            return self._resolve_after_conflict(wallet_address)
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error("failed to create account for %s: %s", wallet_address, exc)
            raise StorageError(str(exc)) from exc
        except MatchifyError:
            self._db.rollback()
            raise

        logger.info("created account %s for wallet %s", user_id, wallet_address)
        return user_id, True

    def _resolve_after_conflict(self, wallet_address: str) -> Tuple[str, bool]:
        try:
            owner = self.lookup(wallet_address)
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise StorageError(str(exc)) from exc
        if owner is None:
            # the conflict was not on this wallet's link
            raise StorageError(f"account creation for {wallet_address} conflicted without a winner")
        logger.info("wallet %s was claimed concurrently, resolved to %s", wallet_address, owner)
        return owner, False
