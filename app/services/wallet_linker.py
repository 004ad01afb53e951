"""
Link additional wallets to a signed-in account.
table: wallet_addresses

An address belongs to at most one account (unique column) and an account has at
most one primary wallet (partial unique index). The first wallet an account
links becomes its primary one.
"""

import logging
from typing import List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import Forbidden, StorageError, WalletAlreadyLinked
from app.core.eth_auth import normalize_address
from app.core.jwt_utils import verify_token
from app.models.auth import WalletAddress
from app.models.users import User

logger = logging.getLogger(__name__)


class WalletLinker:
    def __init__(self, db: Session):
        self._db = db

    def link(self, wallet_address: str, user_id: str, presented_session: str) -> WalletAddress:
        """
        Attach wallet_address to user_id.

        Args:
            wallet_address: Address to link, any accepted casing
            user_id: Account the wallet is linked to
            presented_session: Session token, its userId claim must equal user_id

        Returns:
            The stored WalletAddress row

        Raises:
            Unauthorized / TokenExpired: If the session token is not valid
            Forbidden: If the token belongs to a different user
            ValidationError: If wallet_address is malformed
            WalletAlreadyLinked: If any account, this one included, already owns the address
            StorageError: On database failure
        """
        claims = verify_token(presented_session)
        if claims["userId"] != user_id:
            raise Forbidden(f"token subject {claims['userId']} tried to link for {user_id}")

        address = normalize_address(wallet_address)
        try:
            if self._is_linked(address):
                raise WalletAlreadyLinked(f"{address} is already linked")
            is_primary = self._count_links(user_id) == 0
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise StorageError(str(exc)) from exc

        try:
            return self._insert(address, user_id, is_primary)
        except IntegrityError as exc:
            self._db.rollback()
            self._raise_for_conflict(address, user_id, exc)
            if not is_primary:
                raise StorageError(f"linking {address} to {user_id} conflicted: {exc.orig}") from exc

        # the primary slot was taken concurrently, link as a secondary wallet
        try:
            return self._insert(address, user_id, False)
        except IntegrityError as exc:
            self._db.rollback()
            self._raise_for_conflict(address, user_id, exc)
            raise StorageError(f"linking {address} to {user_id} conflicted: {exc.orig}") from exc

    def list_links(self, user_id: str) -> List[WalletAddress]:
        """Wallets linked to user_id, primary first."""
        try:
            return (
                self._db.query(WalletAddress)
                .filter(WalletAddress.user_id == user_id)
                .order_by(WalletAddress.is_primary.desc(), WalletAddress.created_at)
                .all()
            )
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise StorageError(str(exc)) from exc

    def _raise_for_conflict(self, address: str, user_id: str, exc: IntegrityError) -> None:
        """Raise the error explaining a rejected link insert, if it is one we can name."""
        try:
            linked = self._is_linked(address)
            owner_exists = self._db.get(User, user_id) is not None
        except SQLAlchemyError as lookup_exc:
            self._db.rollback()
            raise StorageError(str(lookup_exc)) from lookup_exc
        if linked:
            raise WalletAlreadyLinked(f"{address} was linked concurrently") from exc
        if not owner_exists:
            raise StorageError(f"cannot link {address}: user {user_id} does not exist") from exc

    def _is_linked(self, address: str) -> bool:
        return (
            self._db.query(WalletAddress.id)
            .filter(WalletAddress.wallet_address == address)
            .first()
            is not None
        )

    def _count_links(self, user_id: str) -> int:
        return (
            self._db.query(func.count(WalletAddress.id))
            .filter(WalletAddress.user_id == user_id)
            .scalar()
        )

    def _insert(self, address: str, user_id: str, is_primary: bool) -> WalletAddress:
        link = WalletAddress(user_id=user_id, wallet_address=address, is_primary=is_primary)
        try:
            self._db.add(link)
            self._db.commit()
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error("failed to link %s to %s: %s", address, user_id, exc)
            raise StorageError(str(exc)) from exc
        self._db.refresh(link)
        logger.info("linked wallet %s to %s (primary=%s)", address, user_id, is_primary)
        return link
