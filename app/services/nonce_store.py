"""
Nonce store for wallet sign-in challenges.
table: auth_nonces
columns:
    nonce: str (64 hex chars, primary key)
    wallet_address: str (checksummed)
    created_at: int (epoch seconds)
    expires_at: int (epoch seconds, created_at + NONCE_EXPIRY_SECONDS)
    used: bool

Lifecycle of a nonce: ISSUED -> CONSUMED | EXPIRED. A newer nonce for the same
address does not invalidate older ones; they simply age out. Expiry is checked
when the nonce is consumed, the purge below only reclaims storage.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import delete, false, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import NonceAlreadyUsed, NonceExpired, NonceNotFound, StorageError
from app.core.eth_auth import build_challenge_message, generate_nonce, normalize_address
from app.db.session import SessionLocal
from app.models.auth import AuthNonce

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class IssuedNonce:
    nonce: str
    wallet_address: str
    message: str
    issued_at: datetime
    expires_at: datetime


class NonceStore:
    def __init__(
        self,
        db: Session,
        expiry_seconds: int = settings.NONCE_EXPIRY_SECONDS,
        clock: Clock = time.time,
    ):
        self._db = db
        self._expiry_seconds = expiry_seconds
        self._clock = clock

    def issue(self, wallet_address: str) -> IssuedNonce:
        """
        Create and persist a fresh nonce for a wallet address.

        Returns:
            IssuedNonce with the token, the challenge message embedding it, and its expiry

        Raises:
            ValidationError: If wallet_address is not a valid address
            StorageError: If the nonce could not be saved
        """
        wallet_address = normalize_address(wallet_address)
        now = self._clock()
        created_at = int(now)
        expires_at = created_at + self._expiry_seconds
        nonce = generate_nonce()

        record = AuthNonce(
            nonce=nonce,
            wallet_address=wallet_address,
            created_at=created_at,
            expires_at=expires_at,
            used=False,
        )
        try:
            self._db.add(record)
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error("failed to store nonce for %s: %s", wallet_address, exc)
            raise StorageError(str(exc), public_message="Failed to generate nonce") from exc

        issued_at = datetime.fromtimestamp(now, tz=timezone.utc)
        return IssuedNonce(
            nonce=nonce,
            wallet_address=wallet_address,
            message=build_challenge_message(nonce, issued_at),
            issued_at=issued_at,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    def consume(self, wallet_address: str, nonce: str) -> None:
        """
        Mark a nonce as used, exactly once.

        The check and the flip are a single conditional UPDATE, so of several
        concurrent callers presenting the same nonce only one sees a changed row.

        Raises:
            NonceNotFound: No nonce with this value was issued to this address
            NonceAlreadyUsed: The nonce was consumed before
            NonceExpired: The nonce is past its expiry
            StorageError: On database failure
        """
        wallet_address = normalize_address(wallet_address)
        now = int(self._clock())
        try:
            result = self._db.execute(
                update(AuthNonce)
                .where(
                    AuthNonce.nonce == nonce,
                    AuthNonce.wallet_address == wallet_address,
                    AuthNonce.used == false(),
                    AuthNonce.expires_at > now,
                )
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                self._db.commit()
                return
            record = self._find(wallet_address, nonce)
            self._db.rollback()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.error("failed to consume nonce for %s: %s", wallet_address, exc)
            raise StorageError(str(exc)) from exc

        if record is None:
            raise NonceNotFound(f"no nonce {nonce[:12]}... for {wallet_address}")
        if record.used:
            raise NonceAlreadyUsed(f"nonce {nonce[:12]}... already used")
        if record.expires_at <= now:
            raise NonceExpired(f"nonce {nonce[:12]}... expired at {record.expires_at}")
        # row changed between the update and the lookup, treat as lost race
        raise NonceAlreadyUsed(f"nonce {nonce[:12]}... consumed concurrently")

    def purge_expired(self, grace_seconds: int = settings.NONCE_PURGE_GRACE_SECONDS) -> int:
        """Delete nonces that expired more than grace_seconds ago. Returns the row count."""
        cutoff = int(self._clock()) - grace_seconds
        try:
            result = self._db.execute(
                delete(AuthNonce)
                .where(AuthNonce.expires_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise StorageError(str(exc)) from exc
        return result.rowcount

    def _find(self, wallet_address: str, nonce: str) -> Optional[AuthNonce]:
        return (
            self._db.query(AuthNonce)
            .filter(AuthNonce.nonce == nonce, AuthNonce.wallet_address == wallet_address)
            .first()
        )


def purge_expired_nonces() -> int:
    db = SessionLocal()
    try:
        return NonceStore(db).purge_expired()
    finally:
        db.close()


async def run_nonce_purge(interval_seconds: int, stop_event: asyncio.Event) -> None:
    """Background task: purge long-expired nonces every interval_seconds until stop_event is set."""
    loop = asyncio.get_running_loop()
    while not stop_event.is_set():
        try:
            removed = await loop.run_in_executor(None, purge_expired_nonces)
            if removed:
                logger.info("[nonce-purge] removed %d expired nonces", removed)
        except StorageError as exc:
            logger.warning("[nonce-purge] failed: %s", exc.detail)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
