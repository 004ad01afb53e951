import uuid

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Index, String, true
from sqlalchemy.sql import func

from app.db.base import Base


class AuthNonce(Base):
    """Model for storing wallet authentication nonces.

    Example:
    {
        "nonce": "9f2c...e41a",  # 64 hex chars
        "wallet_address": "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "created_at": 1762019065,
        "expires_at": 1762019365,
        "used": false
    }
    """

    __tablename__ = "auth_nonces"

    nonce = Column(String(128), primary_key=True)
    wallet_address = Column(String(42), nullable=False, index=True)
    created_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)


class WalletAddress(Base):
    """Wallet linked to a user. An address belongs to at most one user and
    each user has at most one primary wallet.

    Example:
    {
        "id": "550e8400-e29b-41d4-a716-446655440000",
        "user_id": "1b4e28ba-2fa1-11d2-883f-0016d3cca427",
        "wallet_address": "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "is_primary": true,
        "created_at": "2024-01-01T12:00:00"
    }
    """

    __tablename__ = "wallet_addresses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    wallet_address = Column(String(42), nullable=False, unique=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index(
            "uq_wallet_addresses_primary_per_user",
            user_id,
            unique=True,
            sqlite_where=is_primary == true(),
            postgresql_where=is_primary == true(),
        ),
    )
