import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from app.db.base import Base


class User(Base):
    """Model for users table (identity accounts)
    Example:
    {
        "id": "550e8400-e29b-41d4-a716-446655440000",
        "email": "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed@wallet.dilsematchify.com",
        "password_hash": "!4c1f...",
        "auth_method": "wallet",
        "created_at": "2024-01-01T12:00:00"
    }
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(320), nullable=False, unique=True)
    password_hash = Column(Text, nullable=False)
    auth_method = Column(String(32), nullable=False, default="wallet")
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Profile(Base):
    """Model for profiles table, one row per user, same id"""

    __tablename__ = "profiles"

    id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email = Column(String(320), nullable=False)
    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    profile_completion = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
