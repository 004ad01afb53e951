from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.my_base_model import CustomBaseModel


class NonceResponse(CustomBaseModel):
    """Response model for nonce generation - output"""

    nonce: str = ""
    message: str = ""
    expiresAt: str = ""


class VerifyRequest(BaseModel):
    """Request model for wallet verification - input validation
    Fields are optional here so a missing one is reported as 400, not 422."""

    walletAddress: Optional[str] = Field(None, description="Wallet address that signed the message")
    signature: Optional[str] = Field(None, description="Hex encoded personal_sign signature")
    message: Optional[str] = Field(None, description="The exact challenge message returned by the nonce endpoint")


class VerifyResponse(CustomBaseModel):
    """Response model for authentication - output"""

    success: bool = True
    token: str
    userId: str
    walletAddress: str
    isNewUser: bool = False
    message: str = ""


class LinkWalletRequest(BaseModel):
    """Request model for linking an extra wallet to a signed-in account"""

    walletAddress: Optional[str] = Field(None, description="Wallet address to link")
    userId: Optional[str] = Field(None, description="Account the wallet is linked to")
    authToken: Optional[str] = Field(None, description="Session token issued by /api/auth/verify")


class LinkWalletResponse(CustomBaseModel):
    success: bool = True
    message: str = ""
    walletAddress: str = ""


class LinkedWallet(CustomBaseModel):
    walletAddress: str = ""
    isPrimary: bool = False


class SessionResponse(CustomBaseModel):
    """Claims of the presented session plus the account's linked wallets"""

    userId: str = ""
    walletAddress: str = ""
    authMethod: str = "wallet"
    wallets: List[LinkedWallet] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
