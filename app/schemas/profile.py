from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# a fresh wallet account has an email placeholder and a generated name only
PLACEHOLDER_PROFILE_COMPLETION = 10


class PlaceholderProfile(BaseModel):
    """Minimal profile created for a wallet that has never signed in before.
    Unknown keys are rejected instead of being passed through to the table."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., description="Placeholder email derived from the wallet address")
    first_name: Optional[str] = "User"
    last_name: Optional[str] = None
    profile_completion: int = Field(PLACEHOLDER_PROFILE_COMPLETION, ge=0, le=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        local, _, domain = v.partition("@")
        if not local or not domain:
            raise ValueError("email must look like local@domain")
        return v

    @classmethod
    def for_wallet(cls, wallet_address: str, email_domain: str) -> "PlaceholderProfile":
        return cls(
            email=f"{wallet_address.lower()}@{email_domain}",
            last_name=wallet_address[:8],
        )
