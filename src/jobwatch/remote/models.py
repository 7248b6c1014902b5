"""
Session data models.

Provides Pydantic models for the authenticated session and the identity
returned by the login endpoint.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """The user the current credential belongs to."""

    model_config = ConfigDict(
        populate_by_name=True, frozen=True, coerce_numbers_to_str=True
    )

    id: str = Field(..., alias="userId", description="User id")
    display_name: str = Field(..., alias="username", description="Display name")
    email: str = Field(..., description="Login email")
    org_name: Optional[str] = Field(None, alias="companyName")
    org_id: Optional[str] = Field(None, alias="companyDocument")


class Session(BaseModel):
    """Current credential, its owner and its expiry instant."""

    model_config = ConfigDict(frozen=True)

    credential: str = Field(..., description="Opaque bearer token")
    identity: Identity
    expiry_epoch_seconds: Optional[int] = Field(
        None, description="Credential expiry as epoch seconds, if known"
    )

    def masked_credential(self) -> str:
        """Credential with everything but the last 4 characters hidden."""
        if len(self.credential) <= 4:
            return "****"
        return f"****{self.credential[-4:]}"
