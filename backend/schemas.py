"""
Request bodies for the wallet API.

Field aliases keep the camelCase wire names; lengths and formats are
checked by WalletService so every caller gets the same messages.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterUserRequest(WireModel):
    username: str
    email: str
    password: str


class LoginRequest(WireModel):
    email: str
    password: str


class RegisterOrganizationRequest(WireModel):
    name: str
    email: str
    password: str
    role: str = "verifier"


class CredentialRequest(WireModel):
    type: str
    title: str
    issuer: str
    issued_date: Optional[str] = Field(default=None, alias="issuedDate")
    expires_date: Optional[str] = Field(default=None, alias="expiresDate")


class CustomCredentialRequest(CredentialRequest):
    credential_data: Any = Field(alias="credentialData")
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    document_url: Optional[str] = Field(default=None, alias="documentUrl")


class SelectiveDisclosureRequest(WireModel):
    credential_id: str = Field(alias="credentialId")
    fields: List[str]


class VerifyRequest(WireModel):
    credential_data: str = Field(alias="credentialData")
