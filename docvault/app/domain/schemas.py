"""API I/O schemas."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .models import PrincipalRead


class RegisterRequest(BaseModel):
    id_number: str
    password: str
    email: str
    full_name: Optional[str] = None
    phone_number: Optional[str] = None


class LoginRequest(BaseModel):
    login: str
    password: str


class SessionOut(BaseModel):
    token: str
    principal: PrincipalRead


class LogoutOut(BaseModel):
    message: str = "Logged out (token invalidated)"
    token_version: int


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    email: str
    code: str = Field(..., min_length=6, max_length=6)
    new_password: str


class AuthorityCreate(BaseModel):
    login: str
    password: str
    email: Optional[str] = None
    organization: Optional[str] = None


class MessageOut(BaseModel):
    message: str


class AnchorRequest(BaseModel):
    hash: str


class AnchorOut(BaseModel):
    hash: str
    tx_ref: Optional[str]
    anchored_at_block: Optional[int]
    already_anchored: bool


class RegistryLookupOut(BaseModel):
    hash: str
    exists: bool
    anchored_at_block: Optional[int] = None


class FeedEntryOut(BaseModel):
    tx_ref: str
    hash: str
    block: int
    sender: str
    recorded_at: datetime


class VerifyRequest(BaseModel):
    input: str = Field(..., description="verification URL or bare token")
    passkey: Optional[str] = None


class VerifyOut(BaseModel):
    state: str
    verified: bool
    reason: Optional[str] = None
    retryable: bool = False
    doc_id: Optional[str] = None
    doc_type: Optional[str] = None
    hash: Optional[str] = None
    anchored_at_block: Optional[int] = None
    passkey_attempts: int = 0
