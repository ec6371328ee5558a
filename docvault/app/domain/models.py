"""Domain models shared between API and persistence layers."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional, Type
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlmodel import Field as SQLField, SQLModel


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    AUTHORITY = "authority"


class AccountStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class PrincipalBase(SQLModel):
    """Columns shared by every role's account table.

    ``token_version`` only ever grows; a session token is honoured only while
    its embedded version equals this value.
    """

    id: str = SQLField(default_factory=lambda: uuid4().hex, primary_key=True, index=True)
    login: str = SQLField(index=True, unique=True)
    email: Optional[str] = SQLField(default=None, index=True)
    credential_hash: str
    token_version: int = SQLField(default=0, nullable=False)
    status: AccountStatus = SQLField(default=AccountStatus.PENDING)
    email_verified: bool = SQLField(default=False)
    verification_token: Optional[str] = SQLField(default=None, index=True)
    verification_expires_at: Optional[datetime] = SQLField(default=None)
    reset_code_hash: Optional[str] = SQLField(default=None)
    reset_expires_at: Optional[datetime] = SQLField(default=None)
    created_at: datetime = SQLField(default_factory=datetime.utcnow, nullable=False)

    role: ClassVar[Role] = Role.USER


class UserAccount(PrincipalBase, table=True):
    __tablename__ = "user_accounts"

    full_name: Optional[str] = SQLField(default=None)
    phone_number: Optional[str] = SQLField(default=None)

    role: ClassVar[Role] = Role.USER


class AdminAccount(PrincipalBase, table=True):
    __tablename__ = "admin_accounts"

    role: ClassVar[Role] = Role.ADMIN


class AuthorityAccount(PrincipalBase, table=True):
    __tablename__ = "authority_accounts"

    organization: Optional[str] = SQLField(default=None)

    role: ClassVar[Role] = Role.AUTHORITY


ACCOUNT_MODELS: dict[Role, Type[PrincipalBase]] = {
    Role.USER: UserAccount,
    Role.ADMIN: AdminAccount,
    Role.AUTHORITY: AuthorityAccount,
}


class PrincipalRead(BaseModel):
    id: str
    login: str
    email: Optional[str]
    role: Role
    status: AccountStatus
    email_verified: bool
    token_version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditRecord(SQLModel, table=True):
    """Append-only trail of authentication and verification decisions."""

    __tablename__ = "audit_records"

    id: str = SQLField(default_factory=lambda: str(uuid4()), primary_key=True, index=True)
    actor_id: str = SQLField(index=True)
    role: str
    action: str = SQLField(index=True)
    resource: str
    allowed: bool = SQLField(default=True)
    detail: Optional[str] = SQLField(default=None)
    created_at: datetime = SQLField(default_factory=datetime.utcnow, nullable=False, index=True)


class AuditRecordRead(BaseModel):
    id: str
    actor_id: str
    role: str
    action: str
    resource: str
    allowed: bool
    detail: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
