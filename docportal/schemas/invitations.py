from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr, field_validator

from docportal.schemas.accounts import Role


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class Invitation(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    company_name: str | None = None
    inviter_id: str
    inviter_name: str
    inviter_company: str
    distributor_id: str | None = None
    token: str
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime
    expires_at: datetime
    last_sent_at: datetime | None = None
    accepted_at: datetime | None = None
    account_id: str | None = None


class InvitationCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=200)
    role: Role
    company_name: str | None = Field(default=None, max_length=200)

    @field_validator("role")
    @classmethod
    def _not_admin(cls, value: Role) -> Role:
        if value is Role.ADMIN:
            raise ValueError("Administrators cannot be invited")
        return value


class InvitationOut(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    company_name: str | None
    inviter_id: str
    inviter_name: str
    inviter_company: str
    status: InvitationStatus
    created_at: datetime
    expires_at: datetime
    last_sent_at: datetime | None
    accepted_at: datetime | None

    model_config = ConfigDict(
        from_attributes=True,
    )


class InvitationCreatedOut(BaseModel):
    invitation: InvitationOut
    email_sent: bool
    warnings: list[str] = Field(default_factory=list)


class InvitationVerifyIn(BaseModel):
    token: SecretStr


class InvitationVerifyOut(BaseModel):
    email: EmailStr
    name: str
    role: Role
    company_name: str | None
    inviter_name: str
    inviter_company: str
    expires_at: datetime


class InvitationAcceptIn(BaseModel):
    token: SecretStr
    password: SecretStr
    display_name: str | None = Field(default=None, min_length=1, max_length=200)
