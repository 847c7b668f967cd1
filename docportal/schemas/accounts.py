from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, EmailStr, Field, SecretStr


class Role(StrEnum):
    ADMIN = "admin"
    DISTRIBUTOR = "distributor"
    INSTALLER = "installer"
    USER = "user"


# Roles that belong to a distributor's network rather than its team.
TENANT_ROLES = frozenset({Role.INSTALLER, Role.USER})


class Account(BaseModel):
    id: str
    email: str
    display_name: str
    role: Role
    active: bool = True
    created_at: datetime
    last_login: datetime | None = None
    created_by: str | None = None
    distributor_id: str | None = None
    is_distributor_admin: bool = False
    managed_users: list[str] = Field(default_factory=list)


class AccountCreate(BaseModel):
    email: EmailStr
    password: SecretStr
    display_name: str = Field(min_length=1, max_length=200)
    role: Role
    distributor_id: str | None = None
    new_distributor_name: str | None = Field(
        default=None,
        max_length=200,
        description="Create a new distributor organization owned by this account",
    )


class AccountUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=200)
    role: Role | None = None


class AccountOut(BaseModel):
    id: str
    email: str
    display_name: str
    role: Role
    active: bool
    created_at: datetime
    last_login: datetime | None
    created_by: str | None
    distributor_id: str | None
    is_distributor_admin: bool
    managed_users: list[str]

    model_config = ConfigDict(
        from_attributes=True,
    )


class AccountResultOut(BaseModel):
    account: AccountOut
    warnings: list[str] = Field(default_factory=list)


class DistributorAdminIn(BaseModel):
    enabled: bool


class DeleteUserIn(BaseModel):
    user_id: str | None = Field(default=None, alias="userId")
    admin_user_id: str | None = Field(default=None, alias="adminUserId")

    model_config = ConfigDict(populate_by_name=True)


class DeletionOut(BaseModel):
    message: str
    warnings: list[str] = Field(default_factory=list)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class DisplayNameIn(BaseModel):
    display_name: str = Field(min_length=1, max_length=200)


class PasswordChangeIn(BaseModel):
    current_password: SecretStr
    new_password: SecretStr
