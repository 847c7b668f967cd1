from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from docportal.schemas.accounts import Role


class Distributor(BaseModel):
    id: str
    company_name: str
    contact_email: str
    contact_phone: str = ""
    address: str = ""
    logo: str | None = None
    active: bool = True
    created_at: datetime
    team_members: list[str] = Field(default_factory=list)
    admin_members: list[str] = Field(default_factory=list)


class DistributorUpdate(BaseModel):
    company_name: str | None = Field(default=None, min_length=1, max_length=200)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(default=None, max_length=50)
    address: str | None = Field(default=None, max_length=500)
    logo: str | None = None
    active: bool | None = None


class DistributorOut(BaseModel):
    id: str
    company_name: str
    contact_email: str
    contact_phone: str
    address: str
    logo: str | None
    active: bool
    created_at: datetime
    team_members: list[str]
    admin_members: list[str]

    model_config = ConfigDict(
        from_attributes=True,
    )


class TeamMemberOut(BaseModel):
    id: str
    email: str
    display_name: str
    role: Role
    active: bool
    is_distributor_admin: bool
    last_login: datetime | None

    model_config = ConfigDict(
        from_attributes=True,
    )
