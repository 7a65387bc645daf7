from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Company(BaseModel):
    """Tenant. `owner_id` is fixed at creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    owner_id: str
    created_at: datetime


class Profile(BaseModel):
    """
    Binding of a principal to a company and a role.

    `role` is the raw stored tag. Only the role resolver interprets it.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    principal_id: str
    company_id: str
    role: str
    created_at: datetime
    pending_removal: bool = False


class MemberRow(BaseModel):
    profile_id: str
    principal_id: str
    email: str
    role: str
    created_at: datetime


class ActionResult(BaseModel):
    success: bool
    message: str
    data: Optional[dict] = None


AuditAction = Literal["create", "update_role", "remove", "import_sales", "import_expenses"]


class AuditRecord(BaseModel):
    action: AuditAction
    actor: str
    company_id: str
    target: Optional[str] = None
    role: Optional[str] = None
    previous_role: Optional[str] = None
    changed: bool = True
    detail: dict = Field(default_factory=dict)
    timestamp: datetime


class Envelope(BaseModel):
    request_id: str | None = None


# Field values are validated by the member service, after the permission check.
class CreateMemberRequest(Envelope):
    email: str = ""
    password: str = ""
    role: str = "user"


class UpdateRoleRequest(Envelope):
    role: str
