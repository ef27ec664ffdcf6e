from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator
from taskhub.models.workspace import Role
from taskhub.schemas.user import UserPublic
from taskhub.utils.sanitization import sanitize_string, validate_color


class WorkspaceCreate(BaseModel):
    name: str = Field(..., max_length=100)
    color: str
    description: str | None = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)

    @field_validator("color")
    @classmethod
    def check_color(cls, v):
        return validate_color(v)


class WorkspaceResponse(BaseModel):
    id: int
    name: str
    color: str
    description: str | None = None
    owner_id: int
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class WorkspaceSummary(WorkspaceResponse):
    my_role: Role


class MemberResponse(BaseModel):
    id: int
    workspace_id: int
    user_id: int
    role: Role
    invite_by_id: int | None = None
    created_at: datetime | None = None
    user: UserPublic

    class Config:
        from_attributes = True


class WorkspaceDetail(WorkspaceResponse):
    members: list[MemberResponse] = []


class AddMemberRequest(BaseModel):
    email: EmailStr
    role: Role = Role.MEMBER


class AddMemberResponse(BaseModel):
    message: str
    type: str  # INVITE or ADDED


class UpdateMemberRoleRequest(BaseModel):
    role: Role


class MemberRoleUpdated(BaseModel):
    message: str
    data: MemberResponse


class InvitationTokenRequest(BaseModel):
    token: str | None = None


class InvitationWorkspace(BaseModel):
    id: int
    name: str
    description: str | None = None

    class Config:
        from_attributes = True


class InvitationResponse(BaseModel):
    id: int
    email: str
    workspace_id: int
    token: str
    invite_by_id: int | None = None
    created_at: datetime
    expires_at: datetime
    workspace: InvitationWorkspace
    invite_by: UserPublic | None = None

    class Config:
        from_attributes = True


class InvitationAccepted(BaseModel):
    message: str
    data: MemberResponse


class MessageResponse(BaseModel):
    message: str
