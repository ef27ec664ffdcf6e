from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from taskhub.schemas.user import UserPublic
from taskhub.utils.sanitization import sanitize_string, validate_color


# ── Status schemas ──────────────────────────────────────

class StatusCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str

    @field_validator("name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)

    @field_validator("color")
    @classmethod
    def check_color(cls, v):
        return validate_color(v)


class StatusUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=50)
    color: str | None = None

    @field_validator("name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)

    @field_validator("color")
    @classmethod
    def check_color(cls, v):
        return validate_color(v)


class StatusResponse(BaseModel):
    id: int
    project_id: int
    name: str
    color: str

    class Config:
        from_attributes = True


# ── List schemas ────────────────────────────────────────

class ListCreate(BaseModel):
    name: str | None = Field(None, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)


class ListUpdate(ListCreate):
    pass


class ListSummary(BaseModel):
    id: int
    name: str
    project_id: int
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ListResponse(ListSummary):
    task_count: int = 0


# ── Project schemas ─────────────────────────────────────

class ProjectCreate(BaseModel):
    name: str | None = Field(None, max_length=100)
    private: bool | None = None
    workspace_id: int | None = None
    initial_list_name: str | None = Field(None, max_length=100)
    custom_status: list[StatusCreate] = Field(default_factory=list)

    @field_validator("name", "initial_list_name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)


class ProjectUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    private: bool | None = None

    @field_validator("name", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)


class ProjectWorkspace(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class ProjectResponse(BaseModel):
    id: int
    name: str
    owner_id: int
    workspace_id: int | None = None
    private: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
    owner: UserPublic
    workspace: ProjectWorkspace | None = None
    lists: list[ListSummary] = []
    statuses: list[StatusResponse] = []

    class Config:
        from_attributes = True
