from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from taskhub.models.tasks import TaskPriority
from taskhub.utils.sanitization import sanitize_string


class TaskCreate(BaseModel):
    name: str | None = Field(None, max_length=200)
    description: str | None = None
    status_id: int | None = None
    priority: TaskPriority | None = None
    list_id: int | None = None
    responsible_id: int | None = None
    conclusion: datetime | None = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def sanitize(cls, v):
        return sanitize_string(v)


class TaskResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    priority: TaskPriority
    status_id: int
    list_id: int
    owner_id: int
    responsible_id: int | None = None
    conclusion: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
