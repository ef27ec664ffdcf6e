from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class AuditLogResponse(BaseModel):
    id: int
    type: str
    action: str
    module: str
    entity: str
    entity_id: str
    workspace_id: int | None = None
    project_id: int | None = None
    actor: dict[str, Any]
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = Field(None, validation_alias="extra")
    created_at: datetime | None = None

    class Config:
        from_attributes = True
