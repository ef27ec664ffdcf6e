from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.dependencies import get_current_user, get_db
from taskhub.models.user import User as UserModel
from taskhub.schemas.log import AuditLogResponse
from taskhub.services import audit as audit_service

router = APIRouter(prefix="/logs", tags=["logs"])


@router.get("/", response_model=list[AuditLogResponse])
async def my_logs(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await audit_service.find_by_user(db, current_user.id, limit)
