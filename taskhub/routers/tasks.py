from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.dependencies import get_current_user, get_db
from taskhub.models.user import User as UserModel
from taskhub.schemas.task import TaskCreate, TaskResponse
from taskhub.services import tasks as task_service

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await task_service.create_task(db, task_data, current_user)
