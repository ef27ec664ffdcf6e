from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.dependencies import get_current_user, get_db, get_event_bus
from taskhub.models.user import User as UserModel
from taskhub.schemas.project import (
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    StatusCreate,
    StatusResponse,
    StatusUpdate,
)
from taskhub.services import projects as project_service
from taskhub.services.events import EventBus

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("/", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    return await project_service.create_project(db, data, current_user, bus)


@router.get("/", response_model=list[ProjectResponse])
async def list_projects(
    workspace_id: int | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await project_service.list_projects(db, current_user, workspace_id)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await project_service.get_project(db, project_id, current_user)


@router.put("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: int,
    data: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await project_service.update_project(db, project_id, data, current_user)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    await project_service.delete_project(db, project_id, current_user)


@router.post("/{project_id}/status", response_model=StatusResponse, status_code=status.HTTP_201_CREATED)
async def add_status(
    project_id: int,
    data: StatusCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await project_service.add_status(db, project_id, data, current_user)


@router.put("/status/{status_id}", response_model=StatusResponse)
async def update_status(
    status_id: int,
    data: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await project_service.update_status(db, status_id, data, current_user)


@router.delete("/status/{status_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_status(
    status_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    await project_service.delete_status(db, status_id, current_user)
