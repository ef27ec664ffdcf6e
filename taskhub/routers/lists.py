from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.dependencies import get_current_user, get_db, get_event_bus
from taskhub.models.user import User as UserModel
from taskhub.schemas.project import ListCreate, ListResponse, ListUpdate
from taskhub.services import lists as list_service
from taskhub.services.events import EventBus

router = APIRouter(prefix="/lists", tags=["lists"])


@router.post("/project/{project_id}", response_model=ListResponse, status_code=status.HTTP_201_CREATED)
async def create_list(
    project_id: int,
    data: ListCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    return await list_service.create_list(db, project_id, data, current_user, bus)


@router.get("/project/{project_id}", response_model=list[ListResponse])
async def get_lists(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await list_service.get_lists(db, project_id, current_user)


@router.get("/{list_id}", response_model=ListResponse)
async def get_list(
    list_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await list_service.get_list(db, list_id, current_user)


@router.put("/{list_id}", response_model=ListResponse)
async def update_list(
    list_id: int,
    data: ListUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await list_service.update_list(db, list_id, data, current_user)


@router.delete("/{list_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_list(
    list_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    await list_service.delete_list(db, list_id, current_user, bus)


@router.delete("/{list_id}/force", status_code=status.HTTP_204_NO_CONTENT)
async def force_delete_list(
    list_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    await list_service.delete_list(db, list_id, current_user, bus, force=True)


@router.post("/{list_id}/duplicate", response_model=ListResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_list(
    list_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await list_service.duplicate_list(db, list_id, current_user)
