import logging

from fastapi import HTTPException
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from taskhub.models.project import List, Project
from taskhub.models.tasks import Task
from taskhub.models.user import User
from taskhub.models.workspace import Role
from taskhub.schemas.project import ListCreate, ListUpdate
from taskhub.services import audit, events
from taskhub.services import permissions as perms
from taskhub.services.events import EventBus
from taskhub.services.projects import get_visible_project

logger = logging.getLogger(__name__)

MODULE = "list"


async def _task_count(db: AsyncSession, list_id: int) -> int:
    result = await db.execute(select(func.count(Task.id)).filter(Task.list_id == list_id))
    return result.scalar_one()


def _with_count(lst: List, count: int) -> dict:
    return {
        "id": lst.id,
        "name": lst.name,
        "project_id": lst.project_id,
        "created_at": lst.created_at,
        "task_count": count,
    }


async def _get_visible_list(db: AsyncSession, list_id: int, user: User) -> tuple[List, Project]:
    lst = await db.get(List, list_id)
    if not lst:
        raise HTTPException(status_code=404, detail="List not found")
    try:
        project = await get_visible_project(db, lst.project_id, user)
    except HTTPException:
        raise HTTPException(status_code=404, detail="List not found")
    return lst, project


async def _can_manage(db: AsyncSession, project: Project, user: User) -> bool:
    if project.owner_id == user.id:
        return True
    if project.private or project.workspace_id is None:
        return False
    membership = await perms.get_membership(db, project.workspace_id, user.id)
    return perms.has_role(membership, Role.ADMIN)


async def create_list(db: AsyncSession, project_id: int, data: ListCreate, user: User, bus: EventBus) -> dict:
    if not data.name:
        raise HTTPException(status_code=400, detail="List name is required")
    project = await get_visible_project(db, project_id, user)

    lst = List(name=data.name, project_id=project.id)
    db.add(lst)
    await db.commit()

    bus.publish(events.LIST_CREATED, {
        "list_id": lst.id,
        "list_name": lst.name,
        "project_id": project.id,
        "project_name": project.name,
        "created_by": user.name,
    })
    return _with_count(lst, 0)


async def get_lists(db: AsyncSession, project_id: int, user: User) -> list[dict]:
    await get_visible_project(db, project_id, user)
    result = await db.execute(
        select(List, func.count(Task.id))
        .outerjoin(Task, Task.list_id == List.id)
        .filter(List.project_id == project_id)
        .group_by(List.id)
        .order_by(List.created_at, List.id)
    )
    return [_with_count(lst, count) for lst, count in result.all()]


async def get_list(db: AsyncSession, list_id: int, user: User) -> dict:
    lst, _ = await _get_visible_list(db, list_id, user)
    return _with_count(lst, await _task_count(db, lst.id))


async def update_list(db: AsyncSession, list_id: int, data: ListUpdate, user: User) -> dict:
    lst, project = await _get_visible_list(db, list_id, user)
    if not await _can_manage(db, project, user):
        raise HTTPException(status_code=403, detail="You do not have permission to edit this list")
    if not data.name:
        raise HTTPException(status_code=400, detail="List name is required")

    lst.name = data.name
    await db.commit()
    return _with_count(lst, await _task_count(db, lst.id))


async def delete_list(db: AsyncSession, list_id: int, user: User, bus: EventBus, force: bool = False) -> None:
    """
    Delete a list. Without `force` the list must be empty; the forced variant
    is reserved to the project owner and removes the tasks too.
    """
    lst, project = await _get_visible_list(db, list_id, user)
    if force:
        if project.owner_id != user.id:
            raise HTTPException(status_code=403, detail="Only the project owner can force delete a list")
    elif not await _can_manage(db, project, user):
        raise HTTPException(status_code=403, detail="You do not have permission to delete this list")

    count = await _task_count(db, lst.id)
    if count and not force:
        raise HTTPException(status_code=409, detail="List still has tasks. Move or delete them first")

    before = _with_count(lst, count)
    await db.execute(delete(Task).where(Task.list_id == list_id))
    await db.execute(delete(List).where(List.id == list_id))
    await db.commit()

    bus.publish(events.LIST_DELETED, {
        "list_id": list_id,
        "list_name": before["name"],
        "project_id": project.id,
        "project_name": project.name,
        "deleted_by": user.name,
        "deleted_tasks": count,
    })
    await audit.record(
        db,
        action="list.force_deleted" if force else "list.deleted",
        module=MODULE,
        entity="List",
        entity_id=list_id,
        workspace_id=project.workspace_id,
        project_id=project.id,
        actor=audit.actor_of(user),
        before={"id": list_id, "name": before["name"], "task_count": count},
    )


async def duplicate_list(db: AsyncSession, list_id: int, user: User) -> dict:
    lst, project = await _get_visible_list(db, list_id, user)
    copy = List(name=f"{lst.name} (Copy)", project_id=project.id)
    db.add(copy)
    await db.commit()
    return _with_count(copy, 0)
