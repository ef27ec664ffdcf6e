from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from taskhub.models.project import List, StatusProject
from taskhub.models.tasks import Task
from taskhub.models.user import User
from taskhub.schemas.task import TaskCreate
from taskhub.services import permissions as perms
from taskhub.services.projects import get_visible_project


async def create_task(db: AsyncSession, data: TaskCreate, user: User) -> Task:
    if not data.name or data.status_id is None or data.priority is None:
        raise HTTPException(status_code=400, detail="Name, status_id and priority are required")

    status = await db.get(StatusProject, data.status_id)
    if not status:
        raise HTTPException(status_code=404, detail="Status not found")
    try:
        project = await get_visible_project(db, status.project_id, user)
    except HTTPException:
        raise HTTPException(status_code=404, detail="Status not found")

    if data.list_id is not None:
        lst = await db.get(List, data.list_id)
        if not lst or lst.project_id != project.id:
            raise HTTPException(status_code=404, detail="List not found in this project")
    else:
        result = await db.execute(
            select(List).filter(List.project_id == project.id).order_by(List.created_at, List.id)
        )
        lst = result.scalars().first()
        if not lst:
            raise HTTPException(status_code=404, detail="Project has no list to hold the task")

    if data.responsible_id is not None and data.responsible_id != user.id:
        responsible = await db.get(User, data.responsible_id)
        if responsible is None or not await perms.can_view_project(db, project, responsible.id):
            raise HTTPException(status_code=404, detail="Responsible user not found")

    task = Task(
        name=data.name,
        description=data.description,
        priority=data.priority,
        status_id=status.id,
        list_id=lst.id,
        owner_id=user.id,
        responsible_id=data.responsible_id,
        conclusion=data.conclusion,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task
