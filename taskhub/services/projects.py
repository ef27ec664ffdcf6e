import logging

from fastapi import HTTPException
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from taskhub.models.project import List, Project, StatusProject
from taskhub.models.tasks import Task
from taskhub.models.user import User
from taskhub.models.workspace import MembersWorkspace, Workspace
from taskhub.schemas.project import ProjectCreate, ProjectUpdate, StatusCreate, StatusUpdate
from taskhub.services import audit, events
from taskhub.services import permissions as perms
from taskhub.services.events import EventBus

logger = logging.getLogger(__name__)

MODULE = "project"

DEFAULT_LIST_NAME = "To Do"
DEFAULT_STATUSES = (
    ("To Do", "#ef4444"),
    ("In Progress", "#3b82f6"),
    ("In Review", "#f59e0b"),
    ("Done", "#10b981"),
)


def _project_snapshot(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "private": project.private,
        "workspace_id": project.workspace_id,
        "owner_id": project.owner_id,
    }


async def _load_project(db: AsyncSession, project_id: int) -> Project | None:
    result = await db.execute(
        select(Project)
        .options(
            selectinload(Project.owner),
            selectinload(Project.workspace),
            selectinload(Project.lists),
            selectinload(Project.statuses),
        )
        .filter(Project.id == project_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_visible_project(db: AsyncSession, project_id: int, user: User) -> Project:
    """Project the user may see; anything else is reported as missing."""
    result = await db.execute(select(Project).filter(Project.id == project_id))
    project = result.scalars().first()
    if not project or not await perms.can_view_project(db, project, user.id):
        raise HTTPException(status_code=404, detail="Project not found")
    return project


async def get_owned_project(db: AsyncSession, project_id: int, user: User) -> Project:
    project = await get_visible_project(db, project_id, user)
    if project.owner_id != user.id:
        raise HTTPException(status_code=403, detail="Only the project owner can do this")
    return project


async def create_project(db: AsyncSession, data: ProjectCreate, user: User, bus: EventBus) -> Project:
    if not data.name or data.private is None:
        raise HTTPException(status_code=400, detail="Name and private are required")

    workspace = None
    if data.workspace_id is not None:
        workspace = await db.get(Workspace, data.workspace_id)
        if workspace is None or await perms.get_membership(db, workspace.id, user.id) is None:
            raise HTTPException(status_code=403, detail="You are not a member of this workspace")

    project = Project(
        name=data.name,
        owner_id=user.id,
        workspace_id=data.workspace_id,
        private=data.private,
    )
    db.add(project)
    await db.flush()

    db.add(List(name=data.initial_list_name or DEFAULT_LIST_NAME, project_id=project.id))
    statuses = [(s.name, s.color) for s in data.custom_status] or DEFAULT_STATUSES
    for name, color in statuses:
        db.add(StatusProject(project_id=project.id, name=name, color=color))
    # project, first list and statuses are committed together
    await db.commit()

    if workspace is not None and not project.private:
        result = await db.execute(
            select(User.email)
            .join(MembersWorkspace, MembersWorkspace.user_id == User.id)
            .filter(MembersWorkspace.workspace_id == workspace.id, User.id != user.id)
        )
        bus.publish(events.PROJECT_CREATED, {
            "project_id": project.id,
            "project_name": project.name,
            "workspace_id": workspace.id,
            "workspace_name": workspace.name,
            "created_by": user.name,
            "member_emails": list(result.scalars().all()),
        })

    await audit.record(
        db,
        action="project.created",
        module=MODULE,
        entity="Project",
        entity_id=project.id,
        workspace_id=project.workspace_id,
        project_id=project.id,
        actor=audit.actor_of(user),
        after=_project_snapshot(project),
    )
    logger.info("Project %s created by user %s", project.id, user.id)
    return await _load_project(db, project.id)


async def list_projects(db: AsyncSession, user: User, workspace_id: int | None = None) -> list[Project]:
    query = (
        select(Project)
        .options(
            selectinload(Project.owner),
            selectinload(Project.workspace),
            selectinload(Project.lists),
            selectinload(Project.statuses),
        )
        .filter(perms.visible_projects_clause(user.id))
        .order_by(Project.created_at.desc(), Project.id.desc())
        .execution_options(populate_existing=True)
    )
    if workspace_id is not None:
        if await perms.get_membership(db, workspace_id, user.id) is None:
            raise HTTPException(status_code=404, detail="Workspace not found")
        query = query.filter(Project.workspace_id == workspace_id)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_project(db: AsyncSession, project_id: int, user: User) -> Project:
    await get_visible_project(db, project_id, user)
    return await _load_project(db, project_id)


async def update_project(db: AsyncSession, project_id: int, data: ProjectUpdate, user: User) -> Project:
    project = await get_owned_project(db, project_id, user)
    before = _project_snapshot(project)

    if data.name is not None:
        project.name = data.name
    if data.private is not None:
        project.private = data.private
    await db.commit()

    await audit.record(
        db,
        action="project.updated",
        module=MODULE,
        entity="Project",
        entity_id=project.id,
        workspace_id=project.workspace_id,
        project_id=project.id,
        actor=audit.actor_of(user),
        before=before,
        after=_project_snapshot(project),
    )
    return await _load_project(db, project.id)


async def delete_project(db: AsyncSession, project_id: int, user: User) -> None:
    project = await get_owned_project(db, project_id, user)
    before = _project_snapshot(project)

    list_ids = select(List.id).filter(List.project_id == project_id)
    await db.execute(delete(Task).where(Task.list_id.in_(list_ids)))
    await db.execute(delete(List).where(List.project_id == project_id))
    await db.execute(delete(StatusProject).where(StatusProject.project_id == project_id))
    await db.execute(delete(Project).where(Project.id == project_id))
    await db.commit()

    await audit.record(
        db,
        action="project.deleted",
        module=MODULE,
        entity="Project",
        entity_id=project_id,
        workspace_id=before["workspace_id"],
        project_id=project_id,
        actor=audit.actor_of(user),
        before=before,
    )


# ── Statuses ────────────────────────────────────────────

async def _get_owned_status(db: AsyncSession, status_id: int, user: User) -> StatusProject:
    status = await db.get(StatusProject, status_id)
    if not status:
        raise HTTPException(status_code=404, detail="Status not found")
    await get_owned_project(db, status.project_id, user)
    return status


async def add_status(db: AsyncSession, project_id: int, data: StatusCreate, user: User) -> StatusProject:
    await get_owned_project(db, project_id, user)
    status = StatusProject(project_id=project_id, name=data.name, color=data.color)
    db.add(status)
    await db.commit()
    await db.refresh(status)
    return status


async def update_status(db: AsyncSession, status_id: int, data: StatusUpdate, user: User) -> StatusProject:
    status = await _get_owned_status(db, status_id, user)
    if data.name is not None:
        status.name = data.name
    if data.color is not None:
        status.color = data.color
    await db.commit()
    await db.refresh(status)
    return status


async def delete_status(db: AsyncSession, status_id: int, user: User) -> None:
    status = await _get_owned_status(db, status_id, user)
    result = await db.execute(select(func.count(Task.id)).filter(Task.status_id == status_id))
    if result.scalar_one() > 0:
        raise HTTPException(status_code=409, detail="Status is in use by tasks")
    await db.delete(status)
    await db.commit()
