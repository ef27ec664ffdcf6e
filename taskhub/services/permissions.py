"""
Authorization rules for workspace membership.

Every role comparison in the service layer goes through this module so the
MEMBER < ADMIN < OWNER matrix lives in one place.
"""
from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from taskhub.models.project import Project
from taskhub.models.workspace import MembersWorkspace, Role


def has_role(membership: MembersWorkspace | None, minimum: Role) -> bool:
    return membership is not None and Role(membership.role) >= minimum


def require_role(membership: MembersWorkspace | None, minimum: Role, detail: str):
    if not has_role(membership, minimum):
        raise HTTPException(status_code=403, detail=detail)


def can_manage_members(requester: MembersWorkspace | None) -> bool:
    return has_role(requester, Role.ADMIN)


def can_grant_role(requester: MembersWorkspace, role: Role) -> bool:
    # Only an OWNER can create another OWNER
    if role == Role.OWNER:
        return Role(requester.role) == Role.OWNER
    return can_manage_members(requester)


def can_change_role_of(requester: MembersWorkspace, target: MembersWorkspace) -> bool:
    if requester.user_id == target.user_id:
        return False
    if Role(target.role) == Role.OWNER:
        return Role(requester.role) == Role.OWNER
    return can_manage_members(requester)


def can_remove(requester: MembersWorkspace, target: MembersWorkspace) -> bool:
    if requester.user_id == target.user_id:
        return False
    if Role(target.role) == Role.OWNER and Role(requester.role) != Role.OWNER:
        return False
    return can_manage_members(requester)


async def get_membership(db: AsyncSession, workspace_id: int, user_id: int) -> MembersWorkspace | None:
    result = await db.execute(
        select(MembersWorkspace).filter(
            MembersWorkspace.workspace_id == workspace_id,
            MembersWorkspace.user_id == user_id,
        )
    )
    return result.scalars().first()


async def count_owners(db: AsyncSession, workspace_id: int) -> int:
    result = await db.execute(
        select(func.count(MembersWorkspace.id)).filter(
            MembersWorkspace.workspace_id == workspace_id,
            MembersWorkspace.role == Role.OWNER,
        )
    )
    return result.scalar_one()


async def ensure_not_last_owner(db: AsyncSession, target: MembersWorkspace, detail: str):
    """Raise 409 when `target` is the only OWNER left in its workspace."""
    if Role(target.role) != Role.OWNER:
        return
    if await count_owners(db, target.workspace_id) <= 1:
        raise HTTPException(status_code=409, detail=detail)


async def can_view_project(db: AsyncSession, project: Project, user_id: int) -> bool:
    """Owner always; workspace members only when the project is public."""
    if project.owner_id == user_id:
        return True
    if project.private or project.workspace_id is None:
        return False
    return await get_membership(db, project.workspace_id, user_id) is not None


def visible_projects_clause(user_id: int):
    """SQL filter equivalent of can_view_project."""
    member_of = select(MembersWorkspace.workspace_id).filter(MembersWorkspace.user_id == user_id)
    return (Project.owner_id == user_id) | (
        (Project.private.is_(False)) & (Project.workspace_id.in_(member_of))
    )
