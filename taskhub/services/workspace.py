import logging
import secrets

from fastapi import HTTPException
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from taskhub.models.project import Project
from taskhub.models.user import User
from taskhub.models.workspace import Invitation, MembersWorkspace, Role, Workspace
from taskhub.schemas.workspace import AddMemberRequest, WorkspaceCreate
from taskhub.services import audit, events
from taskhub.services import permissions as perms
from taskhub.services.events import EventBus
from taskhub.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

MODULE = "workspace"


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def _member_snapshot(member: MembersWorkspace) -> dict:
    return {
        "id": member.id,
        "workspace_id": member.workspace_id,
        "user_id": member.user_id,
        "role": Role(member.role).value,
    }


def _workspace_snapshot(workspace: Workspace) -> dict:
    return {
        "id": workspace.id,
        "name": workspace.name,
        "color": workspace.color,
        "description": workspace.description,
        "owner_id": workspace.owner_id,
    }


async def _get_workspace(db: AsyncSession, workspace_id: int) -> Workspace:
    result = await db.execute(select(Workspace).filter(Workspace.id == workspace_id))
    workspace = result.scalars().first()
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


async def _load_member(db: AsyncSession, member_id: int) -> MembersWorkspace:
    result = await db.execute(
        select(MembersWorkspace)
        .options(selectinload(MembersWorkspace.user))
        .filter(MembersWorkspace.id == member_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().one()


async def _hand_over_ownership(db: AsyncSession, workspace: Workspace, departing_user_id: int):
    """Move owner_id to the longest-standing other OWNER when its holder stops being one."""
    if workspace.owner_id != departing_user_id:
        return
    result = await db.execute(
        select(MembersWorkspace.user_id)
        .filter(
            MembersWorkspace.workspace_id == workspace.id,
            MembersWorkspace.role == Role.OWNER,
            MembersWorkspace.user_id != departing_user_id,
        )
        .order_by(MembersWorkspace.created_at, MembersWorkspace.id)
    )
    successor_id = result.scalars().first()
    if successor_id is not None:
        workspace.owner_id = successor_id


# ── Workspaces ──────────────────────────────────────────

async def create_workspace(db: AsyncSession, data: WorkspaceCreate, user: User) -> Workspace:
    if not data.name or not data.color:
        raise HTTPException(status_code=400, detail="Name and color are required")

    workspace = Workspace(
        name=data.name,
        color=data.color,
        description=data.description,
        owner_id=user.id,
    )
    db.add(workspace)
    await db.flush()
    db.add(MembersWorkspace(workspace_id=workspace.id, user_id=user.id, role=Role.OWNER))
    # workspace and owner membership land together or not at all
    await db.commit()

    await audit.record(
        db,
        action="workspace.created",
        module=MODULE,
        entity="Workspace",
        entity_id=workspace.id,
        workspace_id=workspace.id,
        actor=audit.actor_of(user, Role.OWNER),
        after=_workspace_snapshot(workspace),
    )
    logger.info("Workspace %s created by user %s", workspace.id, user.id)
    return await read_workspace_by_id(db, workspace.id, user)


async def read_workspaces(db: AsyncSession, user: User) -> list[dict]:
    result = await db.execute(
        select(Workspace, MembersWorkspace.role)
        .join(MembersWorkspace, MembersWorkspace.workspace_id == Workspace.id)
        .filter(MembersWorkspace.user_id == user.id)
        .order_by(Workspace.created_at.desc(), Workspace.id.desc())
    )
    return [
        {
            "id": ws.id,
            "name": ws.name,
            "color": ws.color,
            "description": ws.description,
            "owner_id": ws.owner_id,
            "created_at": ws.created_at,
            "my_role": role,
        }
        for ws, role in result.all()
    ]


async def read_workspace_by_id(db: AsyncSession, workspace_id: int, user: User) -> Workspace:
    """Workspace with its members. Non-members get the same 404 as a missing id."""
    if await perms.get_membership(db, workspace_id, user.id) is None:
        raise HTTPException(status_code=404, detail="Workspace not found")

    result = await db.execute(
        select(Workspace)
        .options(selectinload(Workspace.members).selectinload(MembersWorkspace.user))
        .filter(Workspace.id == workspace_id)
        .execution_options(populate_existing=True)
    )
    workspace = result.scalars().first()
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


async def delete_workspace(db: AsyncSession, workspace_id: int, user: User) -> None:
    workspace = await _get_workspace(db, workspace_id)
    membership = await perms.get_membership(db, workspace_id, user.id)
    if workspace.owner_id != user.id or not perms.has_role(membership, Role.OWNER):
        raise HTTPException(status_code=403, detail="Only the workspace owner can delete it")

    before = _workspace_snapshot(workspace)
    await db.execute(delete(MembersWorkspace).where(MembersWorkspace.workspace_id == workspace_id))
    await db.execute(delete(Invitation).where(Invitation.workspace_id == workspace_id))
    # projects survive as personal projects of their owners
    await db.execute(update(Project).where(Project.workspace_id == workspace_id).values(workspace_id=None))
    await db.execute(delete(Workspace).where(Workspace.id == workspace_id))
    await db.commit()

    await audit.record(
        db,
        action="workspace.deleted",
        module=MODULE,
        entity="Workspace",
        entity_id=workspace_id,
        workspace_id=workspace_id,
        actor=audit.actor_of(user, Role.OWNER),
        before=before,
    )
    logger.info("Workspace %s deleted by user %s", workspace_id, user.id)


# ── Members ─────────────────────────────────────────────

async def add_member(
    db: AsyncSession, workspace_id: int, data: AddMemberRequest, user: User, bus: EventBus
) -> dict:
    """
    Invite an email into a workspace.

    An address without an account gets an Invitation (and an invite email);
    an existing user is added straight away with the requested role.
    """
    email = data.email.strip()
    role = Role(data.role)

    workspace = await _get_workspace(db, workspace_id)
    requester = await perms.get_membership(db, workspace_id, user.id)
    if not perms.can_manage_members(requester):
        raise HTTPException(status_code=403, detail="Only owners and admins can add members")
    if not perms.can_grant_role(requester, role):
        raise HTTPException(status_code=403, detail="Only an owner can grant the OWNER role")

    invited_user = await _get_user_by_email(db, email)

    if invited_user is None:
        result = await db.execute(
            select(Invitation).filter(
                Invitation.workspace_id == workspace_id,
                Invitation.email == email,
                Invitation.accepted_at.is_(None),
            )
        )
        pending = result.scalars().all()
        if any(not inv.is_expired() for inv in pending):
            raise HTTPException(status_code=409, detail="An invitation is already pending for this email")
        if pending:
            # stale rows must be gone before the insert hits the open-invitation index
            await db.execute(delete(Invitation).where(Invitation.id.in_([inv.id for inv in pending])))

        invitation = Invitation(
            email=email,
            workspace_id=workspace_id,
            token=_new_token(),
            invite_by_id=user.id,
        )
        db.add(invitation)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise HTTPException(status_code=409, detail="An invitation is already pending for this email")

        bus.publish(events.WORKSPACE_INVITE, {
            "email": email,
            "token": invitation.token,
            "workspace_id": workspace_id,
            "workspace_name": workspace.name,
            "invited_by": user.name,
        })
        await audit.record(
            db,
            action="workspace.member.invited",
            module=MODULE,
            entity="Invitation",
            entity_id=invitation.id,
            workspace_id=workspace_id,
            actor=audit.actor_of(user, requester.role),
            after={"email": email, "workspace_id": workspace_id},
        )
        return {"message": "Invitation sent", "type": "INVITE"}

    if await perms.get_membership(db, workspace_id, invited_user.id):
        raise HTTPException(status_code=409, detail="User is already a member of this workspace")

    member = MembersWorkspace(
        workspace_id=workspace_id,
        user_id=invited_user.id,
        role=role,
        invite_by_id=user.id,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="User is already a member of this workspace")

    bus.publish(events.WORKSPACE_MEMBER_ADDED, {
        "email": invited_user.email,
        "name": invited_user.name,
        "workspace_id": workspace_id,
        "workspace_name": workspace.name,
        "role": role.value,
        "added_by": user.name,
    })
    await audit.record(
        db,
        action="workspace.member.added",
        module=MODULE,
        entity="MembersWorkspace",
        entity_id=member.id,
        workspace_id=workspace_id,
        actor=audit.actor_of(user, requester.role),
        after=_member_snapshot(member),
    )
    return {"message": "User added to workspace", "type": "ADDED"}


async def _get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).filter(User.email == email))
    return result.scalars().first()


async def _get_target_member(db: AsyncSession, workspace_id: int, member_id: int) -> MembersWorkspace:
    result = await db.execute(
        select(MembersWorkspace)
        .options(selectinload(MembersWorkspace.user))
        .filter(MembersWorkspace.id == member_id, MembersWorkspace.workspace_id == workspace_id)
    )
    member = result.scalars().first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member


async def update_member_role(
    db: AsyncSession, workspace_id: int, member_id: int, role: Role, user: User, bus: EventBus
) -> MembersWorkspace:
    role = Role(role)
    workspace = await _get_workspace(db, workspace_id)
    requester = await perms.get_membership(db, workspace_id, user.id)
    if not perms.can_manage_members(requester):
        raise HTTPException(status_code=403, detail="Only owners and admins can change roles")

    target = await _get_target_member(db, workspace_id, member_id)
    if target.user_id == user.id:
        raise HTTPException(status_code=403, detail="You cannot change your own role")
    if not perms.can_grant_role(requester, role):
        raise HTTPException(status_code=403, detail="Only an owner can promote to OWNER")
    if not perms.can_change_role_of(requester, target):
        raise HTTPException(status_code=403, detail="Only an owner can change another owner's role")
    if role != Role.OWNER:
        await perms.ensure_not_last_owner(db, target, "A workspace must keep at least one owner")

    before = _member_snapshot(target)
    target.role = role
    if role != Role.OWNER:
        await _hand_over_ownership(db, workspace, target.user_id)
    await db.commit()

    bus.publish(events.WORKSPACE_MEMBER_ROLE_UPDATED, {
        "email": target.user.email,
        "name": target.user.name,
        "workspace_id": workspace_id,
        "workspace_name": workspace.name,
        "old_role": before["role"],
        "new_role": role.value,
        "updated_by": user.name,
    })
    await audit.record(
        db,
        action="workspace.member.role.updated",
        module=MODULE,
        entity="MembersWorkspace",
        entity_id=target.id,
        workspace_id=workspace_id,
        actor=audit.actor_of(user, requester.role),
        before=before,
        after=_member_snapshot(target),
    )
    return await _load_member(db, target.id)


async def remove_member(
    db: AsyncSession, workspace_id: int, member_id: int, user: User, bus: EventBus
) -> None:
    workspace = await _get_workspace(db, workspace_id)
    requester = await perms.get_membership(db, workspace_id, user.id)
    if not perms.can_manage_members(requester):
        raise HTTPException(status_code=403, detail="Only owners and admins can remove members")

    target = await _get_target_member(db, workspace_id, member_id)
    if target.user_id == user.id:
        raise HTTPException(status_code=403, detail="You cannot remove yourself, leave the workspace instead")
    if not perms.can_remove(requester, target):
        raise HTTPException(status_code=403, detail="Admins cannot remove an owner")
    await perms.ensure_not_last_owner(db, target, "A workspace must keep at least one owner")

    before = _member_snapshot(target)
    removed_email, removed_name = target.user.email, target.user.name
    await _hand_over_ownership(db, workspace, target.user_id)
    await db.delete(target)
    await db.commit()

    bus.publish(events.WORKSPACE_MEMBER_REMOVED, {
        "email": removed_email,
        "name": removed_name,
        "workspace_id": workspace_id,
        "workspace_name": workspace.name,
        "removed_by": user.name,
    })
    await audit.record(
        db,
        action="workspace.member.removed",
        module=MODULE,
        entity="MembersWorkspace",
        entity_id=before["id"],
        workspace_id=workspace_id,
        actor=audit.actor_of(user, requester.role),
        before=before,
    )


async def leave_workspace(db: AsyncSession, workspace_id: int, user: User, bus: EventBus) -> None:
    membership = await perms.get_membership(db, workspace_id, user.id)
    if membership is None:
        raise HTTPException(status_code=404, detail="You are not a member of this workspace")
    await perms.ensure_not_last_owner(
        db, membership, "You are the only owner. Promote another member to owner before leaving"
    )

    workspace = await _get_workspace(db, workspace_id)
    await _hand_over_ownership(db, workspace, user.id)
    owner = await db.get(User, workspace.owner_id)
    before = _member_snapshot(membership)
    await db.delete(membership)
    await db.commit()

    bus.publish(events.WORKSPACE_MEMBER_LEFT, {
        "email": owner.email if owner else None,
        "member_name": user.name,
        "member_email": user.email,
        "workspace_id": workspace_id,
        "workspace_name": workspace.name,
    })
    await audit.record(
        db,
        action="workspace.member.left",
        module=MODULE,
        entity="MembersWorkspace",
        entity_id=before["id"],
        workspace_id=workspace_id,
        actor=audit.actor_of(user, before["role"]),
        before=before,
    )


# ── Invitations ─────────────────────────────────────────

async def _get_invitation_for_user(
    db: AsyncSession, token: str | None, user: User, check_expiry: bool = True
) -> Invitation:
    """Shared checks for accept and decline. Decline works on expired invitations too."""
    if not token:
        raise HTTPException(status_code=400, detail="Invitation token is required")

    result = await db.execute(
        select(Invitation)
        .options(selectinload(Invitation.workspace), selectinload(Invitation.invite_by))
        .filter(Invitation.token == token, Invitation.accepted_at.is_(None))
    )
    invitation = result.scalars().first()
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation not found or already used")
    if check_expiry and invitation.is_expired():
        raise HTTPException(status_code=410, detail="Invitation has expired")
    # same exact match the received-invitations listing uses
    if invitation.email != user.email:
        raise HTTPException(status_code=403, detail="This invitation was sent to a different email")
    return invitation


async def accept_invitation(db: AsyncSession, token: str | None, user: User, bus: EventBus) -> MembersWorkspace:
    invitation = await _get_invitation_for_user(db, token, user)
    if await perms.get_membership(db, invitation.workspace_id, user.id):
        raise HTTPException(status_code=409, detail="You are already a member of this workspace")

    # Claim the invitation inside the transaction; a concurrent accept that
    # got there first leaves nothing to update.
    claimed = await db.execute(
        update(Invitation)
        .where(Invitation.id == invitation.id, Invitation.accepted_at.is_(None))
        .values(accepted_at=utcnow(), accepted_by_user_id=user.id)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 0:
        await db.rollback()
        raise HTTPException(status_code=404, detail="Invitation not found or already used")

    member = MembersWorkspace(
        workspace_id=invitation.workspace_id,
        user_id=user.id,
        role=Role.MEMBER,
        invite_by_id=invitation.invite_by_id,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=409, detail="You are already a member of this workspace")

    inviter = invitation.invite_by
    bus.publish(events.WORKSPACE_INVITATION_ACCEPTED, {
        "email": inviter.email if inviter else None,
        "inviter_name": inviter.name if inviter else None,
        "member_name": user.name,
        "member_email": user.email,
        "workspace_id": invitation.workspace_id,
        "workspace_name": invitation.workspace.name,
    })
    await audit.record(
        db,
        action="workspace.invitation.accepted",
        module=MODULE,
        entity="Invitation",
        entity_id=invitation.id,
        workspace_id=invitation.workspace_id,
        actor=audit.actor_of(user, Role.MEMBER),
        after=_member_snapshot(member),
    )
    return await _load_member(db, member.id)


async def decline_invitation(db: AsyncSession, token: str | None, user: User, bus: EventBus) -> None:
    invitation = await _get_invitation_for_user(db, token, user, check_expiry=False)
    inviter = invitation.invite_by
    workspace_id, workspace_name = invitation.workspace_id, invitation.workspace.name
    invitation_id = invitation.id

    await db.delete(invitation)
    await db.commit()

    bus.publish(events.WORKSPACE_INVITATION_DECLINED, {
        "email": inviter.email if inviter else None,
        "inviter_name": inviter.name if inviter else None,
        "invitee_email": user.email,
        "workspace_id": workspace_id,
        "workspace_name": workspace_name,
    })
    await audit.record(
        db,
        action="workspace.invitation.declined",
        module=MODULE,
        entity="Invitation",
        entity_id=invitation_id,
        workspace_id=workspace_id,
        actor=audit.actor_of(user),
    )


async def _open_invitations(db: AsyncSession, *criteria) -> list[Invitation]:
    result = await db.execute(
        select(Invitation)
        .options(selectinload(Invitation.workspace), selectinload(Invitation.invite_by))
        .filter(Invitation.accepted_at.is_(None), *criteria)
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
    )
    return [inv for inv in result.scalars().all() if not inv.is_expired()]


async def get_pending_invitations(db: AsyncSession, user: User) -> list[Invitation]:
    """Invitations the user sent that are still waiting for an answer."""
    return await _open_invitations(db, Invitation.invite_by_id == user.id)


async def get_received_invitations(db: AsyncSession, user: User) -> list[Invitation]:
    return await _open_invitations(db, Invitation.email == user.email)
