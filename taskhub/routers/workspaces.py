from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.dependencies import get_current_user, get_db, get_event_bus
from taskhub.models.user import User as UserModel
from taskhub.schemas.workspace import (
    AddMemberRequest,
    AddMemberResponse,
    InvitationAccepted,
    InvitationResponse,
    InvitationTokenRequest,
    MemberRoleUpdated,
    MessageResponse,
    UpdateMemberRoleRequest,
    WorkspaceCreate,
    WorkspaceDetail,
    WorkspaceSummary,
)
from taskhub.services import workspace as workspace_service
from taskhub.services.events import EventBus

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


@router.post("/", response_model=WorkspaceDetail, status_code=status.HTTP_201_CREATED)
async def create_workspace(
    data: WorkspaceCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await workspace_service.create_workspace(db, data, current_user)


@router.get("/", response_model=list[WorkspaceSummary])
async def read_workspaces(
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await workspace_service.read_workspaces(db, current_user)


@router.get("/invitations/pending", response_model=list[InvitationResponse])
async def pending_invitations(
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await workspace_service.get_pending_invitations(db, current_user)


@router.get("/invitations/received", response_model=list[InvitationResponse])
async def received_invitations(
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await workspace_service.get_received_invitations(db, current_user)


@router.post("/accept-invite", response_model=InvitationAccepted)
async def accept_invite(
    data: InvitationTokenRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    member = await workspace_service.accept_invitation(db, data.token, current_user, bus)
    return {"message": "Invitation accepted", "data": member}


@router.post("/decline-invite", response_model=MessageResponse)
async def decline_invite(
    data: InvitationTokenRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    await workspace_service.decline_invitation(db, data.token, current_user, bus)
    return {"message": "Invitation declined"}


@router.get("/{workspace_id}", response_model=WorkspaceDetail)
async def read_workspace(
    workspace_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    return await workspace_service.read_workspace_by_id(db, workspace_id, current_user)


@router.delete("/{workspace_id}", response_model=MessageResponse)
async def delete_workspace(
    workspace_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
):
    await workspace_service.delete_workspace(db, workspace_id, current_user)
    return {"message": "Workspace deleted"}


@router.post("/{workspace_id}/members", response_model=AddMemberResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    workspace_id: int,
    data: AddMemberRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    return await workspace_service.add_member(db, workspace_id, data, current_user, bus)


@router.put("/{workspace_id}/members/{member_id}", response_model=MemberRoleUpdated)
async def update_member_role(
    workspace_id: int,
    member_id: int,
    data: UpdateMemberRoleRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    member = await workspace_service.update_member_role(db, workspace_id, member_id, data.role, current_user, bus)
    return {"message": "Member role updated", "data": member}


@router.delete("/{workspace_id}/members/{member_id}", response_model=MessageResponse)
async def remove_member(
    workspace_id: int,
    member_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    await workspace_service.remove_member(db, workspace_id, member_id, current_user, bus)
    return {"message": "Member removed"}


@router.post("/{workspace_id}/leave", response_model=MessageResponse)
async def leave_workspace(
    workspace_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user),
    bus: EventBus = Depends(get_event_bus),
):
    await workspace_service.leave_workspace(db, workspace_id, current_user, bus)
    return {"message": "You left the workspace"}
