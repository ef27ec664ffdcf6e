import pytest
from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.future import select

from taskhub.models.audit import AuditLog
from taskhub.models.project import Project
from taskhub.models.workspace import Invitation, MembersWorkspace, Role, Workspace
from taskhub.schemas.workspace import AddMemberRequest, WorkspaceCreate
from taskhub.services import events
from taskhub.services import permissions as perms
from taskhub.services import workspace as ws_service


async def owner_count(db, workspace_id):
    result = await db.execute(
        select(func.count(MembersWorkspace.id)).filter(
            MembersWorkspace.workspace_id == workspace_id,
            MembersWorkspace.role == Role.OWNER,
        )
    )
    return result.scalar_one()


async def member_of(db, workspace_id, user_id):
    return await perms.get_membership(db, workspace_id, user_id)


@pytest.fixture
async def team(db, bus, make_user):
    """Workspace owned by u1 with u2 as MEMBER and u3 as ADMIN."""
    u1 = await make_user("Owner", "owner@example.com")
    u2 = await make_user("Member", "member@example.com")
    u3 = await make_user("Admin", "admin@example.com")
    ws = await ws_service.create_workspace(db, WorkspaceCreate(name="Team", color="#123456"), u1)
    await ws_service.add_member(db, ws.id, AddMemberRequest(email=u2.email), u1, bus)
    await ws_service.add_member(db, ws.id, AddMemberRequest(email=u3.email, role=Role.ADMIN), u1, bus)
    return {
        "ws": ws,
        "owner": u1,
        "member": u2,
        "admin": u3,
        "m_owner": await member_of(db, ws.id, u1.id),
        "m_member": await member_of(db, ws.id, u2.id),
        "m_admin": await member_of(db, ws.id, u3.id),
    }


def test_role_ordering():
    assert Role.MEMBER < Role.ADMIN < Role.OWNER
    assert Role.OWNER >= Role.ADMIN
    assert not Role.ADMIN > Role.OWNER
    assert max([Role.ADMIN, Role.OWNER, Role.MEMBER]) == Role.OWNER


async def test_create_workspace_makes_creator_sole_owner(db, make_user):
    u = await make_user("Owner", "owner@example.com")

    ws = await ws_service.create_workspace(db, WorkspaceCreate(name="Team", color="#fff", description="x"), u)

    assert ws.owner_id == u.id
    assert [(m.user_id, m.role) for m in ws.members] == [(u.id, Role.OWNER)]
    summaries = await ws_service.read_workspaces(db, u)
    assert summaries[0]["my_role"] == Role.OWNER


async def test_non_member_cannot_read_workspace(db, team, make_user):
    outsider = await make_user("Out", "out@example.com")
    with pytest.raises(HTTPException) as exc:
        await ws_service.read_workspace_by_id(db, team["ws"].id, outsider)
    assert exc.value.status_code == 404

    with pytest.raises(HTTPException) as exc:
        await ws_service.read_workspace_by_id(db, 9999, team["owner"])
    assert exc.value.status_code == 404


async def test_add_existing_user_directly(db, bus, team):
    assert team["m_member"].role == Role.MEMBER
    assert team["m_admin"].role == Role.ADMIN
    assert team["m_member"].invite_by_id == team["owner"].id

    seen = []
    bus.subscribe(events.WORKSPACE_MEMBER_ADDED, lambda p: _append(seen, p))
    await bus.drain()
    assert {p["email"] for p in seen} == {"member@example.com", "admin@example.com"}


async def _append(seen, payload):
    seen.append(payload)


async def test_add_member_rules(db, bus, team, make_user):
    newcomer = await make_user("New", "new@example.com")

    with pytest.raises(HTTPException) as exc:
        await ws_service.add_member(db, team["ws"].id, AddMemberRequest(email=newcomer.email), team["member"], bus)
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        await ws_service.add_member(
            db, team["ws"].id, AddMemberRequest(email=newcomer.email, role=Role.OWNER), team["admin"], bus
        )
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        await ws_service.add_member(db, team["ws"].id, AddMemberRequest(email=team["member"].email), team["admin"], bus)
    assert exc.value.status_code == 409

    with pytest.raises(HTTPException) as exc:
        await ws_service.add_member(db, 9999, AddMemberRequest(email=newcomer.email), team["owner"], bus)
    assert exc.value.status_code == 404

    result = await ws_service.add_member(db, team["ws"].id, AddMemberRequest(email=newcomer.email), team["admin"], bus)
    assert result["type"] == "ADDED"


async def test_admin_promotions_and_demotions(db, bus, team):
    ws_id = team["ws"].id

    # admin cannot promote to OWNER
    with pytest.raises(HTTPException) as exc:
        await ws_service.update_member_role(db, ws_id, team["m_member"].id, Role.OWNER, team["admin"], bus)
    assert exc.value.status_code == 403

    # admin cannot touch an OWNER
    with pytest.raises(HTTPException) as exc:
        await ws_service.update_member_role(db, ws_id, team["m_owner"].id, Role.MEMBER, team["admin"], bus)
    assert exc.value.status_code == 403

    # nobody changes their own role
    with pytest.raises(HTTPException) as exc:
        await ws_service.update_member_role(db, ws_id, team["m_admin"].id, Role.MEMBER, team["admin"], bus)
    assert exc.value.status_code == 403

    # member has no say
    with pytest.raises(HTTPException) as exc:
        await ws_service.update_member_role(db, ws_id, team["m_admin"].id, Role.MEMBER, team["member"], bus)
    assert exc.value.status_code == 403

    updated = await ws_service.update_member_role(db, ws_id, team["m_member"].id, Role.ADMIN, team["admin"], bus)
    assert updated.role == Role.ADMIN
    assert updated.user.email == "member@example.com"

    with pytest.raises(HTTPException) as exc:
        await ws_service.update_member_role(db, ws_id, 9999, Role.ADMIN, team["owner"], bus)
    assert exc.value.status_code == 404


async def test_last_owner_cannot_be_demoted(db, bus, team):
    ws_id = team["ws"].id
    await ws_service.update_member_role(db, ws_id, team["m_admin"].id, Role.OWNER, team["owner"], bus)
    assert await owner_count(db, ws_id) == 2

    # the new owner demotes the original one, leaving one owner
    await ws_service.update_member_role(db, ws_id, team["m_owner"].id, Role.ADMIN, team["admin"], bus)
    assert await owner_count(db, ws_id) == 1

    # the remaining owner cannot be demoted by anyone
    with pytest.raises(HTTPException) as exc:
        await ws_service.update_member_role(db, ws_id, team["m_admin"].id, Role.MEMBER, team["owner"], bus)
    assert exc.value.status_code == 403
    assert await owner_count(db, ws_id) == 1


async def test_guard_counts_owners(db, team):
    with pytest.raises(HTTPException) as exc:
        await perms.ensure_not_last_owner(db, team["m_owner"], "keep one")
    assert exc.value.status_code == 409
    # non-owners pass straight through
    await perms.ensure_not_last_owner(db, team["m_member"], "keep one")


async def test_remove_member_rules(db, bus, team):
    ws_id = team["ws"].id

    with pytest.raises(HTTPException) as exc:
        await ws_service.remove_member(db, ws_id, team["m_owner"].id, team["admin"], bus)
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        await ws_service.remove_member(db, ws_id, team["m_admin"].id, team["admin"], bus)
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        await ws_service.remove_member(db, ws_id, team["m_admin"].id, team["member"], bus)
    assert exc.value.status_code == 403

    await ws_service.remove_member(db, ws_id, team["m_member"].id, team["admin"], bus)
    assert await member_of(db, ws_id, team["member"].id) is None
    assert await owner_count(db, ws_id) == 1


async def test_owner_can_remove_another_owner(db, bus, team):
    ws_id = team["ws"].id
    await ws_service.update_member_role(db, ws_id, team["m_admin"].id, Role.OWNER, team["owner"], bus)

    await ws_service.remove_member(db, ws_id, team["m_admin"].id, team["owner"], bus)
    assert await owner_count(db, ws_id) == 1


async def test_leave_flow_keeps_an_owner(db, bus, team):
    ws_id = team["ws"].id

    with pytest.raises(HTTPException) as exc:
        await ws_service.leave_workspace(db, ws_id, team["owner"], bus)
    assert exc.value.status_code == 409

    await ws_service.update_member_role(db, ws_id, team["m_member"].id, Role.OWNER, team["owner"], bus)
    await ws_service.leave_workspace(db, ws_id, team["owner"], bus)

    assert await member_of(db, ws_id, team["owner"].id) is None
    remaining = await member_of(db, ws_id, team["member"].id)
    assert remaining.role == Role.OWNER
    assert await owner_count(db, ws_id) == 1

    with pytest.raises(HTTPException) as exc:
        await ws_service.leave_workspace(db, ws_id, team["owner"], bus)
    assert exc.value.status_code == 404


async def workspace_owner_id(db, workspace_id):
    return (await db.get(Workspace, workspace_id, populate_existing=True)).owner_id


async def test_ownership_follows_the_remaining_owner(db, bus, team):
    ws_id = team["ws"].id
    await ws_service.update_member_role(db, ws_id, team["m_member"].id, Role.OWNER, team["owner"], bus)
    await ws_service.leave_workspace(db, ws_id, team["owner"], bus)

    assert await workspace_owner_id(db, ws_id) == team["member"].id

    # the former owner is no longer a member and cannot delete
    with pytest.raises(HTTPException) as exc:
        await ws_service.delete_workspace(db, ws_id, team["owner"])
    assert exc.value.status_code == 403

    await ws_service.delete_workspace(db, ws_id, team["member"])
    assert await db.get(Workspace, ws_id, populate_existing=True) is None


async def test_demoted_or_removed_owner_hands_over_ownership(db, bus, team):
    ws_id = team["ws"].id
    await ws_service.update_member_role(db, ws_id, team["m_admin"].id, Role.OWNER, team["owner"], bus)

    await ws_service.update_member_role(db, ws_id, team["m_owner"].id, Role.ADMIN, team["admin"], bus)
    assert await workspace_owner_id(db, ws_id) == team["admin"].id
    with pytest.raises(HTTPException) as exc:
        await ws_service.delete_workspace(db, ws_id, team["owner"])
    assert exc.value.status_code == 403

    await ws_service.update_member_role(db, ws_id, team["m_member"].id, Role.OWNER, team["admin"], bus)
    await ws_service.remove_member(db, ws_id, team["m_admin"].id, team["member"], bus)
    assert await workspace_owner_id(db, ws_id) == team["member"].id


async def test_member_can_leave(db, bus, team):
    left = []
    bus.subscribe(events.WORKSPACE_MEMBER_LEFT, lambda p: _append(left, p))

    await ws_service.leave_workspace(db, team["ws"].id, team["member"], bus)
    await bus.drain()

    assert left[0]["email"] == "owner@example.com"
    assert left[0]["member_email"] == "member@example.com"


async def test_delete_workspace(db, bus, team):
    ws_id = team["ws"].id
    db.add(Project(name="Shared", owner_id=team["member"].id, workspace_id=ws_id, private=False))
    await db.commit()
    await ws_service.add_member(db, ws_id, AddMemberRequest(email="ghost@example.com"), team["owner"], bus)

    with pytest.raises(HTTPException) as exc:
        await ws_service.delete_workspace(db, ws_id, team["admin"])
    assert exc.value.status_code == 403

    await ws_service.delete_workspace(db, ws_id, team["owner"])

    assert await db.get(Workspace, ws_id, populate_existing=True) is None
    members = (await db.execute(select(MembersWorkspace).filter(MembersWorkspace.workspace_id == ws_id))).scalars().all()
    invites = (await db.execute(select(Invitation).filter(Invitation.workspace_id == ws_id))).scalars().all()
    assert members == [] and invites == []

    project = (await db.execute(
        select(Project).filter(Project.name == "Shared").execution_options(populate_existing=True)
    )).scalars().one()
    assert project.workspace_id is None


async def test_mutations_are_audited(db, bus, team):
    await ws_service.update_member_role(db, team["ws"].id, team["m_member"].id, Role.ADMIN, team["owner"], bus)

    logs = (await db.execute(
        select(AuditLog).filter(AuditLog.action == "workspace.member.role.updated")
    )).scalars().all()
    assert len(logs) == 1
    assert logs[0].actor == {"id": team["owner"].id, "email": "owner@example.com", "role": "OWNER"}
    assert logs[0].changes["before"]["role"] == "MEMBER"
    assert logs[0].changes["after"]["role"] == "ADMIN"
    assert logs[0].workspace_id == team["ws"].id
