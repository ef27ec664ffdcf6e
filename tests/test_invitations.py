from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select

from taskhub.models.workspace import Invitation, MembersWorkspace, Role
from taskhub.schemas.user import RegisterRequest
from taskhub.schemas.workspace import AddMemberRequest, WorkspaceCreate
from taskhub.services import auth as auth_service
from taskhub.services import events
from taskhub.services import workspace as ws_service
from taskhub.services.permissions import count_owners, get_membership
from taskhub.utils.timeutils import ensure_aware, utcnow


@pytest.fixture
async def owner_ws(db, make_user):
    owner = await make_user("Owner", "owner@example.com")
    ws = await ws_service.create_workspace(db, WorkspaceCreate(name="Team", color="#123456"), owner)
    return owner, ws


async def invitation_for(db, email):
    result = await db.execute(
        select(Invitation).filter(Invitation.email == email).execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def age_invitation(db, invitation, days):
    await db.execute(
        update(Invitation)
        .where(Invitation.id == invitation.id)
        .values(created_at=utcnow() - timedelta(days=days))
    )
    await db.commit()


async def test_invite_to_unknown_email_creates_invitation(db, bus, owner_ws):
    owner, ws = owner_ws
    sent = []
    bus.subscribe(events.WORKSPACE_INVITE, lambda p: _collect(sent, p))

    result = await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    await bus.drain()

    assert result == {"message": "Invitation sent", "type": "INVITE"}
    inv = await invitation_for(db, "a@x.com")
    assert inv.accepted_at is None
    assert inv.invite_by_id == owner.id
    assert len(inv.token) >= 32
    assert inv.expires_at - ensure_aware(inv.created_at) == timedelta(days=7)
    assert sent[0]["token"] == inv.token
    assert sent[0]["workspace_name"] == "Team"


async def _collect(bucket, payload):
    bucket.append(payload)


async def test_second_pending_invite_conflicts(db, bus, owner_ws):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)

    with pytest.raises(HTTPException) as exc:
        await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    assert exc.value.status_code == 409


async def test_expired_invite_is_replaced(db, bus, owner_ws):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    old = await invitation_for(db, "a@x.com")
    old_token = old.token
    await age_invitation(db, old, days=8)

    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)

    invites = (await db.execute(select(Invitation).filter(Invitation.email == "a@x.com"))).scalars().all()
    assert len(invites) == 1
    assert invites[0].token != old_token


async def test_full_invitation_flow(db, bus, owner_ws):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    inv = await invitation_for(db, "a@x.com")

    registered = await auth_service.register(
        db, RegisterRequest(name="A", email="a@x.com", password="pw123456"), bus
    )
    invitee = await auth_service.get_user_by_email(db, "a@x.com")
    assert invitee.id == registered["user"].id

    received = await ws_service.get_received_invitations(db, invitee)
    assert [i.token for i in received] == [inv.token]

    member = await ws_service.accept_invitation(db, inv.token, invitee, bus)

    assert (member.workspace_id, member.user_id, member.role) == (ws.id, invitee.id, Role.MEMBER)
    accepted = await invitation_for(db, "a@x.com")
    assert accepted.accepted_at is not None
    assert accepted.accepted_by_user_id == invitee.id
    assert await count_owners(db, ws.id) == 1
    assert (await get_membership(db, ws.id, owner.id)).role == Role.OWNER

    assert await ws_service.get_pending_invitations(db, owner) == []


async def test_accepting_twice_fails(db, bus, owner_ws, make_user):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    invitee = await make_user("A", "a@x.com")
    token = (await invitation_for(db, "a@x.com")).token

    await ws_service.accept_invitation(db, token, invitee, bus)
    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, token, invitee, bus)
    assert exc.value.status_code in (404, 409)

    rows = (await db.execute(select(MembersWorkspace).filter(MembersWorkspace.user_id == invitee.id))).scalars().all()
    assert len(rows) == 1


async def test_accept_loses_race_when_already_claimed(db, bus, owner_ws, make_user, monkeypatch):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    invitee = await make_user("A", "a@x.com")
    inv = await invitation_for(db, "a@x.com")
    ws_id, invitee_id, token = ws.id, invitee.id, inv.token

    real_check = ws_service._get_invitation_for_user

    async def check_then_claim_elsewhere(db_, token, user):
        found = await real_check(db_, token, user)
        # another request accepts between the checks and the claim
        await db_.execute(
            update(Invitation)
            .where(Invitation.id == found.id)
            .values(accepted_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db_.commit()
        return found

    monkeypatch.setattr(ws_service, "_get_invitation_for_user", check_then_claim_elsewhere)

    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, token, invitee, bus)
    assert exc.value.status_code == 404
    assert await get_membership(db, ws_id, invitee_id) is None


async def test_accept_error_cases(db, bus, owner_ws, make_user):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    inv = await invitation_for(db, "a@x.com")
    invitee = await make_user("A", "a@x.com")
    stranger = await make_user("B", "b@x.com")

    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, None, invitee, bus)
    assert exc.value.status_code == 400

    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, "no-such-token", invitee, bus)
    assert exc.value.status_code == 404

    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, inv.token, stranger, bus)
    assert exc.value.status_code == 403

    # already a member through some other path
    db.add(MembersWorkspace(workspace_id=ws.id, user_id=invitee.id, role=Role.MEMBER))
    await db.commit()
    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, inv.token, invitee, bus)
    assert exc.value.status_code == 409


async def test_expired_invitation_cannot_be_accepted_but_can_be_declined(db, bus, owner_ws, make_user):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    inv = await invitation_for(db, "a@x.com")
    token = inv.token
    await age_invitation(db, inv, days=8)
    invitee = await make_user("A", "a@x.com")

    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, token, invitee, bus)
    assert exc.value.status_code == 410
    assert await ws_service.get_pending_invitations(db, owner) == []

    await ws_service.decline_invitation(db, token, invitee, bus)

    assert await invitation_for(db, "a@x.com") is None
    assert await get_membership(db, ws.id, invitee.id) is None


async def test_invitation_email_must_match_exactly(db, bus, owner_ws, make_user):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="Ann@x.com"), owner, bus)
    inv = await invitation_for(db, "Ann@x.com")
    lower = await make_user("Ann", "ann@x.com")

    assert await ws_service.get_received_invitations(db, lower) == []
    with pytest.raises(HTTPException) as exc:
        await ws_service.accept_invitation(db, inv.token, lower, bus)
    assert exc.value.status_code == 403
    with pytest.raises(HTTPException) as exc:
        await ws_service.decline_invitation(db, inv.token, lower, bus)
    assert exc.value.status_code == 403

    assert await get_membership(db, ws.id, lower.id) is None
    assert (await invitation_for(db, "Ann@x.com")).accepted_at is None


async def test_only_one_open_invitation_per_email(db, owner_ws):
    owner, ws = owner_ws
    db.add(Invitation(email="a@x.com", workspace_id=ws.id, token="used", accepted_at=utcnow()))
    db.add(Invitation(email="a@x.com", workspace_id=ws.id, token="open-1"))
    await db.commit()

    # a concurrent invite that slipped past the pending check
    db.add(Invitation(email="a@x.com", workspace_id=ws.id, token="open-2"))
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()

    tokens = (await db.execute(
        select(Invitation.token).filter(Invitation.workspace_id == ws.id).order_by(Invitation.token)
    )).scalars().all()
    assert tokens == ["open-1", "used"]


async def test_decline_deletes_invitation(db, bus, owner_ws, make_user):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="a@x.com"), owner, bus)
    inv = await invitation_for(db, "a@x.com")
    invitee = await make_user("A", "a@x.com")
    stranger = await make_user("B", "b@x.com")
    declined = []
    bus.subscribe(events.WORKSPACE_INVITATION_DECLINED, lambda p: _collect(declined, p))

    with pytest.raises(HTTPException) as exc:
        await ws_service.decline_invitation(db, inv.token, stranger, bus)
    assert exc.value.status_code == 403

    await ws_service.decline_invitation(db, inv.token, invitee, bus)
    await bus.drain()

    assert await invitation_for(db, "a@x.com") is None
    assert declined[0]["email"] == "owner@example.com"
    assert await get_membership(db, ws.id, invitee.id) is None


async def test_pending_invitations_newest_first(db, bus, owner_ws):
    owner, ws = owner_ws
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="first@x.com"), owner, bus)
    first = await invitation_for(db, "first@x.com")
    await age_invitation(db, first, days=1)
    await ws_service.add_member(db, ws.id, AddMemberRequest(email="second@x.com"), owner, bus)

    pending = await ws_service.get_pending_invitations(db, owner)

    assert [i.email for i in pending] == ["second@x.com", "first@x.com"]
    assert all(i.expires_at > utcnow() for i in pending)
