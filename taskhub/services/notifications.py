"""
Email listeners for domain events.

Each listener renders a small HTML template and queues it through the
email worker. Payloads already carry the recipient, so listeners never
touch the request's database session.
"""
import html
import logging
from urllib.parse import urlencode

from taskhub.config import settings
from taskhub.services import email_worker, events
from taskhub.services.events import EventBus

logger = logging.getLogger(__name__)


def _layout(title: str, body: str, action_url: str | None = None, action_label: str | None = None) -> str:
    button = ""
    if action_url:
        button = (
            f'<p style="margin:24px 0"><a href="{html.escape(action_url)}" '
            f'style="background:#3b82f6;color:#fff;padding:10px 18px;border-radius:6px;'
            f'text-decoration:none">{html.escape(action_label or "Open")}</a></p>'
        )
    return (
        '<div style="font-family:Arial,sans-serif;max-width:560px;margin:auto;color:#111827">'
        f"<h2>{html.escape(title)}</h2>"
        f"{body}"
        f"{button}"
        f'<p style="color:#6b7280;font-size:12px">{html.escape(settings.APP_NAME)}</p>'
        "</div>"
    )


def _p(text: str) -> str:
    return f"<p>{html.escape(text)}</p>"


def accept_invite_url(token: str) -> str:
    return f"{settings.APP_URL}/workspace/accept-invite?{urlencode({'token': token})}"


async def _send(event_name: str, to_email: str | None, subject: str, body: str):
    if not to_email:
        logger.warning("[EVENTS] No recipient for %s, email dropped", event_name)
        return
    await email_worker.enqueue_email(subject, body, to_email, event_name=event_name)


async def send_welcome(payload: dict):
    body = _layout(
        f"Welcome to {settings.APP_NAME}, {payload['name']}!",
        _p("Your account is ready. Create a workspace or accept an invitation to get started."),
        settings.APP_URL,
        "Open the app",
    )
    await _send(events.AUTH_REGISTERED, payload["email"], f"Welcome to {settings.APP_NAME}", body)


async def send_workspace_invite(payload: dict):
    body = _layout(
        f"You were invited to {payload['workspace_name']}",
        _p(f"{payload['invited_by']} invited you to join the workspace {payload['workspace_name']}.")
        + _p(f"The invitation is valid for {settings.INVITATION_EXPIRE_DAYS} days. "
             "Create an account with this email address, then accept it."),
        accept_invite_url(payload["token"]),
        "Accept invitation",
    )
    await _send(events.WORKSPACE_INVITE, payload["email"], f"Invitation to {payload['workspace_name']}", body)


async def send_member_added(payload: dict):
    body = _layout(
        f"You joined {payload['workspace_name']}",
        _p(f"Hello {payload['name']}, {payload['added_by']} added you to "
           f"{payload['workspace_name']} as {payload['role']}."),
        settings.APP_URL,
        "Open workspace",
    )
    await _send(events.WORKSPACE_MEMBER_ADDED, payload["email"], f"You were added to {payload['workspace_name']}", body)


async def send_role_updated(payload: dict):
    body = _layout(
        "Your role has changed",
        _p(f"Hello {payload['name']}, {payload['updated_by']} changed your role in "
           f"{payload['workspace_name']} from {payload['old_role']} to {payload['new_role']}."),
    )
    await _send(events.WORKSPACE_MEMBER_ROLE_UPDATED, payload["email"], f"New role in {payload['workspace_name']}", body)


async def send_member_removed(payload: dict):
    body = _layout(
        f"Removed from {payload['workspace_name']}",
        _p(f"Hello {payload['name']}, {payload['removed_by']} removed you from {payload['workspace_name']}."),
    )
    await _send(events.WORKSPACE_MEMBER_REMOVED, payload["email"], f"Removed from {payload['workspace_name']}", body)


async def send_member_left(payload: dict):
    body = _layout(
        "A member left your workspace",
        _p(f"{payload['member_name']} ({payload['member_email']}) left {payload['workspace_name']}."),
    )
    await _send(events.WORKSPACE_MEMBER_LEFT, payload["email"], f"Member left {payload['workspace_name']}", body)


async def send_invitation_accepted(payload: dict):
    body = _layout(
        "Invitation accepted",
        _p(f"{payload['member_name']} ({payload['member_email']}) accepted your invitation "
           f"and joined {payload['workspace_name']}."),
    )
    await _send(events.WORKSPACE_INVITATION_ACCEPTED, payload["email"], f"Invitation accepted: {payload['workspace_name']}", body)


async def send_invitation_declined(payload: dict):
    body = _layout(
        "Invitation declined",
        _p(f"{payload['invitee_email']} declined your invitation to {payload['workspace_name']}."),
    )
    await _send(events.WORKSPACE_INVITATION_DECLINED, payload["email"], f"Invitation declined: {payload['workspace_name']}", body)


async def send_project_created(payload: dict):
    body = _layout(
        f"New project in {payload['workspace_name']}",
        _p(f"{payload['created_by']} created the project {payload['project_name']}."),
        f"{settings.APP_URL}/projects/{payload['project_id']}",
        "View project",
    )
    for email in payload.get("member_emails", []):
        await _send(events.PROJECT_CREATED, email, f"New project: {payload['project_name']}", body)


LISTENERS = {
    events.AUTH_REGISTERED: send_welcome,
    events.WORKSPACE_INVITE: send_workspace_invite,
    events.WORKSPACE_MEMBER_ADDED: send_member_added,
    events.WORKSPACE_MEMBER_ROLE_UPDATED: send_role_updated,
    events.WORKSPACE_MEMBER_REMOVED: send_member_removed,
    events.WORKSPACE_MEMBER_LEFT: send_member_left,
    events.WORKSPACE_INVITATION_ACCEPTED: send_invitation_accepted,
    events.WORKSPACE_INVITATION_DECLINED: send_invitation_declined,
    events.PROJECT_CREATED: send_project_created,
}


def register_listeners(bus: EventBus):
    for name, handler in LISTENERS.items():
        bus.subscribe(name, handler)
