import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from taskhub.models.audit import AuditLog
from taskhub.models.user import User

logger = logging.getLogger(__name__)


def actor_of(user: User, role: Any = None) -> dict[str, Any]:
    actor = {"id": user.id, "email": user.email}
    if role is not None:
        actor["role"] = getattr(role, "value", role)
    return actor


async def record(
    db: AsyncSession,
    *,
    action: str,
    module: str,
    entity: str,
    entity_id: Any,
    actor: dict[str, Any],
    workspace_id: int | None = None,
    project_id: int | None = None,
    before: Any = None,
    after: Any = None,
    metadata: dict[str, Any] | None = None,
    type: str = "audit",
    ip: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Append an audit entry. Called after the primary commit; a failure here
    is logged and never reaches the caller.
    """
    changes = None
    if before is not None or after is not None:
        changes = {"before": before, "after": after}
    try:
        db.add(AuditLog(
            type=type,
            action=action,
            module=module,
            entity=entity,
            entity_id=str(entity_id),
            workspace_id=workspace_id,
            project_id=project_id,
            actor=actor,
            actor_id=actor["id"],
            changes=changes,
            extra=metadata,
            ip=ip,
            user_agent=user_agent,
        ))
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Failed to write audit log for %s %s", action, entity)


async def find_by_user(db: AsyncSession, actor_id: int, limit: int = 100) -> list[AuditLog]:
    result = await db.execute(
        select(AuditLog)
        .filter(AuditLog.actor_id == actor_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
