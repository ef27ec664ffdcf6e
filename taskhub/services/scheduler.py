import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import settings
from taskhub.database import AsyncSessionLocal
from taskhub.models.user import RefreshToken
from taskhub.models.workspace import Invitation
from taskhub.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


async def purge_stale_records(db: AsyncSession) -> dict[str, int]:
    now = utcnow()
    tokens = await db.execute(
        delete(RefreshToken).where(or_(RefreshToken.revoked.is_(True), RefreshToken.expires_at < now))
    )
    invite_cutoff = now - timedelta(days=settings.INVITATION_EXPIRE_DAYS)
    invitations = await db.execute(
        delete(Invitation).where(Invitation.accepted_at.is_(None), Invitation.created_at < invite_cutoff)
    )
    await db.commit()
    return {"refresh_tokens": tokens.rowcount, "invitations": invitations.rowcount}


async def purge_job():
    logger.info("[SCHEDULER] Starting purge of stale tokens and invitations...")
    async with AsyncSessionLocal() as db:
        try:
            counts = await purge_stale_records(db)
            logger.info(
                "[SCHEDULER] Removed %s refresh tokens and %s expired invitations",
                counts["refresh_tokens"], counts["invitations"],
            )
        except Exception:
            await db.rollback()
            logger.exception("[SCHEDULER] Error during purge job")


def setup_scheduler():
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        purge_job,
        trigger=CronTrigger(hour=3, minute=0)  # Run at 3 AM
    )
    scheduler.start()
    return scheduler
