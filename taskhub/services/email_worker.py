import asyncio
import logging
from typing import TypedDict

from sqlalchemy.future import select

from taskhub.database import AsyncSessionLocal
from taskhub.models.email import EmailLog
from taskhub.utils.email import send_email_async
from taskhub.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class EmailJob(TypedDict):
    log_id: int
    subject: str
    body: str
    to_email: str


# Global queue for email jobs
email_queue: asyncio.Queue[EmailJob] = asyncio.Queue()

# Swapped out in tests
session_factory = AsyncSessionLocal


async def _set_status(log_id: int, status: str, error: str | None = None):
    async with session_factory() as db:
        result = await db.execute(select(EmailLog).filter(EmailLog.id == log_id))
        log_entry = result.scalars().first()
        if log_entry:
            log_entry.status = status
            if status == "sent":
                log_entry.sent_at = utcnow()
            log_entry.error_message = error
            await db.commit()


async def process_job(job: EmailJob):
    try:
        sent = await send_email_async(job["subject"], job["body"], job["to_email"])
        await _set_status(job["log_id"], "sent" if sent else "skipped")
    except Exception as e:
        logger.exception("[WORKER ERROR] Failed to send email job %s", job["log_id"])
        await _set_status(job["log_id"], "failed", str(e))


async def email_worker():
    """Pull jobs from email_queue until the application shuts down."""
    logger.info("[WORKER] Background email worker started.")
    while True:
        job = await email_queue.get()
        try:
            await process_job(job)
        except Exception:
            logger.exception("[WORKER ERROR] Could not record email status")
        finally:
            email_queue.task_done()


async def enqueue_email(subject: str, body: str, to_email: str, event_name: str | None = None) -> int:
    """Persist the email as pending and hand it to the worker."""
    async with session_factory() as db:
        new_log = EmailLog(
            event_name=event_name,
            subject=subject,
            body=body,
            to_email=to_email,
            status="pending",
        )
        db.add(new_log)
        await db.commit()
        log_id = new_log.id

    await email_queue.put({
        "log_id": log_id,
        "subject": subject,
        "body": body,
        "to_email": to_email,
    })
    logger.info("[QUEUE] Enqueued email (DB ID: %s): %s...", log_id, subject[:30])
    return log_id
