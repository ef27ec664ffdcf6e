import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import aiosmtplib

from taskhub.config import settings

logger = logging.getLogger(__name__)


async def send_email_async(subject: str, html_body: str, to_email: str) -> bool:
    """
    Send an HTML email with aiosmtplib.

    Returns False when no SMTP host is configured. Delivery errors propagate
    so the caller can record the failure.
    """
    if not settings.EMAIL_HOST:
        logger.info("[EMAIL SKIPPED] Config missing - %s", subject[:50])
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = settings.EMAIL_FROM or settings.EMAIL_USER or ""
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.attach(MIMEText(html_body, "html"))

    # STARTTLS on 587
    await aiosmtplib.send(
        msg,
        hostname=settings.EMAIL_HOST,
        port=settings.EMAIL_PORT,
        username=settings.EMAIL_USER,
        password=settings.EMAIL_PASS,
        start_tls=True,
        timeout=10,
    )
    logger.info("[EMAIL SENT] To %s: %s", to_email, subject)
    return True
