import logging
import smtplib

from celery import current_app
from core.config import settings

logger = logging.getLogger(__name__)


@current_app.task(bind=True, max_retries=3)
def send_email_task(self, to_email: str, subject: str, body: str):
    """
    Send email asynchronously with Celery.
    Retries up to 3 times on failure.
    """
    from services.email import deliver_smtp

    if settings.TESTING or not settings.SMTP_PASSWORD:
        logger.info("Email to %s skipped (subject: %s)", to_email, subject)
        return {"status": "skipped", "to": to_email}

    try:
        deliver_smtp(to_email, subject, body)
        return {"status": "sent", "to": to_email, "subject": subject}
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email to %s failed (retry %s): %s", to_email, self.request.retries, exc)
        # Retry with exponential backoff
        countdown = min(2 ** self.request.retries, 60)  # Max 60 seconds
        raise self.retry(exc=exc, countdown=countdown)
