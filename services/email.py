import logging
import os
import smtplib
from email.message import EmailMessage
from typing import Dict, Any

from jinja2 import Environment, FileSystemLoader, select_autoescape
from sqlalchemy import event
from sqlalchemy.orm import Session

from core.config import settings
from tasks.email_tasks import send_email_task

logger = logging.getLogger(__name__)

# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def send_email(to_email: str, subject: str, body: str) -> None:
    """
    Queue the email on Celery; when the broker is unreachable, send it inline.
    Returns immediately when queued so the payment request is not held up.
    """
    try:
        send_email_task.delay(to_email, subject, body)
        logger.debug("Email to %s queued", to_email)
        return
    except Exception as e:
        logger.warning("Celery not available, sending email to %s directly: %s", to_email, e)

    _send_email_direct(to_email, subject, body)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def send_after_commit(db: Session, to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    """Render now, send once the session commits. A rollback drops the mail."""
    if not db.in_transaction():
        # the mail belongs to the transaction it was queued in
        db.begin()
    db.info.setdefault("outbox", []).append((to_email, subject, render_template(template_path, context)))
    if not event.contains(db, "after_commit", _drain_outbox):
        event.listen(db, "after_commit", _drain_outbox)
        event.listen(db, "after_soft_rollback", _discard_outbox)


def _drain_outbox(session: Session) -> None:
    if session.in_nested_transaction():
        return
    outbox = session.info.pop("outbox", [])
    for to_email, subject, body in outbox:
        send_email(to_email, subject, body)


def _discard_outbox(session: Session, previous_transaction) -> None:
    if previous_transaction.nested:
        return
    dropped = session.info.pop("outbox", [])
    if dropped:
        logger.info("Rollback dropped %s queued email(s)", len(dropped))


def deliver_smtp(to_email: str, subject: str, body: str) -> None:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content(body)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


def _send_email_direct(to_email: str, subject: str, body: str) -> None:
    if not settings.SMTP_PASSWORD:
        logger.info("SMTP not configured, email to %s not sent (subject: %s)", to_email, subject)
        return
    try:
        deliver_smtp(to_email, subject, body)
        logger.info("Email sent to %s", to_email)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email sending to %s failed: %s", to_email, e)
