from __future__ import annotations

from email.message import EmailMessage
import logging
import smtplib
from typing import Any

from pawnbroker.config import settings
from pawnbroker.tasks.notifications import SEND_NOTIFICATION_TASK
from pawnbroker.worker.celery_app import celery_app

logger = logging.getLogger("pawnbroker.worker")

MAX_RETRIES = 3


def build_message(payload: dict[str, Any]) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = settings.email_from
    msg["To"] = payload["to"]
    msg["Subject"] = payload.get("subject") or "Notification"
    msg.set_content(payload.get("body") or "")
    return msg


def deliver_email(payload: dict[str, Any]) -> None:
    msg = build_message(payload)
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as smtp:
        if settings.smtp_use_tls:
            smtp.starttls()
        if settings.smtp_username:
            smtp.login(settings.smtp_username, settings.smtp_password or "")
        smtp.send_message(msg)


@celery_app.task(name=SEND_NOTIFICATION_TASK, bind=True, max_retries=MAX_RETRIES, default_retry_delay=30)
def send_notification(self, payload: dict[str, Any]) -> bool:
    if not payload.get("to"):
        logger.warning("notification without recipient kind=%s", payload.get("kind"))
        return False
    try:
        deliver_email(payload)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning(
            "email delivery failed kind=%s attempt=%s error=%s", payload.get("kind"), self.request.retries + 1, exc
        )
        raise self.retry(exc=exc)
    logger.info("email sent kind=%s", payload.get("kind"))
    return True
