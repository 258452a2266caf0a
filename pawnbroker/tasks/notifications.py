from __future__ import annotations

import logging
import os
from typing import Any

logger = logging.getLogger("pawnbroker.tasks")

SEND_NOTIFICATION_TASK = "pawnbroker.send_notification"


def emit_send_notification_task(payload: dict[str, Any]) -> bool:
    """Hand a notification to the Celery worker, fire-and-forget.

    A no-op unless ``CELERY_ENABLED=1``. The broker comes from
    ``CELERY_BROKER_URL`` (falling back to ``REDIS_URL``). Returns whether the
    task was sent; failures are logged and swallowed so the calling
    transition still commits.
    """

    if os.getenv("CELERY_ENABLED") != "1":
        return False

    broker_url = os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL")
    if not broker_url:
        logger.warning("CELERY_ENABLED=1 but no broker url is set; skipping notification")
        return False

    task_name = os.getenv("CELERY_TASK_SEND_NOTIFICATION_NAME", SEND_NOTIFICATION_TASK)

    try:
        from celery import Celery

        celery_app = Celery("pawnbroker", broker=broker_url)
        celery_app.send_task(task_name, kwargs={"payload": payload})
        return True
    except Exception:
        logger.exception("Failed to emit Celery task %s kind=%s", task_name, payload.get("kind"))
        return False
