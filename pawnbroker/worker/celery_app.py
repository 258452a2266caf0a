from __future__ import annotations

from celery import Celery

from pawnbroker.config import settings


def make_celery() -> Celery:
    """Create the Celery app; kept in a function so tests can build their own."""

    celery = Celery(
        "pawnbroker",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["pawnbroker.worker.tasks"],
    )

    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
    )

    return celery


celery_app = make_celery()
