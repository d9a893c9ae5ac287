"""Celery task definitions for async processing."""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

celery_app = Celery(
    "rentcheck",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Toronto",
    enable_utc=True,
)

# Periodic beat schedule
celery_app.conf.beat_schedule = {
    "expire-stale-credit-checks": {
        "task": "app.tasks.credit_check_tasks.expire_stale_credit_checks",
        "schedule": crontab(minute="*/10"),  # Every 10 minutes
    },
}

# Import tasks so they get registered
from app.tasks.credit_check_tasks import *  # noqa
