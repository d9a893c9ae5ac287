"""Celery tasks for the credit check lifecycle.

Tasks: process a dispatched check, expire checks stuck in pending.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from app.tasks import celery_app
from app.database import async_session
from app.services.credit_check import CheckDispatcher

logger = logging.getLogger(__name__)

__all__ = [
    "CeleryDispatcher",
    "process_credit_check_task",
    "expire_stale_credit_checks",
]


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@celery_app.task(name="app.tasks.credit_check_tasks.process_credit_check")
def process_credit_check_task(check_id: int, personal_info: Optional[Dict[str, Any]] = None):
    """Pull the bureau report for a pending check and complete it."""
    from app.services.credit_check import get_credit_check_service

    async def _run():
        service = get_credit_check_service()
        async with async_session() as db:
            check = await service.process_credit_check(db, check_id, personal_info)
            if check is None:
                return {"credit_check_id": check_id, "status": None}
            return {
                "credit_check_id": check_id,
                "status": check.status.value,
                "score": check.score,
            }

    return _run_async(_run())


@celery_app.task(name="app.tasks.credit_check_tasks.expire_stale_credit_checks")
def expire_stale_credit_checks():
    """Fail pending checks older than the configured timeout."""
    from app.services.credit_check import get_credit_check_service

    async def _run():
        service = get_credit_check_service()
        async with async_session() as db:
            expired_ids = await service.expire_stale_checks(db)
            return len(expired_ids)

    return _run_async(_run())


class CeleryDispatcher(CheckDispatcher):
    """Queues checks on the Celery broker; the task id is the handle."""

    def submit(
        self,
        check_id: int,
        *,
        countdown: int = 0,
        personal_info: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        result = process_credit_check_task.apply_async(
            args=[check_id],
            kwargs={"personal_info": personal_info},
            countdown=countdown,
        )
        logger.info("Queued credit check %s as task %s (countdown %ss)", check_id, result.id, countdown)
        return result.id

    def revoke(self, task_id: str) -> None:
        celery_app.control.revoke(task_id)
