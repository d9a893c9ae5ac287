"""Credit check lifecycle: request, dispatch, completion, cancellation.

A check is created ``pending``, handed to a dispatcher (the Celery queue in
production) and later resolved by the completion routine to ``completed``
or ``failed``.  Every terminal transition is a conditional UPDATE guarded by
``status = 'pending'``, so a late or duplicate completion can never
resurrect a cancelled check and a cancellation can never strip a report
from a completed one; whichever writer lands first wins.

Usage:
    service = get_credit_check_service()
    check = await service.request_credit_check(db, user_id, ConsentInfo(True, now))
"""

import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings as app_settings
from app.models.application import RentalApplication
from app.models.credit_check import CreditCheck, CreditCheckStatus
from app.models.user import User
from app.services.credit_bureau.adapter import (
    BureauResult,
    BureauSubject,
    CreditBureauAdapter,
    VerifierFailure,
    get_credit_bureau,
)

logger = logging.getLogger(__name__)

MAX_REFERENCE_ATTEMPTS = 5


class CreditCheckError(Exception):
    """Base error for credit check requests."""


class SubjectNotFound(CreditCheckError):
    pass


class ConsentRequired(CreditCheckError):
    pass


class ApplicationNotFound(CreditCheckError):
    pass


class ApplicationAccessDenied(CreditCheckError):
    """The application belongs to another tenant."""


__all__ = [
    "CreditCheckError",
    "SubjectNotFound",
    "ConsentRequired",
    "ApplicationNotFound",
    "ApplicationAccessDenied",
    "VerifierFailure",
    "ConsentInfo",
    "CheckDispatcher",
    "CreditCheckService",
    "generate_reference_id",
    "get_configured_bureau",
    "get_credit_check_service",
]


@dataclass
class ConsentInfo:
    provided: bool
    date: datetime


class CheckDispatcher(ABC):
    """Hands a pending check to whatever runs the completion routine."""

    @abstractmethod
    def submit(
        self,
        check_id: int,
        *,
        countdown: int = 0,
        personal_info: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Schedule processing; returns a task handle when the backend has one."""
        ...

    @abstractmethod
    def revoke(self, task_id: str) -> None:
        """Best-effort cancellation of a scheduled job."""
        ...


def generate_reference_id() -> str:
    """``EQ-<epoch millis>-<0..9999>``, shown to users and sent to the bureau."""
    return f"EQ-{int(time.time() * 1000)}-{secrets.randbelow(10000)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditCheckService:
    """Owns every write to ``credit_checks``.

    Collaborators are injected so tests can force either bureau path and
    drive completion by hand.
    """

    def __init__(
        self,
        config: Settings,
        bureau: CreditBureauAdapter,
        dispatcher: CheckDispatcher,
    ):
        self.config = config
        self.bureau = bureau
        self.dispatcher = dispatcher

    # ── Request ──────────────────────────────────────────────

    async def _unused_reference_id(self, db: AsyncSession) -> str:
        for _ in range(MAX_REFERENCE_ATTEMPTS):
            reference_id = generate_reference_id()
            taken = await db.execute(
                select(CreditCheck.id).where(CreditCheck.reference_id == reference_id)
            )
            if taken.scalar_one_or_none() is None:
                return reference_id
        raise CreditCheckError("Could not allocate a unique reference id")

    async def request_credit_check(
        self,
        db: AsyncSession,
        user_id: int,
        consent: ConsentInfo,
        application_id: Optional[int] = None,
        personal_info: Optional[Dict[str, Any]] = None,
    ) -> CreditCheck:
        """Create a pending check and dispatch it for verification.

        Raises SubjectNotFound, ConsentRequired, ApplicationNotFound or
        ApplicationAccessDenied before anything is written.
        The returned row is committed and still ``pending``; dispatch
        problems are recorded on the row, never raised.
        """
        user = await db.get(User, user_id)
        if user is None:
            raise SubjectNotFound(f"User {user_id} not found")
        if not consent.provided:
            raise ConsentRequired("User consent is required for credit check")
        if application_id is not None:
            application = await db.get(RentalApplication, application_id)
            if application is None:
                raise ApplicationNotFound(f"Application {application_id} not found")
            if application.tenant_id != user_id:
                raise ApplicationAccessDenied(
                    f"Application {application_id} does not belong to user {user_id}"
                )

        check = CreditCheck(
            user_id=user_id,
            application_id=application_id,
            consent_provided=True,
            consent_date=consent.date,
            status=CreditCheckStatus.PENDING,
            reference_id=await self._unused_reference_id(db),
            provider=self.bureau.provider_name,
            request_date=_utcnow(),
        )
        db.add(check)
        await db.commit()
        await db.refresh(check)
        logger.info(
            "Credit check %s requested for user %s (ref %s, provider %s)",
            check.id, user_id, check.reference_id, check.provider,
        )

        countdown = 0 if self.config.has_live_verifier else self.config.simulated_delay_seconds
        if not self.config.has_live_verifier:
            logger.info("No Equifax credentials configured, using simulated credit check")
        try:
            task_id = self.dispatcher.submit(
                check.id, countdown=countdown, personal_info=personal_info,
            )
        except Exception as exc:
            logger.exception("Dispatch failed for credit check %s", check.id)
            await self.fail_credit_check(db, check.id, f"dispatch_error: {exc}")
            await db.refresh(check)
            return check

        if task_id:
            check.dispatch_task_id = task_id
            await db.commit()
        return check

    # ── Completion ───────────────────────────────────────────

    async def process_credit_check(
        self,
        db: AsyncSession,
        check_id: int,
        personal_info: Optional[Dict[str, Any]] = None,
    ) -> Optional[CreditCheck]:
        """Pull the report for a pending check and complete it.

        Run by the task worker.  A missing or non-pending check is a no-op.
        Any bureau error fails the check instead of leaving it pending.
        """
        check = await self.get_credit_check_by_id(db, check_id)
        if check is None:
            logger.error("Credit check with ID %s not found", check_id)
            return None
        if check.status != CreditCheckStatus.PENDING:
            logger.info("Credit check %s is not pending, status: %s", check_id, check.status.value)
            return check

        user = await db.get(User, check.user_id)
        if user is None:
            logger.error("User %s not found for credit check %s", check.user_id, check_id)
            return check

        subject = BureauSubject(
            reference_id=check.reference_id,
            first_name=user.first_name or "",
            last_name=user.last_name or "",
            personal_info=personal_info,
        )
        try:
            result = await self.bureau.pull_credit_report(subject)
        except Exception as exc:
            logger.exception("Bureau call failed for credit check %s", check_id)
            await self.fail_credit_check(db, check_id, f"verifier_error: {exc}")
            return await self.get_credit_check_by_id(db, check_id)

        if result is None:
            # Order accepted; the bureau webhook will complete it
            return check

        await self.complete_credit_check(db, check_id, result)
        return await self.get_credit_check_by_id(db, check_id)

    async def complete_credit_check(
        self, db: AsyncSession, check_id: int, result: BureauResult,
    ) -> bool:
        """Attach a report to a pending check and fan the score out.

        Returns False (and changes nothing) when the check is no longer
        pending, which makes duplicate callbacks harmless.
        """
        updated = await db.execute(
            update(CreditCheck)
            .where(
                CreditCheck.id == check_id,
                CreditCheck.status == CreditCheckStatus.PENDING,
            )
            .values(
                status=CreditCheckStatus.COMPLETED,
                score=result.score,
                report=result.report.model_dump(mode="json"),
                completed_date=_utcnow(),
            )
            .returning(CreditCheck.user_id, CreditCheck.application_id)
        )
        row = updated.first()
        if row is None:
            logger.info("Credit check %s already resolved; completion ignored", check_id)
            return False

        user_id, application_id = row
        if application_id:
            await db.execute(
                update(RentalApplication)
                .where(RentalApplication.id == application_id)
                .values(credit_check=True)
            )
        await db.execute(
            update(User).where(User.id == user_id).values(credit_score=result.score)
        )
        await db.commit()
        logger.info("Processed credit check %s with score %s", check_id, result.score)
        return True

    async def fail_credit_check(
        self, db: AsyncSession, check_id: int, reason: str,
    ) -> bool:
        """Force a pending check to ``failed``; no other side effects."""
        updated = await db.execute(
            update(CreditCheck)
            .where(
                CreditCheck.id == check_id,
                CreditCheck.status == CreditCheckStatus.PENDING,
            )
            .values(status=CreditCheckStatus.FAILED, failure_reason=reason[:500])
            .returning(CreditCheck.id)
        )
        failed = updated.first() is not None
        await db.commit()
        if failed:
            logger.warning("Credit check %s failed: %s", check_id, reason)
        return failed

    async def get_credit_check_by_reference(
        self, db: AsyncSession, reference_id: str,
    ) -> Optional[CreditCheck]:
        result = await db.execute(
            select(CreditCheck).where(CreditCheck.reference_id == reference_id)
        )
        return result.scalar_one_or_none()

    # ── Cancellation & expiry ────────────────────────────────

    async def cancel_credit_check(
        self, db: AsyncSession, check_id: int,
    ) -> Optional[CreditCheck]:
        """Cancel a pending check.

        Returns the updated check, or None when it does not exist or is
        already completed/failed (not cancellable).
        """
        updated = await db.execute(
            update(CreditCheck)
            .where(
                CreditCheck.id == check_id,
                CreditCheck.status == CreditCheckStatus.PENDING,
            )
            .values(status=CreditCheckStatus.FAILED, failure_reason="cancelled")
            .returning(CreditCheck.dispatch_task_id)
        )
        row = updated.first()
        if row is None:
            return None
        await db.commit()

        task_id = row[0]
        if task_id:
            try:
                self.dispatcher.revoke(task_id)
            except Exception:
                # The completion guard still holds if the job runs anyway
                logger.warning("Could not revoke task %s for credit check %s", task_id, check_id)
        logger.info("Credit check %s cancelled", check_id)
        return await self.get_credit_check_by_id(db, check_id)

    async def expire_stale_checks(
        self, db: AsyncSession, now: Optional[datetime] = None,
    ) -> List[int]:
        """Fail pending checks that never heard back from the bureau."""
        now = now or _utcnow()
        cutoff = now - timedelta(minutes=self.config.pending_timeout_minutes)
        result = await db.execute(
            update(CreditCheck)
            .where(
                CreditCheck.status == CreditCheckStatus.PENDING,
                CreditCheck.request_date < cutoff,
            )
            .values(status=CreditCheckStatus.FAILED, failure_reason="expired")
            .returning(CreditCheck.id)
        )
        expired_ids = list(result.scalars().all())
        await db.commit()
        if expired_ids:
            logger.info("Expired %d pending credit checks: %s", len(expired_ids), expired_ids)
        return expired_ids

    # ── Reads ────────────────────────────────────────────────

    async def is_recent_check_available(
        self, db: AsyncSession, user_id: int, now: Optional[datetime] = None,
    ) -> bool:
        """True if the user has a completed check inside the freshness window."""
        now = now or _utcnow()
        cutoff = now - timedelta(days=self.config.recent_check_days)
        result = await db.execute(
            select(CreditCheck.id)
            .where(
                CreditCheck.user_id == user_id,
                CreditCheck.status == CreditCheckStatus.COMPLETED,
                CreditCheck.completed_date >= cutoff,
            )
            .order_by(CreditCheck.completed_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_recent_completed_check(
        self, db: AsyncSession, user_id: int, now: Optional[datetime] = None,
    ) -> Optional[CreditCheck]:
        now = now or _utcnow()
        cutoff = now - timedelta(days=self.config.recent_check_days)
        result = await db.execute(
            select(CreditCheck)
            .where(
                CreditCheck.user_id == user_id,
                CreditCheck.status == CreditCheckStatus.COMPLETED,
                CreditCheck.completed_date >= cutoff,
            )
            .order_by(CreditCheck.completed_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_credit_check_by_id(
        self, db: AsyncSession, check_id: int,
    ) -> Optional[CreditCheck]:
        result = await db.execute(
            select(CreditCheck)
            .where(CreditCheck.id == check_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_credit_checks_by_user(
        self, db: AsyncSession, user_id: int,
    ) -> List[CreditCheck]:
        result = await db.execute(
            select(CreditCheck)
            .where(CreditCheck.user_id == user_id)
            .order_by(CreditCheck.request_date.desc(), CreditCheck.id.desc())
        )
        return list(result.scalars().all())

    async def get_credit_check_by_application(
        self, db: AsyncSession, application_id: int,
    ) -> Optional[CreditCheck]:
        result = await db.execute(
            select(CreditCheck)
            .where(CreditCheck.application_id == application_id)
            .order_by(CreditCheck.request_date.desc(), CreditCheck.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_most_recent_credit_check(
        self, db: AsyncSession, user_id: int,
    ) -> Optional[CreditCheck]:
        result = await db.execute(
            select(CreditCheck)
            .where(CreditCheck.user_id == user_id)
            .order_by(CreditCheck.request_date.desc(), CreditCheck.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


_bureau: Optional[CreditBureauAdapter] = None


def get_configured_bureau() -> CreditBureauAdapter:
    """Process-wide bureau adapter; a seeded simulation keeps one score sequence."""
    global _bureau
    if _bureau is None:
        _bureau = get_credit_bureau(app_settings)
    return _bureau


def get_credit_check_service() -> CreditCheckService:
    """Service wired to the configured bureau and the Celery queue."""
    from app.tasks.credit_check_tasks import CeleryDispatcher

    return CreditCheckService(
        config=app_settings,
        bureau=get_configured_bureau(),
        dispatcher=CeleryDispatcher(),
    )
