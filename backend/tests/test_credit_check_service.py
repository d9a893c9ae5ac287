"""Tests for the credit check lifecycle service.

Runs against an in-memory SQLite database; the dispatcher only records what
was queued, so each test drives ``process_credit_check`` itself.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from app.config import Settings
from app.models import CreditCheck, CreditCheckStatus, RentalApplication, User
from app.services.credit_bureau.adapter import BureauSubject, VerifierFailure
from app.services.credit_bureau.mock_bureau import SimulatedBureauAdapter
from app.services.credit_check import (
    ApplicationAccessDenied,
    ApplicationNotFound,
    ConsentInfo,
    ConsentRequired,
    CreditCheckService,
    SubjectNotFound,
    generate_reference_id,
)

from conftest import RecordingDispatcher


def _consent(provided: bool = True) -> ConsentInfo:
    return ConsentInfo(provided=provided, date=datetime.now(timezone.utc))


async def _count_checks(db) -> int:
    result = await db.execute(select(func.count(CreditCheck.id)))
    return result.scalar_one()


async def _subject_for(db, check) -> BureauSubject:
    user = await db.get(User, check.user_id)
    return BureauSubject(check.reference_id, user.first_name, user.last_name)


async def _completed_check(db, service, user_id, application_id=None) -> CreditCheck:
    check = await service.request_credit_check(db, user_id, _consent(), application_id=application_id)
    return await service.process_credit_check(db, check.id)


# ===================================================================
# Request validation
# ===================================================================


class TestRequestValidation:

    @pytest.mark.asyncio
    async def test_unknown_subject_raises_and_persists_nothing(self, db, service, dispatcher):
        with pytest.raises(SubjectNotFound):
            await service.request_credit_check(db, 9999, _consent())
        assert await _count_checks(db) == 0
        assert dispatcher.submitted == []

    @pytest.mark.asyncio
    async def test_missing_consent_raises_and_persists_nothing(self, db, service, tenant, dispatcher):
        with pytest.raises(ConsentRequired):
            await service.request_credit_check(db, tenant.id, _consent(provided=False))
        assert await _count_checks(db) == 0
        assert dispatcher.submitted == []

    @pytest.mark.asyncio
    async def test_request_creates_pending_check(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())

        assert check.id is not None
        assert check.status == CreditCheckStatus.PENDING
        assert check.consent_provided is True
        assert check.score is None
        assert check.report is None
        assert check.completed_date is None
        assert check.provider == "simulated"
        assert check.reference_id.startswith("EQ-")

    @pytest.mark.asyncio
    async def test_reference_ids_are_unique(self, db, service, tenant):
        refs = set()
        for _ in range(5):
            check = await service.request_credit_check(db, tenant.id, _consent())
            refs.add(check.reference_id)
        assert len(refs) == 5

    @pytest.mark.asyncio
    async def test_unknown_application_raises_and_persists_nothing(self, db, service, tenant, dispatcher):
        with pytest.raises(ApplicationNotFound):
            await service.request_credit_check(db, tenant.id, _consent(), application_id=999999)
        assert await _count_checks(db) == 0
        assert dispatcher.submitted == []

    @pytest.mark.asyncio
    async def test_foreign_application_rejected(self, db, service, landlord, application, dispatcher):
        with pytest.raises(ApplicationAccessDenied):
            await service.request_credit_check(db, landlord.id, _consent(), application_id=application.id)

        app_row = await db.get(RentalApplication, application.id)
        await db.refresh(app_row)
        assert app_row.credit_check is False
        assert await _count_checks(db) == 0
        assert dispatcher.submitted == []

    def test_reference_id_format(self):
        prefix, millis, suffix = generate_reference_id().split("-")
        assert prefix == "EQ"
        assert millis.isdigit()
        assert 0 <= int(suffix) < 10000


# ===================================================================
# Dispatch
# ===================================================================


class TestDispatch:

    @pytest.mark.asyncio
    async def test_simulated_path_uses_configured_delay(self, db, service, tenant, dispatcher):
        check = await service.request_credit_check(db, tenant.id, _consent())

        assert dispatcher.submitted == [{
            "check_id": check.id,
            "countdown": service.config.simulated_delay_seconds,
            "personal_info": None,
        }]
        assert check.dispatch_task_id == f"task-{check.id}"

    @pytest.mark.asyncio
    async def test_live_path_dispatches_immediately(self, db, tenant, dispatcher):
        live_settings = Settings(
            environment="test",
            secret_key="test-secret-key",
            equifax_api_key="key",
            equifax_client_id="client",
            equifax_client_secret="secret",
        )
        bureau = AsyncMock()
        bureau.provider_name = "equifax"
        service = CreditCheckService(live_settings, bureau, dispatcher)

        personal_info = {"sin": "123456789", "date_of_birth": "1990-01-01"}
        check = await service.request_credit_check(db, tenant.id, _consent(), personal_info=personal_info)

        assert check.provider == "equifax"
        assert dispatcher.submitted[0]["countdown"] == 0
        assert dispatcher.submitted[0]["personal_info"] == personal_info

    @pytest.mark.asyncio
    async def test_dispatch_failure_marks_check_failed(self, db, test_settings, tenant):
        dispatcher = RecordingDispatcher(fail_with=ConnectionError("broker down"))
        service = CreditCheckService(test_settings, SimulatedBureauAdapter(seed=1), dispatcher)

        check = await service.request_credit_check(db, tenant.id, _consent())

        assert check.status == CreditCheckStatus.FAILED
        assert check.failure_reason.startswith("dispatch_error")
        assert check.score is None


# ===================================================================
# Completion
# ===================================================================


class TestCompletion:

    @pytest.mark.asyncio
    async def test_simulated_completion(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())
        await service.process_credit_check(db, check.id)

        done = await service.get_credit_check_by_id(db, check.id)
        assert done.status == CreditCheckStatus.COMPLETED
        assert 550 <= done.score <= 850
        assert done.report["summary"]["total_accounts"] == 3
        assert done.report["score"] == done.score
        assert done.completed_date is not None
        assert done.score_band is not None

    @pytest.mark.asyncio
    async def test_completion_updates_application_and_profile(self, db, service, tenant, application):
        check = await _completed_check(db, service, tenant.id, application_id=application.id)

        app_row = await db.get(RentalApplication, application.id)
        await db.refresh(app_row)
        user = await db.get(User, tenant.id)
        await db.refresh(user)
        assert app_row.credit_check is True
        assert user.credit_score == check.score

    @pytest.mark.asyncio
    async def test_completion_without_application_leaves_applications_alone(
        self, db, service, tenant, application,
    ):
        await _completed_check(db, service, tenant.id)

        app_row = await db.get(RentalApplication, application.id)
        await db.refresh(app_row)
        assert app_row.credit_check is False

    @pytest.mark.asyncio
    async def test_duplicate_completion_is_ignored(self, db, service, tenant):
        check = await _completed_check(db, service, tenant.id)
        first_score, first_report = check.score, check.report

        other = await SimulatedBureauAdapter(seed=99).pull_credit_report(
            await _subject_for(db, check)
        )
        applied = await service.complete_credit_check(db, check.id, other)

        again = await service.get_credit_check_by_id(db, check.id)
        user = await db.get(User, tenant.id)
        await db.refresh(user)
        assert applied is False
        assert again.score == first_score
        assert again.report == first_report
        assert user.credit_score == first_score

    @pytest.mark.asyncio
    async def test_processing_non_pending_check_is_noop(self, db, service, tenant):
        check = await _completed_check(db, service, tenant.id)
        service.bureau = AsyncMock()

        result = await service.process_credit_check(db, check.id)

        assert result.status == CreditCheckStatus.COMPLETED
        service.bureau.pull_credit_report.assert_not_called()

    @pytest.mark.asyncio
    async def test_processing_missing_check_returns_none(self, db, service):
        assert await service.process_credit_check(db, 4242) is None

    @pytest.mark.asyncio
    async def test_bureau_error_fails_check(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())
        service.bureau = AsyncMock()
        service.bureau.pull_credit_report.side_effect = VerifierFailure("Equifax returned 500")

        result = await service.process_credit_check(db, check.id)

        assert result.status == CreditCheckStatus.FAILED
        assert result.failure_reason == "verifier_error: Equifax returned 500"
        assert result.score is None
        assert result.report is None

    @pytest.mark.asyncio
    async def test_deferred_bureau_answer_leaves_check_pending(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())
        service.bureau = AsyncMock()
        service.bureau.pull_credit_report.return_value = None

        result = await service.process_credit_check(db, check.id)

        assert result.status == CreditCheckStatus.PENDING

    @pytest.mark.asyncio
    async def test_lookup_by_reference(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())
        found = await service.get_credit_check_by_reference(db, check.reference_id)
        assert found.id == check.id
        assert await service.get_credit_check_by_reference(db, "EQ-0-0") is None


# ===================================================================
# Cancellation and expiry
# ===================================================================


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_pending_check(self, db, service, tenant, dispatcher):
        check = await service.request_credit_check(db, tenant.id, _consent())

        cancelled = await service.cancel_credit_check(db, check.id)

        assert cancelled.status == CreditCheckStatus.FAILED
        assert cancelled.failure_reason == "cancelled"
        assert cancelled.score is None
        assert cancelled.report is None
        assert dispatcher.revoked == [f"task-{check.id}"]

    @pytest.mark.asyncio
    async def test_late_completion_cannot_resurrect_cancelled_check(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())
        await service.cancel_credit_check(db, check.id)

        await service.process_credit_check(db, check.id)

        final = await service.get_credit_check_by_id(db, check.id)
        user = await db.get(User, tenant.id)
        await db.refresh(user)
        assert final.status == CreditCheckStatus.FAILED
        assert final.score is None
        assert final.report is None
        assert user.credit_score is None

    @pytest.mark.asyncio
    async def test_completed_check_is_not_cancellable(self, db, service, tenant):
        check = await _completed_check(db, service, tenant.id)

        assert await service.cancel_credit_check(db, check.id) is None
        unchanged = await service.get_credit_check_by_id(db, check.id)
        assert unchanged.status == CreditCheckStatus.COMPLETED
        assert unchanged.score == check.score

    @pytest.mark.asyncio
    async def test_failed_check_is_not_cancellable(self, db, service, tenant):
        check = await service.request_credit_check(db, tenant.id, _consent())
        await service.cancel_credit_check(db, check.id)

        assert await service.cancel_credit_check(db, check.id) is None

    @pytest.mark.asyncio
    async def test_cancel_unknown_check(self, db, service):
        assert await service.cancel_credit_check(db, 4242) is None

    @pytest.mark.asyncio
    async def test_revoke_error_does_not_block_cancel(self, db, service, tenant, dispatcher):
        check = await service.request_credit_check(db, tenant.id, _consent())

        def _boom(task_id):
            raise RuntimeError("broker down")

        dispatcher.revoke = _boom
        cancelled = await service.cancel_credit_check(db, check.id)
        assert cancelled.status == CreditCheckStatus.FAILED


class TestExpiry:

    @pytest.mark.asyncio
    async def test_stale_pending_checks_expire(self, db, service, tenant):
        stale = await service.request_credit_check(db, tenant.id, _consent())
        later = datetime.now(timezone.utc) + timedelta(minutes=service.config.pending_timeout_minutes + 1)

        expired = await service.expire_stale_checks(db, now=later)

        assert expired == [stale.id]
        check = await service.get_credit_check_by_id(db, stale.id)
        assert check.status == CreditCheckStatus.FAILED
        assert check.failure_reason == "expired"

    @pytest.mark.asyncio
    async def test_fresh_and_terminal_checks_survive(self, db, service, tenant):
        done = await _completed_check(db, service, tenant.id)
        fresh = await service.request_credit_check(db, tenant.id, _consent())

        assert await service.expire_stale_checks(db) == []
        assert (await service.get_credit_check_by_id(db, fresh.id)).status == CreditCheckStatus.PENDING
        assert (await service.get_credit_check_by_id(db, done.id)).status == CreditCheckStatus.COMPLETED


# ===================================================================
# Reads and freshness
# ===================================================================


class TestFreshness:

    @pytest.mark.asyncio
    async def test_no_checks_means_not_available(self, db, service, tenant):
        assert await service.is_recent_check_available(db, tenant.id) is False

    @pytest.mark.asyncio
    async def test_pending_check_does_not_count(self, db, service, tenant):
        await service.request_credit_check(db, tenant.id, _consent())
        assert await service.is_recent_check_available(db, tenant.id) is False

    @pytest.mark.asyncio
    async def test_window_boundaries(self, db, service, tenant):
        check = await _completed_check(db, service, tenant.id)
        now = datetime.now(timezone.utc)

        assert await service.is_recent_check_available(db, tenant.id, now=now + timedelta(days=10)) is True
        assert await service.is_recent_check_available(db, tenant.id, now=now + timedelta(days=89)) is True
        assert await service.is_recent_check_available(db, tenant.id, now=now + timedelta(days=91)) is False

        completed_at = check.completed_date
        if completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        edge = completed_at + timedelta(days=service.config.recent_check_days)
        assert await service.is_recent_check_available(db, tenant.id, now=edge) is True
        assert await service.is_recent_check_available(db, tenant.id, now=edge + timedelta(seconds=1)) is False

        recent = await service.get_recent_completed_check(db, tenant.id)
        assert recent.id == check.id


class TestReads:

    @pytest.mark.asyncio
    async def test_checks_listed_most_recent_first(self, db, service, tenant):
        first = await service.request_credit_check(db, tenant.id, _consent())
        second = await service.request_credit_check(db, tenant.id, _consent())

        checks = await service.get_credit_checks_by_user(db, tenant.id)
        assert [c.id for c in checks] == [second.id, first.id]

        latest = await service.get_most_recent_credit_check(db, tenant.id)
        assert latest.id == second.id

    @pytest.mark.asyncio
    async def test_lookup_by_application(self, db, service, tenant, application):
        assert await service.get_credit_check_by_application(db, application.id) is None
        check = await service.request_credit_check(
            db, tenant.id, _consent(), application_id=application.id,
        )
        found = await service.get_credit_check_by_application(db, application.id)
        assert found.id == check.id

    @pytest.mark.asyncio
    async def test_other_users_checks_are_not_listed(self, db, service, tenant, landlord):
        await service.request_credit_check(db, tenant.id, _consent())
        assert await service.get_credit_checks_by_user(db, landlord.id) == []
        assert await service.get_most_recent_credit_check(db, landlord.id) is None


class TestConfiguredBureau:

    @pytest.mark.asyncio
    async def test_seeded_simulation_advances_across_services(self):
        from app.services import credit_check as credit_check_module

        with patch.object(credit_check_module, "_bureau", None), \
             patch.object(credit_check_module.app_settings, "simulated_seed", 2024):
            first = credit_check_module.get_credit_check_service()
            second = credit_check_module.get_credit_check_service()
            subject = BureauSubject("EQ-1-1", "Jane", "Doe")
            scores = [
                (await first.bureau.pull_credit_report(subject)).score,
                (await second.bureau.pull_credit_report(subject)).score,
            ]

        assert first.bureau is second.bureau
        reference = SimulatedBureauAdapter(seed=2024)
        expected = [
            (await reference.pull_credit_report(subject)).score,
            (await reference.pull_credit_report(subject)).score,
        ]
        assert scores == expected
