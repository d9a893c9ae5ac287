"""Credit check endpoints for tenants, landlords and the bureau callback."""

import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import get_current_user
from app.config import settings
from app.database import get_db
from app.models.credit_check import CreditCheck
from app.models.user import User, UserRole
from app.schemas import (
    CreditCheckAvailability,
    CreditCheckRequest,
    CreditCheckRequestResult,
    CreditCheckResponse,
    CreditCheckWebhook,
)
from app.services.credit_bureau.adapter import BureauResult
from app.services.credit_bureau.equifax import EquifaxAdapter
from app.services.credit_check import (
    ApplicationAccessDenied,
    ApplicationNotFound,
    ConsentInfo,
    ConsentRequired,
    CreditCheckService,
    SubjectNotFound,
    get_credit_check_service,
)

logger = logging.getLogger(__name__)

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)

REVIEWER_ROLES = (UserRole.LANDLORD, UserRole.ADMIN)


def _ensure_can_view(check: CreditCheck, user: User) -> None:
    if check.user_id != user.id and user.role not in REVIEWER_ROLES:
        raise HTTPException(status_code=403, detail="Not allowed to view this credit check")


@router.post("/credit-check", response_model=CreditCheckRequestResult, status_code=201)
@limiter.limit(settings.credit_check_rate_limit)
async def request_credit_check(
    request: Request,
    data: CreditCheckRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    """Request a credit check for the signed-in user.

    With ``check_recent`` set, a completed check from the freshness window
    is returned instead of triggering another hard inquiry.
    """
    if data.check_recent:
        recent = await service.get_recent_completed_check(db, current_user.id)
        if recent is not None:
            return CreditCheckRequestResult(
                reference_id=recent.reference_id,
                is_recent=True,
                credit_check=CreditCheckResponse.model_validate(recent),
            )

    personal_info = (
        data.personal_info.model_dump(mode="json") if data.personal_info else None
    )
    try:
        check = await service.request_credit_check(
            db,
            current_user.id,
            ConsentInfo(
                provided=data.consent_provided,
                date=data.consent_date or datetime.now(timezone.utc),
            ),
            application_id=data.application_id,
            personal_info=personal_info,
        )
    except SubjectNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConsentRequired as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ApplicationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ApplicationAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))

    return CreditCheckRequestResult(
        reference_id=check.reference_id,
        credit_check=CreditCheckResponse.model_validate(check),
    )


@router.get("/credit-checks", response_model=list[CreditCheckResponse])
async def list_my_credit_checks(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    """All of the user's credit checks, most recent first."""
    return await service.get_credit_checks_by_user(db, current_user.id)


@router.get("/credit-checks/available", response_model=CreditCheckAvailability)
async def recent_check_available(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    available = await service.is_recent_check_available(db, current_user.id)
    return CreditCheckAvailability(available=available, days=service.config.recent_check_days)


@router.get("/credit-checks/recent/me", response_model=CreditCheckResponse)
async def my_most_recent_check(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    check = await service.get_most_recent_credit_check(db, current_user.id)
    if not check:
        raise HTTPException(status_code=404, detail="No credit checks found")
    return check


@router.post("/credit-checks/webhook")
async def bureau_webhook(
    data: CreditCheckWebhook,
    x_webhook_secret: str = Header(default=""),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    """Bureau callback delivering the outcome of an accepted order."""
    expected = settings.equifax_webhook_secret
    if not expected or not hmac.compare_digest(x_webhook_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid webhook secret")

    check = await service.get_credit_check_by_reference(db, data.reference_id)
    if not check:
        raise HTTPException(status_code=404, detail="Unknown reference id")
    if check.provider != EquifaxAdapter.PROVIDER:
        raise HTTPException(status_code=409, detail="Credit check was not ordered from the bureau")

    if data.status == "completed":
        if data.report is None:
            raise HTTPException(status_code=422, detail="Completed callback requires a report")
        applied = await service.complete_credit_check(db, check.id, BureauResult(report=data.report))
    else:
        applied = await service.fail_credit_check(
            db, check.id, f"verifier_error: {data.error or 'reported by bureau'}"
        )

    check = await service.get_credit_check_by_id(db, check.id)
    logger.info("Webhook for %s applied=%s status=%s", data.reference_id, applied, check.status.value)
    return {"reference_id": data.reference_id, "applied": applied, "status": check.status.value}


@router.get("/credit-checks/application/{application_id}", response_model=CreditCheckResponse)
async def credit_check_for_application(
    application_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    check = await service.get_credit_check_by_application(db, application_id)
    if not check:
        raise HTTPException(status_code=404, detail="No credit check for this application")
    _ensure_can_view(check, current_user)
    return check


@router.get("/credit-checks/{check_id}", response_model=CreditCheckResponse)
async def get_credit_check(
    check_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    check = await service.get_credit_check_by_id(db, check_id)
    if not check:
        raise HTTPException(status_code=404, detail="Credit check not found")
    _ensure_can_view(check, current_user)
    return check


@router.post("/credit-checks/{check_id}/cancel", response_model=CreditCheckResponse)
async def cancel_credit_check(
    check_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    """Cancel one of the user's pending checks."""
    check = await service.get_credit_check_by_id(db, check_id)
    if not check:
        raise HTTPException(status_code=404, detail="Credit check not found")
    if check.user_id != current_user.id and current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Not allowed to cancel this credit check")

    cancelled = await service.cancel_credit_check(db, check_id)
    if cancelled is None:
        raise HTTPException(status_code=409, detail="Credit check is not cancellable")
    return cancelled
