"""Landlord/admin views of a tenant's credit history."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth_utils import require_roles
from app.database import get_db
from app.models.user import User, UserRole
from app.schemas import CreditCheckResponse, CreditScoreComponent
from app.services.credit_check import CreditCheckService, get_credit_check_service
from app.services.tenant_scoring import calculate_credit_score_component

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{user_id}/credit-checks", response_model=list[CreditCheckResponse])
async def tenant_credit_checks(
    user_id: int,
    current_user: User = Depends(require_roles(UserRole.LANDLORD, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
    service: CreditCheckService = Depends(get_credit_check_service),
):
    tenant = await db.get(User, user_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="User not found")
    return await service.get_credit_checks_by_user(db, user_id)


@router.get("/{user_id}/credit-score", response_model=CreditScoreComponent)
async def tenant_credit_score(
    user_id: int,
    application_id: Optional[int] = Query(default=None),
    current_user: User = Depends(require_roles(UserRole.LANDLORD, UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    """Credit component of the tenant score on a 0-100 scale."""
    tenant = await db.get(User, user_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="User not found")
    component = await calculate_credit_score_component(db, user_id, application_id)
    return CreditScoreComponent(user_id=user_id, application_id=application_id, component=component)
