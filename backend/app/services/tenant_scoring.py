"""Credit component of the tenant score.

Reads the mirrored score on the user's profile first, then falls back to
the latest completed credit check (scoped to the application when one is
given), and scales it onto 0-100.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.credit_check import CreditCheck, CreditCheckStatus
from app.models.user import User
from app.services.credit_report import map_credit_score_to_100

logger = logging.getLogger(__name__)


async def calculate_credit_score_component(
    db: AsyncSession,
    user_id: int,
    application_id: Optional[int] = None,
) -> Optional[int]:
    """Return the 0-100 credit component, or None when no score exists."""
    user = await db.get(User, user_id)
    if user is None:
        return None

    if user.credit_score:
        return map_credit_score_to_100(user.credit_score)

    query = select(CreditCheck.score).where(
        CreditCheck.status == CreditCheckStatus.COMPLETED,
        CreditCheck.score.isnot(None),
    )
    if application_id:
        query = query.where(CreditCheck.application_id == application_id)
    else:
        query = query.where(CreditCheck.user_id == user_id)
    result = await db.execute(query.order_by(CreditCheck.completed_date.desc()).limit(1))
    score = result.scalar_one_or_none()

    if score is None:
        logger.debug("No credit score available for user %s", user_id)
        return None
    return map_credit_score_to_100(score)
