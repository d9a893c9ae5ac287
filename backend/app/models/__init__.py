"""SQLAlchemy models for the rentcheck credit-check service."""

from app.models.user import User, UserRole
from app.models.application import RentalApplication, ApplicationStatus
from app.models.credit_check import CreditCheck, CreditCheckStatus

__all__ = [
    "User",
    "UserRole",
    "RentalApplication",
    "ApplicationStatus",
    "CreditCheck",
    "CreditCheckStatus",
]
