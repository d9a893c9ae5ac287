"""Credit check model: one row per bureau request, kept for history."""

import enum
from datetime import datetime, timezone
from sqlalchemy import String, Integer, Enum, DateTime, ForeignKey, JSON, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class CreditCheckStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CreditCheck(Base):
    __tablename__ = "credit_checks"
    __table_args__ = (
        # Pending-expiry sweep
        Index("ix_credit_checks_status_request_date", "status", "request_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    application_id: Mapped[int | None] = mapped_column(
        ForeignKey("rental_applications.id"), nullable=True, index=True
    )

    # Consent
    consent_provided: Mapped[bool] = mapped_column(Boolean, nullable=False)
    consent_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Status
    status: Mapped[CreditCheckStatus] = mapped_column(
        Enum(CreditCheckStatus, values_callable=lambda e: [i.value for i in e]),
        default=CreditCheckStatus.PENDING, nullable=False, index=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Bureau correlation
    reference_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    dispatch_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Result
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    report: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    request_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    completed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    user = relationship("User", back_populates="credit_checks")
    application = relationship("RentalApplication", back_populates="credit_checks")

    @property
    def score_band(self) -> str | None:
        if self.score is None:
            return None
        from app.services.credit_report import score_band
        return score_band(self.score)
