"""Rental application model (the slice the credit-check workflow touches)."""

import enum
from datetime import datetime
from sqlalchemy import String, Integer, Enum, DateTime, ForeignKey, Boolean, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class RentalApplication(Base):
    __tablename__ = "rental_applications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    property_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    landlord_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, values_callable=lambda e: [i.value for i in e]),
        default=ApplicationStatus.PENDING, nullable=False,
    )
    move_in_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Flipped by the credit-check workflow once a linked check completes
    credit_check: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    tenant = relationship("User", back_populates="rental_applications", foreign_keys=[tenant_id])
    credit_checks = relationship("CreditCheck", back_populates="application")
