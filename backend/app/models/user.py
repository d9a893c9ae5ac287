"""User model for tenants, landlords and staff."""

import enum
from datetime import datetime

from sqlalchemy import String, Boolean, Enum, DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class UserRole(str, enum.Enum):
    TENANT = "tenant"
    LANDLORD = "landlord"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Subject id issued by the identity provider
    external_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=lambda e: [i.value for i in e]),
        default=UserRole.TENANT, nullable=False,
    )

    # Mirror of the latest completed credit check (last write wins)
    credit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
    )

    # Relationships
    rental_applications = relationship(
        "RentalApplication", back_populates="tenant",
        foreign_keys="[RentalApplication.tenant_id]",
    )
    credit_checks = relationship("CreditCheck", back_populates="user")
