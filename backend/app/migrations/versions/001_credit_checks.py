"""Create users, rental_applications and credit_checks tables.

Revision ID: 001
Revises:
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    user_role = postgresql.ENUM(
        "tenant", "landlord", "admin",
        name="userrole", create_type=True,
    )
    application_status = postgresql.ENUM(
        "pending", "approved", "rejected", "withdrawn",
        name="applicationstatus", create_type=True,
    )
    credit_check_status = postgresql.ENUM(
        "pending", "completed", "failed",
        name="creditcheckstatus", create_type=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True, unique=True),
        sa.Column("role", user_role, nullable=False, server_default="tenant"),
        sa.Column("credit_score", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "rental_applications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("property_id", sa.Integer(), nullable=True, index=True),
        sa.Column("landlord_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("status", application_status, nullable=False, server_default="pending"),
        sa.Column("move_in_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("credit_check", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "credit_checks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column(
            "application_id", sa.Integer(),
            sa.ForeignKey("rental_applications.id"), nullable=True, index=True,
        ),
        sa.Column("consent_provided", sa.Boolean(), nullable=False),
        sa.Column("consent_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", credit_check_status, nullable=False, server_default="pending", index=True),
        sa.Column("failure_reason", sa.String(500), nullable=True),
        sa.Column("reference_id", sa.String(40), nullable=False, unique=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("dispatch_task_id", sa.String(255), nullable=True),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("report", sa.JSON(), nullable=True),
        sa.Column("request_date", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
    )

    # Pending-expiry sweep
    op.create_index(
        "ix_credit_checks_status_request_date",
        "credit_checks",
        ["status", "request_date"],
    )


def downgrade() -> None:
    op.drop_index("ix_credit_checks_status_request_date", table_name="credit_checks")
    op.drop_table("credit_checks")
    op.drop_table("rental_applications")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS creditcheckstatus")
    op.execute("DROP TYPE IF EXISTS applicationstatus")
    op.execute("DROP TYPE IF EXISTS userrole")
