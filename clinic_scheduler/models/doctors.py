"""Doctor model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from clinic_scheduler.models.base import metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "user_id",
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    ),
    # Professional credentials
    Column("specialization", String(200), nullable=False, index=True),
    Column("license_number", String(100), nullable=False, unique=True, index=True),
    Column("years_experience", Integer),
    Column("qualification", String(500)),
    Column("consultation_fee", Numeric(10, 2)),
    Column("bio", Text),
    # Scheduling eligibility
    Column("availability_status", Boolean, nullable=False, server_default=text("true")),
    Column(
        "approval_status",
        String(20),
        nullable=False,
        server_default=text("'pending'"),
        index=True,
    ),
    Column("approved_by", Uuid, ForeignKey("users.id", ondelete="SET NULL")),
    Column("approved_at", DateTime(timezone=True)),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "approval_status IN ('pending', 'approved', 'rejected')",
        name="doctors_approval_status_check",
    ),
)
