"""User model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from clinic_scheduler.models.base import metadata

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Identity (owned by the identity service, read here)
    Column("email", Text, nullable=False, unique=True, index=True),
    Column("email_verified", Boolean, nullable=False, server_default=text("false")),
    Column("full_name", Text, nullable=False),
    Column("phone", String(20)),
    Column("role", String(20), nullable=False, server_default=text("'patient'")),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("role IN ('admin', 'doctor', 'patient')", name="users_role_check"),
)
