"""Patient model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from clinic_scheduler.models.base import metadata

patients = Table(
    "patients",
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
    # Personal information
    Column("date_of_birth", Date, nullable=False),
    Column("gender", String(20), nullable=False),
    Column("blood_group", String(10)),
    # Address information
    Column("address", String(500)),
    Column("city", String(100)),
    Column("state", String(100)),
    Column("postal_code", String(20)),
    # Emergency contact
    Column("emergency_contact_name", String(200)),
    Column("emergency_contact_phone", String(20)),
    # Medical information
    Column("medical_history", Text),
    Column("allergies", Text),
    Column("current_medications", Text),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("gender IN ('male', 'female', 'other')", name="patients_gender_check"),
)
