"""Notification sink table."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from clinic_scheduler.models.base import metadata

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("user_id", Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("notification_type", String(50), nullable=False),
    Column("title", Text, nullable=False),
    Column("body", Text, nullable=False),
    Column("is_read", Boolean, nullable=False, server_default=text("false")),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "notification_type IN ('new_appointment', 'appointment_confirmation', "
        "'appointment_cancellation', 'appointment_reminder', 'system')",
        name="notifications_type_check",
    ),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_user_unread", "user_id", "is_read"),
)
