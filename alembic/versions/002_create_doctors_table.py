"""Create doctors table with approval workflow columns

Revision ID: 002
Revises: 001
Create Date: 2026-10-01 00:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create doctors table."""
    op.create_table(
        "doctors",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("specialization", sa.String(200), nullable=False),
        sa.Column("license_number", sa.String(100), nullable=False),
        sa.Column("years_experience", sa.Integer(), nullable=True),
        sa.Column("qualification", sa.String(500), nullable=True),
        sa.Column("consultation_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column(
            "availability_status", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        sa.Column(
            "approval_status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column(
            "approved_by",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("approved_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "approval_status IN ('pending', 'approved', 'rejected')",
            name="doctors_approval_status_check",
        ),
        sa.CheckConstraint(
            "license_number ~ '^[A-Z]{2}-[A-Z]{3}-[0-9]{3}-[0-9]{4}$'",
            name="doctors_license_number_format_check",
        ),
    )

    op.create_index("ix_doctors_user_id", "doctors", ["user_id"], unique=True)
    op.create_index("ix_doctors_license_number", "doctors", ["license_number"], unique=True)
    op.create_index("ix_doctors_specialization", "doctors", ["specialization"])
    op.create_index("ix_doctors_approval_status", "doctors", ["approval_status"])


def downgrade() -> None:
    """Drop doctors table."""
    op.drop_index("ix_doctors_approval_status", table_name="doctors")
    op.drop_index("ix_doctors_specialization", table_name="doctors")
    op.drop_index("ix_doctors_license_number", table_name="doctors")
    op.drop_index("ix_doctors_user_id", table_name="doctors")
    op.drop_table("doctors")
