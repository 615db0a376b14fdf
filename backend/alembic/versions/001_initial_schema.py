"""Initial schema: events and registrations with slot constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Events table
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("schedule", sa.DateTime(timezone=True), nullable=True),
        sa.Column("code", sa.String(64), nullable=True),
        sa.Column("max_slots", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("registered_slots", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("max_slots >= 0", name="check_max_slots_non_negative"),
        sa.CheckConstraint("registered_slots >= 0", name="check_registered_slots_non_negative"),
        # Last line of defence against overbooking if the row lock is ever bypassed
        sa.CheckConstraint("registered_slots <= max_slots", name="check_registered_lte_max"),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_schedule", "events", ["schedule"])

    # Registrations table
    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "registration_date",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("user_id", "event_id", name="uq_user_event_registration"),
    )
    op.create_index("ix_registrations_id", "registrations", ["id"])
    op.create_index("ix_registrations_user_id", "registrations", ["user_id"])
    op.create_index("ix_registrations_event_id", "registrations", ["event_id"])


def downgrade() -> None:
    op.drop_table("registrations")
    op.drop_table("events")
