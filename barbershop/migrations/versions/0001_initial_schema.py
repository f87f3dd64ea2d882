"""Initial database schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-01 10:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

appointment_status = sa.Enum("scheduled", "completed", "cancelled", "no_show", name="appointment_status")
payment_method = sa.Enum("money", "pix", "credit_card", "debit_card", name="payment_method")
recurrence_type = sa.Enum("none", "daily", "weekly", "biweekly", "monthly", name="recurrence_type")


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "barbers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_special_barber", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("commission_rate_service", sa.Numeric(5, 2), nullable=True, server_default="0"),
        sa.Column("commission_rate_chemical_service", sa.Numeric(5, 2), nullable=True, server_default="0"),
        sa.Column("commission_rate_product", sa.Numeric(5, 2), nullable=True, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("duration_special_minutes", sa.Integer(), nullable=True),
        sa.Column("is_chemical", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("barber_id", sa.Integer(), nullable=False),
        sa.Column("client_name", sa.String(length=120), nullable=True),
        sa.Column("barber_name", sa.String(length=120), nullable=True),
        sa.Column("appointment_datetime", sa.DateTime(timezone=False), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("status", appointment_status, nullable=False, server_default="scheduled"),
        sa.Column("total_price_cents", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("payment_method", payment_method, nullable=True),
        sa.Column("final_amount_cents", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("recurrence_group_id", sa.String(length=36), nullable=True),
        sa.Column("overlap_allowed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("duration_minutes > 0", name="ck_appointments_duration_positive"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["barber_id"], ["barbers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_appointments_barber_datetime", "appointments", ["barber_id", "appointment_datetime"])
    op.create_index(op.f("ix_appointments_recurrence_group_id"), "appointments", ["recurrence_group_id"])

    op.create_table(
        "appointment_services",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("appointment_id", sa.Integer(), nullable=False),
        sa.Column("service_id", sa.Integer(), nullable=False),
        sa.Column("price_at_booking_cents", sa.Integer(), nullable=True, server_default="0"),
        sa.Column("commission_rate_applied", sa.Numeric(5, 2), nullable=True, server_default="0"),
        sa.Column("position", sa.Integer(), nullable=True, server_default="0"),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_appointment_services_appointment_id"), "appointment_services", ["appointment_id"])

    op.create_table(
        "schedule_blocks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("barber_id", sa.Integer(), nullable=True),
        sa.Column("block_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("recurrence_type", recurrence_type, nullable=True),
        sa.Column("recurrence_pattern", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("recurrence_end_date", sa.Date(), nullable=True),
        sa.Column("parent_block_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("start_time < end_time", name="ck_schedule_blocks_time_range"),
        sa.CheckConstraint(
            "is_recurring OR (recurrence_type IS NULL AND recurrence_pattern IS NULL AND recurrence_end_date IS NULL)",
            name="ck_schedule_blocks_recurrence_fields",
        ),
        sa.ForeignKeyConstraint(["barber_id"], ["barbers.id"]),
        sa.ForeignKeyConstraint(["parent_block_id"], ["schedule_blocks.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schedule_blocks_date_barber", "schedule_blocks", ["block_date", "barber_id"])
    op.create_index(op.f("ix_schedule_blocks_parent_block_id"), "schedule_blocks", ["parent_block_id"])


def downgrade() -> None:
    op.drop_index(op.f("ix_schedule_blocks_parent_block_id"), table_name="schedule_blocks")
    op.drop_index("ix_schedule_blocks_date_barber", table_name="schedule_blocks")
    op.drop_table("schedule_blocks")
    op.drop_index(op.f("ix_appointment_services_appointment_id"), table_name="appointment_services")
    op.drop_table("appointment_services")
    op.drop_index(op.f("ix_appointments_recurrence_group_id"), table_name="appointments")
    op.drop_index("ix_appointments_barber_datetime", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("services")
    op.drop_table("barbers")
    op.drop_table("clients")
    op.execute("DROP TYPE IF EXISTS recurrence_type")
    op.execute("DROP TYPE IF EXISTS payment_method")
    op.execute("DROP TYPE IF EXISTS appointment_status")
