"""Prevent overlapping scheduled appointments per barber

Revision ID: 0002_appointments_exclusion_constraint
Revises: 0001_initial_schema
Create Date: 2026-09-02 09:00:00.000000

Adds a GiST exclusion constraint so two ``scheduled`` appointments of the
same barber can never occupy intersecting ``[start, start + duration)``
ranges, closing the race between the application's conflict pre-check and
its insert. Rows booked with the overlap override (``overlap_allowed``) are
outside the constraint.

Existing overlapping pairs are recorded in ``appointment_overlap_audit`` and
the later row of each pair is flagged ``overlap_allowed`` so the constraint
can be created without touching appointment statuses.
"""
from alembic import op
import sqlalchemy as sa

from barbershop.migrations.utils import constraint_exists, table_exists

# revision identifiers, used by Alembic.
revision = "0002_appointments_exclusion_constraint"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

CONSTRAINT_NAME = "appointments_no_overlap_barber"
AUDIT_TABLE = "appointment_overlap_audit"

_RANGE = "tsrange(appointment_datetime, appointment_datetime + duration_minutes * interval '1 minute')"


def upgrade() -> None:
    conn = op.get_bind()

    conn.execute(sa.text("CREATE EXTENSION IF NOT EXISTS btree_gist"))

    if not table_exists(AUDIT_TABLE, conn):
        op.create_table(
            AUDIT_TABLE,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kept_appointment_id", sa.Integer(), nullable=False),
            sa.Column("flagged_appointment_id", sa.Integer(), nullable=False),
            sa.Column("barber_id", sa.Integer(), nullable=False),
            sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        )

    conn.execute(
        sa.text(
            f"""
            WITH candidate AS (
              SELECT id, barber_id, {_RANGE} AS slot
              FROM appointments
              WHERE status = 'scheduled' AND NOT overlap_allowed
            ), pairs AS (
              SELECT a.id AS kept_id, b.id AS flagged_id, a.barber_id
              FROM candidate a
              JOIN candidate b ON a.barber_id = b.barber_id AND a.id < b.id
              WHERE a.slot && b.slot
            )
            INSERT INTO {AUDIT_TABLE} (kept_appointment_id, flagged_appointment_id, barber_id)
            SELECT kept_id, flagged_id, barber_id FROM pairs
            """
        )
    )
    conn.execute(
        sa.text(
            f"""
            UPDATE appointments SET overlap_allowed = true
            WHERE id IN (SELECT DISTINCT flagged_appointment_id FROM {AUDIT_TABLE})
            """
        )
    )

    if not constraint_exists(CONSTRAINT_NAME, conn):
        conn.execute(
            sa.text(
                f"""
                ALTER TABLE appointments
                ADD CONSTRAINT {CONSTRAINT_NAME} EXCLUDE USING gist (
                  barber_id WITH =,
                  {_RANGE} WITH &&
                ) WHERE (status = 'scheduled'::appointment_status AND NOT overlap_allowed)
                """
            )
        )


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(sa.text(f"ALTER TABLE appointments DROP CONSTRAINT IF EXISTS {CONSTRAINT_NAME}"))
    op.drop_table(AUDIT_TABLE)
