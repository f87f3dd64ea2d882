"""Publish row changes for real-time calendar sync

Revision ID: 0003_change_notify_triggers
Revises: 0002_appointments_exclusion_constraint
Create Date: 2026-09-03 09:00:00.000000

Row-level triggers send ``{"table", "type", "id"}`` JSON via pg_notify.
Appointment and appointment-service changes go to ``appointments_changes``;
schedule block changes to ``schedule_blocks_changes``. Channel names must
match ``barbershop.app.core.constants``.
"""
from alembic import op
import sqlalchemy as sa

from barbershop.migrations.utils import trigger_exists

# revision identifiers, used by Alembic.
revision = "0003_change_notify_triggers"
down_revision = "0002_appointments_exclusion_constraint"
branch_labels = None
depends_on = None

FUNCTION_NAME = "notify_row_change"

# (table, trigger name, channel, id column)
TRIGGERS = (
    ("appointments", "trg_appointments_notify", "appointments_changes", "id"),
    ("appointment_services", "trg_appointment_services_notify", "appointments_changes", "appointment_id"),
    ("schedule_blocks", "trg_schedule_blocks_notify", "schedule_blocks_changes", "id"),
)


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(
        sa.text(
            f"""
            CREATE OR REPLACE FUNCTION {FUNCTION_NAME}() RETURNS trigger AS $$
            DECLARE
                rec RECORD;
                id_column TEXT := TG_ARGV[1];
            BEGIN
                IF TG_OP = 'DELETE' THEN
                    rec := OLD;
                ELSE
                    rec := NEW;
                END IF;
                PERFORM pg_notify(
                    TG_ARGV[0],
                    json_build_object(
                        'table', TG_TABLE_NAME,
                        'type', TG_OP,
                        'id', to_jsonb(rec) -> id_column
                    )::text
                );
                RETURN NULL;
            END;
            $$ LANGUAGE plpgsql;
            """
        )
    )
    for table, trigger, channel, id_column in TRIGGERS:
        if trigger_exists(trigger, conn):
            continue
        conn.execute(
            sa.text(
                f"""
                CREATE TRIGGER {trigger}
                AFTER INSERT OR UPDATE OR DELETE ON {table}
                FOR EACH ROW EXECUTE FUNCTION {FUNCTION_NAME}('{channel}', '{id_column}')
                """
            )
        )


def downgrade() -> None:
    conn = op.get_bind()
    for table, trigger, _channel, _id_column in TRIGGERS:
        conn.execute(sa.text(f"DROP TRIGGER IF EXISTS {trigger} ON {table}"))
    conn.execute(sa.text(f"DROP FUNCTION IF EXISTS {FUNCTION_NAME}()"))
