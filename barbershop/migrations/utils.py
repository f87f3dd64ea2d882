
from alembic import op
import sqlalchemy as sa
from sqlalchemy.engine.reflection import Inspector


def _get_bind(conn: sa.engine.Connection | None = None) -> sa.engine.Connection:
    if conn is not None:
        return conn
    return op.get_bind()


def _inspector(conn: sa.engine.Connection | None = None) -> Inspector | None:
    bind = _get_bind(conn)
    try:
        return sa.inspect(bind)
    except sa.exc.NoInspectionAvailable:
        return None


def table_exists(table_name: str, conn: sa.engine.Connection | None = None) -> bool:
    insp = _inspector(conn)
    if insp is None:
        return False
    return table_name in insp.get_table_names()


def pg_object_exists(query: str, name: str, conn: sa.engine.Connection | None = None) -> bool:
    """Run a catalog lookup such as ``SELECT 1 FROM pg_constraint WHERE conname = :name``."""
    bind = _get_bind(conn)
    return bind.execute(sa.text(query), {"name": name}).first() is not None


def constraint_exists(constraint_name: str, conn: sa.engine.Connection | None = None) -> bool:
    return pg_object_exists("SELECT 1 FROM pg_constraint WHERE conname = :name", constraint_name, conn)


def trigger_exists(trigger_name: str, conn: sa.engine.Connection | None = None) -> bool:
    return pg_object_exists("SELECT 1 FROM pg_trigger WHERE tgname = :name", trigger_name, conn)
