from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

if TYPE_CHECKING:
    from barbershop.app.services.conflict_services import ConflictReport

logger = logging.getLogger(__name__)

__all__ = [
    "ValidationError",
    "SchedulingConflict",
    "InvalidStatusTransition",
    "NotFound",
    "PersistenceError",
    "handle_db_error",
    "is_overlap_violation",
]


class ValidationError(ValueError):
    """Input rejected before any database call; str(exc) is a stable error code."""

    def __init__(self, code: str, detail: str | None = None) -> None:
        super().__init__(code)
        self.code = code
        self.detail = detail


class SchedulingConflict(ValueError):
    """Candidate slots collide with appointments or schedule blocks.

    ``report`` is None when the conflict was detected by the database
    (exclusion constraint) rather than by the pre-check.
    """

    def __init__(self, report: "ConflictReport | None" = None, code: str = "slot_unavailable") -> None:
        super().__init__(code)
        self.code = code
        self.report = report


class InvalidStatusTransition(ValueError):
    def __init__(self, current: object, target: object) -> None:
        super().__init__("invalid_status_transition")
        self.code = "invalid_status_transition"
        self.current = current
        self.target = target


class NotFound(LookupError):
    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity}_not_found")
        self.code = f"{entity}_not_found"
        self.entity_id = entity_id


class PersistenceError(RuntimeError):
    """Remote store failure surfaced to callers as a generic error."""

    def __init__(self, context: str) -> None:
        super().__init__("persistence_failed")
        self.code = "persistence_failed"
        self.context = context


EXCLUSION_VIOLATION_SQLSTATE = "23P01"
OVERLAP_CONSTRAINT_NAME = "appointments_no_overlap_barber"


def is_overlap_violation(error: SQLAlchemyError) -> bool:
    """True when the store rejected a row through the barber overlap constraint."""
    if not isinstance(error, IntegrityError):
        return False
    orig = error.orig
    for source in (orig, getattr(orig, "__cause__", None)):
        code = getattr(source, "sqlstate", None) or getattr(source, "pgcode", None)
        if code == EXCLUSION_VIOLATION_SQLSTATE:
            return True
    return OVERLAP_CONSTRAINT_NAME in str(orig)


def handle_db_error(error: SQLAlchemyError, context: str = "database operation") -> Exception:
    """Log a database error with context and return the exception to raise.

    Overlap-constraint violations become SchedulingConflict; every other
    failure (CHECK and FK violations included) becomes PersistenceError.
    """
    if is_overlap_violation(error):
        logger.info("Overlap constraint rejected write in %s (slot taken): %s", context, error)
        return SchedulingConflict(None)
    logger.error("Database error in %s: %s", context, error)
    return PersistenceError(context)
