from __future__ import annotations
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop.app.core.errors import SchedulingConflict
from barbershop.app.domain.models import Appointment, AppointmentStatus, ScheduleBlock
from barbershop.app.services.shared_services import (
    appointment_end,
    block_interval,
    block_overlaps,
    intervals_overlap,
)

logger = logging.getLogger(__name__)

# How far back to look for appointments that may still be running at a candidate start
LOOKBACK_WINDOW = timedelta(hours=24)

KIND_APPOINTMENT = "appointment"
KIND_BLOCK = "block"


@dataclass
class ConflictEntry:
    candidate_start: datetime
    candidate_end: datetime
    kind: str
    conflict_id: int
    barber_id: int | None
    starts_at: datetime
    ends_at: datetime
    client_name: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key in ("candidate_start", "candidate_end", "starts_at", "ends_at"):
            data[key] = data[key].isoformat()
        return data


@dataclass
class ConflictReport:
    entries: list[ConflictEntry] = field(default_factory=list)

    @property
    def appointment_conflicts(self) -> list[ConflictEntry]:
        return [e for e in self.entries if e.kind == KIND_APPOINTMENT]

    @property
    def block_conflicts(self) -> list[ConflictEntry]:
        return [e for e in self.entries if e.kind == KIND_BLOCK]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.entries)

    @property
    def conflicting_dates(self) -> list[datetime]:
        return list(dict.fromkeys(e.candidate_start for e in self.entries))

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_conflict": self.has_conflicts,
            "dates": [d.isoformat() for d in self.conflicting_dates],
            "conflicts": [e.to_dict() for e in self.entries],
        }


async def _appointment_conflicts(
    session: AsyncSession,
    barber_id: int,
    cand_start: datetime,
    cand_end: datetime,
    exclude_ids: Sequence[int],
) -> list[ConflictEntry]:
    stmt = select(Appointment).where(
        Appointment.barber_id == barber_id,
        Appointment.status == AppointmentStatus.SCHEDULED,
        Appointment.appointment_datetime >= cand_start - LOOKBACK_WINDOW,
        Appointment.appointment_datetime < cand_end,
    )
    if exclude_ids:
        stmt = stmt.where(Appointment.id.not_in(list(exclude_ids)))
    rows = (await session.execute(stmt.order_by(Appointment.appointment_datetime))).scalars().all()
    found: list[ConflictEntry] = []
    for appt in rows:
        a_start = appt.appointment_datetime
        a_end = appointment_end(a_start, appt.duration_minutes)
        if intervals_overlap(cand_start, cand_end, a_start, a_end):
            found.append(
                ConflictEntry(
                    candidate_start=cand_start,
                    candidate_end=cand_end,
                    kind=KIND_APPOINTMENT,
                    conflict_id=appt.id,
                    barber_id=appt.barber_id,
                    starts_at=a_start,
                    ends_at=a_end,
                    client_name=appt.client_name,
                )
            )
    return found


async def _block_conflicts(
    session: AsyncSession,
    barber_id: int,
    cand_start: datetime,
    cand_end: datetime,
) -> list[ConflictEntry]:
    stmt = select(ScheduleBlock).where(
        ScheduleBlock.block_date == cand_start.date(),
        or_(ScheduleBlock.barber_id == barber_id, ScheduleBlock.barber_id.is_(None)),
    )
    rows = (await session.execute(stmt.order_by(ScheduleBlock.start_time))).scalars().all()
    found: list[ConflictEntry] = []
    for blk in rows:
        b_start, b_end = block_interval(blk.block_date, blk.start_time, blk.end_time)
        if block_overlaps(cand_start, cand_end, b_start, b_end):
            found.append(
                ConflictEntry(
                    candidate_start=cand_start,
                    candidate_end=cand_end,
                    kind=KIND_BLOCK,
                    conflict_id=blk.id,
                    barber_id=blk.barber_id,
                    starts_at=b_start,
                    ends_at=b_end,
                    reason=blk.reason,
                )
            )
    return found


async def detect_conflicts(
    session: AsyncSession,
    barber_id: int,
    dates: Iterable[datetime],
    duration_minutes: int,
    *,
    exclude_ids: Sequence[int] = (),
) -> ConflictReport:
    """Check every candidate start against appointments and schedule blocks.

    Each candidate occupies ``[start, start + duration)``. Appointments of the
    same barber in ``scheduled`` status and blocks of this barber or of all
    barbers are considered. ``exclude_ids`` skips appointments being moved.
    """
    report = ConflictReport()
    for cand_start in dates:
        cand_end = appointment_end(cand_start, duration_minutes)
        report.entries.extend(await _appointment_conflicts(session, barber_id, cand_start, cand_end, exclude_ids))
        report.entries.extend(await _block_conflicts(session, barber_id, cand_start, cand_end))
    if report.has_conflicts:
        logger.info(
            "Conflicts for barber=%s: %d appointment(s), %d block(s) on %s",
            barber_id,
            len(report.appointment_conflicts),
            len(report.block_conflicts),
            [d.isoformat() for d in report.conflicting_dates],
        )
    return report


def ensure_bookable(report: ConflictReport, allow_overlap: bool = False) -> None:
    """Raise SchedulingConflict when the batch must be refused as a whole."""
    if report.block_conflicts:
        raise SchedulingConflict(report, code="blocked_period")
    if report.appointment_conflicts and not allow_overlap:
        raise SchedulingConflict(report, code="slot_unavailable")
    if report.appointment_conflicts:
        logger.warning(
            "Double booking accepted with overlap override: %s",
            [e.conflict_id for e in report.appointment_conflicts],
        )


async def check_batch(
    session: AsyncSession,
    barber_id: int,
    dates: Sequence[datetime],
    duration_minutes: int,
    *,
    allow_overlap: bool = False,
    exclude_ids: Sequence[int] = (),
) -> ConflictReport:
    report = await detect_conflicts(session, barber_id, dates, duration_minutes, exclude_ids=exclude_ids)
    ensure_bookable(report, allow_overlap)
    return report


__all__ = [
    "ConflictEntry",
    "ConflictReport",
    "detect_conflicts",
    "ensure_bookable",
    "check_batch",
    "KIND_APPOINTMENT",
    "KIND_BLOCK",
]
