"""Shared, DB-agnostic helpers used across service layers.

Time guideline:
    • Appointment and block times are the shop's local wall-clock (naive)
      datetimes; ``created_at``/``updated_at`` audit columns are aware UTC.
    • Duration and recurrence helpers below are pure functions: no session,
      no I/O.
"""
from __future__ import annotations
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time as _time, timedelta
from typing import Any, Iterable

from barbershop.app.core.constants import (
    DEFAULT_SERVICE_FALLBACK_DURATION,
    MAX_DURATION_OVERRIDE,
    MAX_RECURRENCE_OCCURRENCES,
    MIN_DURATION_OVERRIDE,
)
from barbershop.app.core.errors import ValidationError
from barbershop.app.domain.models import RecurrenceType

logger = logging.getLogger(__name__)


# ---------------- Duration calculator ---------------- #
def validate_duration_override(override: int | None) -> int | None:
    """Return the override unchanged or raise ValidationError when out of bounds."""
    if override is None:
        return None
    try:
        value = int(override)
    except (TypeError, ValueError) as exc:
        raise ValidationError("invalid_duration", f"duration override {override!r} is not a number") from exc
    if value < MIN_DURATION_OVERRIDE or value > MAX_DURATION_OVERRIDE:
        raise ValidationError(
            "invalid_duration",
            f"duration override must be within {MIN_DURATION_OVERRIDE}-{MAX_DURATION_OVERRIDE} minutes",
        )
    return value


def service_duration(service: Any, barber: Any | None) -> int:
    """Duration of a single service for the given barber.

    Special barbers use ``duration_special_minutes`` when set; everyone else
    (and special barbers without a special value) uses ``duration_minutes``.
    Missing values and a missing barber fall back to the default duration.
    """
    if barber is None:
        return DEFAULT_SERVICE_FALLBACK_DURATION
    if getattr(barber, "is_special_barber", False):
        special = getattr(service, "duration_special_minutes", None)
        if special and int(special) > 0:
            return int(special)
    normal = getattr(service, "duration_minutes", None)
    if normal and int(normal) > 0:
        return int(normal)
    return DEFAULT_SERVICE_FALLBACK_DURATION


def compute_total_duration(services: Iterable[Any], barber: Any | None, override: int | None = None) -> int:
    """Total booked minutes for a service set.

    A positive override wins outright; otherwise per-service durations are
    summed (see ``service_duration``).
    """
    if override is not None and int(override) > 0:
        return int(override)
    return sum(service_duration(svc, barber) for svc in services)


# ---------------- Recurrence generator ---------------- #
@dataclass(frozen=True)
class RecurrenceSpec:
    type: RecurrenceType = RecurrenceType.NONE
    interval: int = 1
    end_date: date | None = None
    occurrences: int | None = None


def add_months(value: datetime, months: int) -> datetime:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance(start: datetime, spec: RecurrenceSpec, steps: int) -> datetime | None:
    """Return the occurrence ``steps`` steps after ``start`` (None for unknown types)."""
    interval = max(1, int(spec.interval or 1))
    if spec.type is RecurrenceType.DAILY:
        return start + timedelta(days=interval * steps)
    if spec.type is RecurrenceType.WEEKLY:
        return start + timedelta(days=7 * interval * steps)
    if spec.type is RecurrenceType.BIWEEKLY:
        # Fixed fortnight; interval does not apply
        return start + timedelta(days=14 * steps)
    if spec.type is RecurrenceType.MONTHLY:
        return add_months(start, interval * steps)
    return None


def _is_past_end(value: datetime, end_date: date | None) -> bool:
    return end_date is not None and value.date() > end_date


def max_occurrences(start: datetime, spec: RecurrenceSpec) -> int:
    """Upper bound on generated dates (start included), never above 52."""
    if spec.occurrences is not None:
        return max(1, min(int(spec.occurrences), MAX_RECURRENCE_OCCURRENCES))
    if spec.end_date is not None:
        count = 1
        while count < MAX_RECURRENCE_OCCURRENCES:
            nxt = advance(start, spec, count)
            if nxt is None or _is_past_end(nxt, spec.end_date):
                break
            count += 1
        return count
    return 1


def generate_recurrence_dates(start: datetime, spec: RecurrenceSpec | None = None) -> list[datetime]:
    """Expand a start date and recurrence rule into ordered occurrence dates.

    The first element is always ``start``. Without a count or end date, or
    for unknown/none types, only ``start`` is returned.
    """
    if spec is None or spec.type is RecurrenceType.NONE:
        return [start]
    if advance(start, spec, 1) is None:
        logger.warning("Unsupported recurrence type %s; single occurrence", spec.type)
        return [start]

    bound = max_occurrences(start, spec)
    dates = [start]
    for i in range(1, bound):
        nxt = advance(start, spec, i)
        if nxt is None or _is_past_end(nxt, spec.end_date):
            break
        dates.append(nxt)
    # Month clamping can only move forward, but keep output de-duplicated
    return list(dict.fromkeys(dates))


# ---------------- Interval helpers ---------------- #
def appointment_end(start: datetime, duration_minutes: int) -> datetime:
    return start + timedelta(minutes=int(duration_minutes))


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap test: [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and b_start < a_end


def block_interval(block_date: date, start_time: _time, end_time: _time) -> tuple[datetime, datetime]:
    return datetime.combine(block_date, start_time), datetime.combine(block_date, end_time)


def block_overlaps(cand_start: datetime, cand_end: datetime, blk_start: datetime, blk_end: datetime) -> bool:
    """Block/candidate collision by any of the three conditions.

    Neither interval is assumed to be the larger one, so the block starting
    inside the candidate, the block ending inside it, and the candidate lying
    within the block are all checked. Shared boundaries do not collide.
    """
    starts_during = cand_start <= blk_start < cand_end
    ends_during = cand_start < blk_end <= cand_end
    contains_candidate = blk_start <= cand_start and cand_end <= blk_end
    return starts_during or ends_during or contains_candidate


__all__ = [
    "validate_duration_override",
    "service_duration",
    "compute_total_duration",
    "RecurrenceSpec",
    "add_months",
    "advance",
    "max_occurrences",
    "generate_recurrence_dates",
    "appointment_end",
    "intervals_overlap",
    "block_interval",
    "block_overlaps",
]
