from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from barbershop.app.core.db import get_session
from barbershop.app.core.errors import (
    InvalidStatusTransition,
    NotFound,
    ValidationError,
    handle_db_error,
)
from barbershop.app.domain.models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    Barber,
    Service,
    can_transition,
    normalize_appointment_status,
    normalize_payment_method,
)
from barbershop.app.services.conflict_services import ConflictReport, check_batch
from barbershop.app.services.directory_services import DirectoryRepo, commission_rate_for
from barbershop.app.services.shared_services import (
    RecurrenceSpec,
    appointment_end,
    compute_total_duration,
    generate_recurrence_dates,
    validate_duration_override,
)

logger = logging.getLogger(__name__)


@dataclass
class AppointmentInput:
    """Booking intent collected by the presentation layer."""

    client_id: int
    barber_id: int
    appointment_datetime: datetime
    service_ids: list[int]
    note: str | None = None
    duration_override: int | None = None
    recurrence: RecurrenceSpec | None = None
    allow_overlap: bool = False


@dataclass
class AppointmentUpdate:
    client_id: int
    barber_id: int
    appointment_datetime: datetime
    service_ids: list[int]
    note: str | None = None
    duration_override: int | None = None
    allow_overlap: bool = False


@dataclass
class AppointmentQuery:
    """Filter used by calendar views and re-run by the sync layer on reload."""

    start: datetime | None = None
    end: datetime | None = None
    barber_id: int | None = None
    statuses: list[AppointmentStatus] = field(default_factory=list)


def validate_appointment_input(data: AppointmentInput | AppointmentUpdate) -> None:
    """Reject incomplete intents before any database call."""
    if not data.client_id:
        raise ValidationError("client_required")
    if not data.barber_id:
        raise ValidationError("barber_required")
    if data.appointment_datetime is None:
        raise ValidationError("datetime_required")
    if not data.service_ids:
        raise ValidationError("services_required")
    if len(set(data.service_ids)) != len(data.service_ids):
        raise ValidationError("duplicate_services")
    validate_duration_override(data.duration_override)


def build_service_lines(services: Sequence[Service], barber: Barber | None) -> list[AppointmentService]:
    """Snapshot current price and barber commission for every service."""
    return [
        AppointmentService(
            service_id=svc.id,
            price_at_booking_cents=int(svc.price_cents or 0),
            commission_rate_applied=commission_rate_for(barber, svc),
            position=pos,
        )
        for pos, svc in enumerate(services)
    ]


def sum_service_prices(services: Sequence[Service]) -> int:
    return sum(int(svc.price_cents or 0) for svc in services)


def _overlapping_starts(report: ConflictReport) -> set[datetime]:
    return {e.candidate_start for e in report.appointment_conflicts}


async def replace_service_lines(
    session: AsyncSession, appointment_id: int, services: Sequence[Service], barber: Barber | None
) -> None:
    await session.execute(delete(AppointmentService).where(AppointmentService.appointment_id == appointment_id))
    for line in build_service_lines(services, barber):
        line.appointment_id = appointment_id
        session.add(line)


def _with_services(stmt):
    return stmt.options(selectinload(Appointment.services).selectinload(AppointmentService.service))


async def load_appointment(session: AsyncSession, appointment_id: int, *, for_update: bool = False) -> Appointment:
    stmt = _with_services(select(Appointment).where(Appointment.id == int(appointment_id)))
    if for_update:
        stmt = stmt.with_for_update()
    appt = (await session.execute(stmt)).scalars().first()
    if appt is None:
        raise NotFound("appointment", appointment_id)
    return appt


class AppointmentRepo:
    """Appointment queries with service lines eagerly loaded."""

    @staticmethod
    async def list(query: AppointmentQuery) -> list[Appointment]:
        stmt = _with_services(select(Appointment)).order_by(Appointment.appointment_datetime)
        if query.start is not None:
            stmt = stmt.where(Appointment.appointment_datetime >= query.start)
        if query.end is not None:
            stmt = stmt.where(Appointment.appointment_datetime <= query.end)
        if query.barber_id is not None:
            stmt = stmt.where(Appointment.barber_id == int(query.barber_id))
        if query.statuses:
            stmt = stmt.where(Appointment.status.in_(list(query.statuses)))
        try:
            async with get_session() as session:
                return list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            raise handle_db_error(e, "fetch_appointments") from e

    @staticmethod
    async def group_members(session: AsyncSession, group_id: str) -> list[Appointment]:
        stmt = (
            select(Appointment)
            .where(Appointment.recurrence_group_id == group_id)
            .order_by(Appointment.appointment_datetime)
            .with_for_update()
        )
        return list((await session.execute(stmt)).scalars().all())


async def fetch_appointments(query: AppointmentQuery) -> list[Appointment]:
    return await AppointmentRepo.list(query)


async def create_appointment(data: AppointmentInput) -> Appointment:
    """Create one appointment, or a whole recurring series, atomically.

    Every occurrence is conflict-checked before anything is written; all rows
    and their service lines are then inserted in one transaction. Series with
    more than one occurrence share a fresh ``recurrence_group_id``.

    Returns:
        The first occurrence with its service lines loaded.
    """
    validate_appointment_input(data)
    try:
        async with get_session() as session:
            async with session.begin():
                client = await DirectoryRepo.get_client(session, data.client_id)
                barber = await DirectoryRepo.get_barber(session, data.barber_id)
                services = await DirectoryRepo.get_services(session, data.service_ids)

                total_price = sum_service_prices(services)
                duration = compute_total_duration(services, barber, data.duration_override)
                dates = generate_recurrence_dates(data.appointment_datetime, data.recurrence)

                report = await check_batch(
                    session, data.barber_id, dates, duration, allow_overlap=data.allow_overlap
                )
                overlapping = _overlapping_starts(report)
                group_id = str(uuid4()) if len(dates) > 1 else None
                note = (data.note or "").strip() or None

                created: list[Appointment] = []
                for when in dates:
                    appt = Appointment(
                        client_id=client.id,
                        barber_id=int(data.barber_id),
                        client_name=client.name,
                        barber_name=barber.name,
                        appointment_datetime=when,
                        duration_minutes=duration,
                        status=AppointmentStatus.SCHEDULED,
                        total_price_cents=total_price,
                        note=note,
                        recurrence_group_id=group_id,
                        overlap_allowed=when in overlapping,
                    )
                    session.add(appt)
                    await session.flush()
                    for line in build_service_lines(services, barber):
                        line.appointment_id = appt.id
                        session.add(line)
                    created.append(appt)
            first_id = created[0].id
            session.expunge_all()
            first = await load_appointment(session, first_id)
            logger.info(
                "Created %d appointment(s): first=%s client=%s barber=%s group=%s",
                len(created), first.id, data.client_id, data.barber_id, group_id,
            )
            return first
    except SQLAlchemyError as e:
        raise handle_db_error(e, "create_appointment") from e


async def update_appointment(appointment_id: int, data: AppointmentUpdate) -> Appointment:
    """Replace client/barber/services/slot/duration/note of one appointment.

    A changed service set replaces the service lines with fresh price and
    commission snapshots; otherwise the existing snapshot total is kept.
    """
    validate_appointment_input(data)
    try:
        async with get_session() as session:
            async with session.begin():
                appt = await load_appointment(session, appointment_id, for_update=True)
                client = await DirectoryRepo.get_client(session, data.client_id)
                barber = await DirectoryRepo.get_barber(session, data.barber_id)
                services = await DirectoryRepo.get_services(session, data.service_ids)

                duration = compute_total_duration(services, barber, data.duration_override)
                services_changed = [line.service_id for line in appt.services] != [s.id for s in services]

                overlap = False
                if appt.status is AppointmentStatus.SCHEDULED:
                    report = await check_batch(
                        session,
                        data.barber_id,
                        [data.appointment_datetime],
                        duration,
                        allow_overlap=data.allow_overlap,
                        exclude_ids=[appt.id],
                    )
                    overlap = bool(report.appointment_conflicts)

                if services_changed:
                    await replace_service_lines(session, appt.id, services, barber)
                    appt.total_price_cents = sum_service_prices(services)
                else:
                    appt.total_price_cents = sum(line.price_at_booking_cents for line in appt.services)

                appt.client_id = client.id
                appt.client_name = client.name
                appt.barber_id = int(data.barber_id)
                appt.barber_name = barber.name
                appt.appointment_datetime = data.appointment_datetime
                appt.duration_minutes = duration
                appt.note = (data.note or "").strip() or None
                appt.overlap_allowed = overlap
            session.expunge_all()
            updated = await load_appointment(session, appointment_id)
            logger.info("Updated appointment %s (services_changed=%s)", appointment_id, services_changed)
            return updated
    except SQLAlchemyError as e:
        raise handle_db_error(e, "update_appointment") from e


async def reschedule_appointment(
    appointment_id: int, new_datetime: datetime, *, allow_overlap: bool = False
) -> Appointment:
    """Move one scheduled appointment to a new start, keeping its duration."""
    if new_datetime is None:
        raise ValidationError("datetime_required")
    try:
        async with get_session() as session:
            async with session.begin():
                appt = await load_appointment(session, appointment_id, for_update=True)
                if appt.status is not AppointmentStatus.SCHEDULED:
                    raise InvalidStatusTransition(appt.status, AppointmentStatus.SCHEDULED)
                report = await check_batch(
                    session,
                    appt.barber_id,
                    [new_datetime],
                    appt.duration_minutes,
                    allow_overlap=allow_overlap,
                    exclude_ids=[appt.id],
                )
                appt.appointment_datetime = new_datetime
                appt.overlap_allowed = bool(report.appointment_conflicts)
            logger.info("Rescheduled appointment %s to %s", appointment_id, new_datetime.isoformat())
            return appt
    except SQLAlchemyError as e:
        raise handle_db_error(e, "reschedule_appointment") from e


async def update_status(
    appointment_id: int,
    status: str | AppointmentStatus,
    payment_method: str | None = None,
    final_amount_cents: int | None = None,
) -> Appointment:
    """Move a scheduled appointment into a terminal state.

    ``completed`` requires a payment method and records the settled amount
    (defaults to the booked total). ``cancelled`` and ``no_show`` take no
    payment data. Appointments already in a terminal state are rejected.
    """
    target = normalize_appointment_status(status)
    if target is None:
        raise ValidationError("invalid_status", f"unknown status {status!r}")

    method = None
    if target is AppointmentStatus.COMPLETED:
        method = normalize_payment_method(payment_method)
        if method is None:
            raise ValidationError("payment_method_required")
        if final_amount_cents is not None and int(final_amount_cents) < 0:
            raise ValidationError("invalid_final_amount")
    elif payment_method is not None or final_amount_cents is not None:
        logger.debug("Ignoring payment data for %s transition of %s", target.value, appointment_id)

    try:
        async with get_session() as session:
            async with session.begin():
                appt = await load_appointment(session, appointment_id, for_update=True)
                if not can_transition(appt.status, target):
                    raise InvalidStatusTransition(appt.status, target)
                appt.status = target
                if target is AppointmentStatus.COMPLETED:
                    appt.payment_method = method
                    appt.final_amount_cents = (
                        int(final_amount_cents) if final_amount_cents is not None else appt.total_price_cents
                    )
            logger.info("Appointment %s -> %s", appointment_id, target.value)
            return appt
    except SQLAlchemyError as e:
        raise handle_db_error(e, "update_status") from e


async def delete_appointment(appointment_id: int) -> bool:
    """Delete the service lines, then the appointment itself."""
    try:
        async with get_session() as session:
            async with session.begin():
                appt = await session.get(Appointment, int(appointment_id))
                if appt is None:
                    raise NotFound("appointment", appointment_id)
                await delete_rows(session, [appt.id])
            logger.info("Deleted appointment %s", appointment_id)
            return True
    except SQLAlchemyError as e:
        raise handle_db_error(e, "delete_appointment") from e


async def delete_rows(session: AsyncSession, appointment_ids: Sequence[int]) -> int:
    """Delete appointments and their lines inside the caller's transaction."""
    ids = [int(i) for i in appointment_ids]
    if not ids:
        return 0
    await session.execute(delete(AppointmentService).where(AppointmentService.appointment_id.in_(ids)))
    result = await session.execute(delete(Appointment).where(Appointment.id.in_(ids)))
    return int(result.rowcount or 0)


def serialize_appointment(appt: Appointment) -> dict[str, Any]:
    """Calendar-event view of an appointment (services must be loaded)."""
    lines = list(appt.services or [])
    names = [line.service.name for line in lines if line.service is not None]
    end = appointment_end(appt.appointment_datetime, appt.duration_minutes)
    return {
        "id": appt.id,
        "title": f"{appt.client_name or ''} - {', '.join(names)}".strip(" -"),
        "client_id": appt.client_id,
        "client_name": appt.client_name,
        "barber_id": appt.barber_id,
        "barber_name": appt.barber_name,
        "start": appt.appointment_datetime.isoformat(),
        "end": end.isoformat(),
        "duration_minutes": appt.duration_minutes,
        "status": appt.status.value,
        "total_price_cents": appt.total_price_cents,
        "final_amount_cents": appt.final_amount_cents,
        "payment_method": appt.payment_method.value if appt.payment_method else None,
        "note": appt.note,
        "recurrence_group_id": appt.recurrence_group_id,
        "services": [
            {
                "service_id": line.service_id,
                "name": line.service.name if line.service is not None else None,
                "price_at_booking_cents": line.price_at_booking_cents,
                "commission_rate_applied": str(line.commission_rate_applied),
            }
            for line in lines
        ],
    }


__all__ = [
    "AppointmentInput",
    "AppointmentUpdate",
    "AppointmentQuery",
    "AppointmentRepo",
    "validate_appointment_input",
    "build_service_lines",
    "sum_service_prices",
    "replace_service_lines",
    "load_appointment",
    "fetch_appointments",
    "create_appointment",
    "update_appointment",
    "reschedule_appointment",
    "update_status",
    "delete_appointment",
    "delete_rows",
    "serialize_appointment",
]
