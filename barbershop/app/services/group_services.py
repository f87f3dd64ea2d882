"""Bulk mutations over appointments sharing a ``recurrence_group_id``.

An appointment without a group id is treated as a group of one, so every
scope degrades to deleting or patching that single row.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop.app.core.db import get_session
from barbershop.app.core.errors import NotFound, ValidationError, handle_db_error
from barbershop.app.domain.models import Appointment, AppointmentStatus, DeleteScope
from barbershop.app.services.appointment_services import (
    AppointmentRepo,
    load_appointment,
    replace_service_lines,
    sum_service_prices,
    delete_rows,
)
from barbershop.app.services.conflict_services import check_batch
from barbershop.app.services.directory_services import DirectoryRepo
from barbershop.app.services.shared_services import compute_total_duration, validate_duration_override

logger = logging.getLogger(__name__)


@dataclass
class GroupUpdate:
    client_id: int
    barber_id: int
    service_ids: list[int]
    note: str | None = None
    duration_override: int | None = None
    allow_overlap: bool = False


def normalize_scope(scope: str | DeleteScope | None) -> DeleteScope:
    if isinstance(scope, DeleteScope):
        return scope
    if scope is None:
        return DeleteScope.SINGLE
    try:
        return DeleteScope(str(scope).strip().lower())
    except ValueError as exc:
        raise ValidationError("invalid_scope", f"unknown scope {scope!r}") from exc


async def _siblings(session: AsyncSession, ref: Appointment) -> list[Appointment]:
    if not ref.recurrence_group_id:
        return [ref]
    return await AppointmentRepo.group_members(session, ref.recurrence_group_id)


def select_scope(ref: Appointment, members: Sequence[Appointment], scope: DeleteScope) -> list[Appointment]:
    """Members of ``members`` targeted by ``scope`` relative to ``ref``."""
    if scope is DeleteScope.SINGLE:
        return [ref]
    if scope is DeleteScope.FUTURE:
        return [m for m in members if m.appointment_datetime >= ref.appointment_datetime]
    return list(members)


async def delete_appointment_group(appointment_id: int, scope: str | DeleteScope = DeleteScope.SINGLE) -> int:
    """Delete the referenced appointment and, depending on scope, its siblings.

    ``future`` removes the reference and every sibling starting at or after
    it; ``all`` removes the whole series. Returns the number of rows deleted.
    """
    target_scope = normalize_scope(scope)
    try:
        async with get_session() as session:
            async with session.begin():
                ref = await session.get(Appointment, int(appointment_id), with_for_update=True)
                if ref is None:
                    raise NotFound("appointment", appointment_id)
                group_id = ref.recurrence_group_id
                members = await _siblings(session, ref)
                targets = select_scope(ref, members, target_scope)
                deleted = await delete_rows(session, [m.id for m in targets])
            logger.info(
                "Deleted %d appointment(s) from group %s (scope=%s, ref=%s)",
                deleted, group_id, target_scope.value, appointment_id,
            )
            return deleted
    except SQLAlchemyError as e:
        raise handle_db_error(e, "delete_appointment_group") from e


async def update_appointment_group(appointment_id: int, data: GroupUpdate) -> list[Appointment]:
    """Apply one edit to every member of the referenced appointment's series.

    When the service set changes, total price, duration and the commission
    snapshot are computed once and every member's lines are replaced. Without
    a service change only client, barber and note are patched. Scheduled
    members are re-checked for conflicts when barber or duration changes.
    """
    if not data.client_id:
        raise ValidationError("client_required")
    if not data.barber_id:
        raise ValidationError("barber_required")
    if not data.service_ids:
        raise ValidationError("services_required")
    validate_duration_override(data.duration_override)

    try:
        async with get_session() as session:
            async with session.begin():
                ref = await load_appointment(session, appointment_id, for_update=True)
                members = await _siblings(session, ref)
                client = await DirectoryRepo.get_client(session, data.client_id)
                barber = await DirectoryRepo.get_barber(session, data.barber_id)

                services_changed = [line.service_id for line in ref.services] != [int(s) for s in data.service_ids]
                barber_changed = int(data.barber_id) != ref.barber_id
                duration = ref.duration_minutes
                total_price = ref.total_price_cents
                services = []
                if services_changed or data.duration_override is not None:
                    services = await DirectoryRepo.get_services(session, data.service_ids)
                    duration = compute_total_duration(services, barber, data.duration_override)
                    total_price = sum_service_prices(services)

                scheduled = [m for m in members if m.status is AppointmentStatus.SCHEDULED]
                overlapping: set = set()
                rechecked = bool(scheduled) and (barber_changed or duration != ref.duration_minutes)
                if rechecked:
                    report = await check_batch(
                        session,
                        data.barber_id,
                        [m.appointment_datetime for m in scheduled],
                        duration,
                        allow_overlap=data.allow_overlap,
                        exclude_ids=[m.id for m in members],
                    )
                    overlapping = {e.candidate_start for e in report.appointment_conflicts}

                note = (data.note or "").strip() or None
                for member in members:
                    member.client_id = client.id
                    member.client_name = client.name
                    member.barber_id = int(data.barber_id)
                    member.barber_name = barber.name
                    member.note = note
                    if services_changed:
                        await replace_service_lines(session, member.id, services, barber)
                        member.total_price_cents = total_price
                    if services:
                        member.duration_minutes = duration
                    if rechecked and member.status is AppointmentStatus.SCHEDULED:
                        member.overlap_allowed = member.appointment_datetime in overlapping
                ids = [m.id for m in members]
            session.expunge_all()
            refreshed = [await load_appointment(session, mid) for mid in ids]
            logger.info(
                "Updated %d appointment(s) in group %s (services_changed=%s)",
                len(refreshed), ref.recurrence_group_id, services_changed,
            )
            return refreshed
    except SQLAlchemyError as e:
        raise handle_db_error(e, "update_appointment_group") from e


__all__ = [
    "GroupUpdate",
    "normalize_scope",
    "select_scope",
    "delete_appointment_group",
    "update_appointment_group",
]
