from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from barbershop.app.core.db import get_session
from barbershop.app.core.errors import (
    InvalidStatusTransition,
    NotFound,
    PersistenceError,
    SchedulingConflict,
    ValidationError,
)
from barbershop.app.domain.models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    PaymentMethod,
    RecurrenceType,
    Service,
)
from barbershop.app.services import appointment_services as svc
from barbershop.app.services.shared_services import RecurrenceSpec

MONDAY = datetime(2026, 1, 5, 10, 0)


def _intent(ids, when=MONDAY, services=None, **kw) -> svc.AppointmentInput:
    return svc.AppointmentInput(
        client_id=ids.ana,
        barber_id=ids.carlos,
        appointment_datetime=when,
        service_ids=services if services is not None else [ids.combo],
        **kw,
    )


async def _count(model) -> int:
    async with get_session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


def test_weekly_series_creates_grouped_appointments_with_price_snapshots(run_db, seed):
    async def scenario():
        ids = await seed()
        first = await svc.create_appointment(
            _intent(ids, recurrence=RecurrenceSpec(RecurrenceType.WEEKLY, occurrences=3))
        )
        rows = await svc.fetch_appointments(svc.AppointmentQuery(barber_id=ids.carlos))
        return ids, first, rows

    ids, first, rows = run_db(scenario)
    assert [r.appointment_datetime for r in rows] == [
        MONDAY,
        MONDAY + timedelta(days=7),
        MONDAY + timedelta(days=14),
    ]
    assert first.id == rows[0].id
    group_ids = {r.recurrence_group_id for r in rows}
    assert len(group_ids) == 1 and None not in group_ids
    for appt in rows:
        assert appt.duration_minutes == 60
        assert appt.status is AppointmentStatus.SCHEDULED
        assert appt.total_price_cents == 6000
        assert len(appt.services) == 1
        line = appt.services[0]
        assert line.service_id == ids.combo
        assert line.price_at_booking_cents == 6000
        assert line.commission_rate_applied == Decimal("40.00")


def test_single_booking_has_no_group(run_db, seed):
    async def scenario():
        ids = await seed()
        return await svc.create_appointment(_intent(ids, services=[ids.cut, ids.dye], note="  primeira vez  "))

    appt = run_db(scenario)
    assert appt.recurrence_group_id is None
    assert appt.duration_minutes == 120
    assert appt.total_price_cents == 16500
    assert appt.note == "primeira vez"
    assert appt.client_name == "Ana Souza" and appt.barber_name == "Carlos"
    assert [line.commission_rate_applied for line in appt.services] == [Decimal("40.00"), Decimal("30.00")]
    assert [line.service.name for line in appt.services] == ["Corte", "Coloracao"]


def test_special_barber_uses_special_durations(run_db, seed):
    async def scenario():
        ids = await seed()
        intent = _intent(ids, services=[ids.cut, ids.beard])
        intent.barber_id = ids.diego
        return await svc.create_appointment(intent)

    assert run_db(scenario).duration_minutes == 75


def test_overlapping_request_rejected_with_conflict_entry(run_db, seed):
    async def scenario():
        ids = await seed()
        existing = await svc.create_appointment(_intent(ids, services=[ids.cut]))
        with pytest.raises(SchedulingConflict) as exc:
            await svc.create_appointment(_intent(ids, when=MONDAY.replace(minute=15), services=[ids.cut]))
        return existing, exc.value, await _count(Appointment)

    existing, err, total = run_db(scenario)
    assert len(err.report.entries) == 1
    assert err.report.entries[0].conflict_id == existing.id
    assert total == 1


def test_conflict_in_series_writes_nothing(run_db, seed):
    async def scenario():
        ids = await seed()
        blocker = _intent(ids, when=MONDAY + timedelta(days=14), services=[ids.cut])
        blocker.client_id = ids.bruno
        await svc.create_appointment(blocker)
        with pytest.raises(SchedulingConflict):
            await svc.create_appointment(
                _intent(ids, recurrence=RecurrenceSpec(RecurrenceType.WEEKLY, occurrences=4))
            )
        return await _count(Appointment), await _count(AppointmentService)

    assert run_db(scenario) == (1, 1)


def test_store_failure_mid_series_rolls_back_whole_batch(run_db, seed, monkeypatch):
    real_build = svc.build_service_lines
    calls = []

    def failing_build(services, barber):
        calls.append(1)
        if len(calls) == 3:
            raise OperationalError("INSERT INTO appointment_services", {}, Exception("connection reset"))
        return real_build(services, barber)

    monkeypatch.setattr(svc, "build_service_lines", failing_build)

    async def scenario():
        ids = await seed()
        with pytest.raises(PersistenceError):
            await svc.create_appointment(
                _intent(ids, recurrence=RecurrenceSpec(RecurrenceType.WEEKLY, occurrences=5))
            )
        return await _count(Appointment), await _count(AppointmentService)

    assert run_db(scenario) == (0, 0)
    assert len(calls) == 3


def test_unknown_barber_is_not_found(run_db, seed):
    async def scenario():
        ids = await seed()
        intent = _intent(ids)
        intent.barber_id = 9999
        with pytest.raises(NotFound) as missing:
            await svc.create_appointment(intent)
        return missing.value, await _count(Appointment)

    missing, total = run_db(scenario)
    assert missing.code == "barber_not_found"
    assert total == 0


def test_override_books_on_top_and_flags_row(run_db, seed):
    async def scenario():
        ids = await seed()
        await svc.create_appointment(_intent(ids, services=[ids.cut]))
        return await svc.create_appointment(_intent(ids, services=[ids.cut], allow_overlap=True))

    assert run_db(scenario).overlap_allowed is True


def test_validation_happens_before_database(run_db, seed):
    async def scenario():
        ids = await seed()
        with pytest.raises(ValidationError) as no_services:
            await svc.create_appointment(_intent(ids, services=[]))
        with pytest.raises(ValidationError) as bad_duration:
            await svc.create_appointment(_intent(ids, duration_override=1000))
        with pytest.raises(NotFound) as missing_client:
            intent = _intent(ids)
            intent.client_id = 999
            await svc.create_appointment(intent)
        return no_services.value, bad_duration.value, missing_client.value

    no_services, bad_duration, missing_client = run_db(scenario)
    assert no_services.code == "services_required"
    assert bad_duration.code == "invalid_duration"
    assert missing_client.code == "client_not_found"


def test_complete_with_pix_defaults_final_amount(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids))
        return await svc.update_status(appt.id, "completed", payment_method="pix")

    done = run_db(scenario)
    assert done.status is AppointmentStatus.COMPLETED
    assert done.payment_method is PaymentMethod.PIX
    assert done.final_amount_cents == 6000


def test_complete_requires_payment_method(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids))
        with pytest.raises(ValidationError) as exc:
            await svc.update_status(appt.id, AppointmentStatus.COMPLETED)
        return exc.value

    assert run_db(scenario).code == "payment_method_required"


def test_terminal_states_are_final(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids))
        cancelled = await svc.update_status(appt.id, "cancelled", payment_method="money")
        with pytest.raises(InvalidStatusTransition):
            await svc.update_status(appt.id, "completed", payment_method="money")
        with pytest.raises(InvalidStatusTransition):
            await svc.update_status(appt.id, "no_show")
        return cancelled

    cancelled = run_db(scenario)
    assert cancelled.status is AppointmentStatus.CANCELLED
    assert cancelled.payment_method is None
    assert cancelled.final_amount_cents is None


def test_cancelled_slot_can_be_rebooked(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids))
        await svc.update_status(appt.id, "cancelled")
        return await svc.create_appointment(_intent(ids))

    assert run_db(scenario).status is AppointmentStatus.SCHEDULED


def test_update_replaces_lines_with_fresh_snapshot(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids, services=[ids.cut]))
        # price change after booking must not leak into the untouched line
        async with get_session() as session:
            cut = await session.get(Service, ids.cut)
            cut.price_cents = 5000
            await session.commit()
        unchanged = await svc.update_appointment(
            appt.id,
            svc.AppointmentUpdate(
                client_id=ids.bruno,
                barber_id=ids.carlos,
                appointment_datetime=MONDAY + timedelta(hours=1),
                service_ids=[ids.cut],
                note="remarcado",
            ),
        )
        changed = await svc.update_appointment(
            appt.id,
            svc.AppointmentUpdate(
                client_id=ids.bruno,
                barber_id=ids.carlos,
                appointment_datetime=MONDAY + timedelta(hours=1),
                service_ids=[ids.cut, ids.beard],
            ),
        )
        return unchanged, changed, await _count(AppointmentService)

    unchanged, changed, line_count = run_db(scenario)
    assert unchanged.total_price_cents == 4500
    assert unchanged.client_name == "Bruno Lima"
    assert unchanged.note == "remarcado"
    assert unchanged.appointment_datetime == MONDAY + timedelta(hours=1)
    assert changed.total_price_cents == 8000
    assert changed.duration_minutes == 60
    assert [line.price_at_booking_cents for line in changed.services] == [5000, 3000]
    assert line_count == 2


def test_update_does_not_conflict_with_itself(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids, services=[ids.cut]))
        return await svc.update_appointment(
            appt.id,
            svc.AppointmentUpdate(
                client_id=ids.ana,
                barber_id=ids.carlos,
                appointment_datetime=MONDAY + timedelta(minutes=15),
                service_ids=[ids.cut],
            ),
        )

    assert run_db(scenario).appointment_datetime == MONDAY + timedelta(minutes=15)


def test_reschedule_checks_conflicts(run_db, seed):
    async def scenario():
        ids = await seed()
        first = await svc.create_appointment(_intent(ids, services=[ids.cut]))
        second = await svc.create_appointment(_intent(ids, when=MONDAY + timedelta(hours=2), services=[ids.cut]))
        with pytest.raises(SchedulingConflict):
            await svc.reschedule_appointment(second.id, MONDAY + timedelta(minutes=10))
        moved = await svc.reschedule_appointment(second.id, MONDAY + timedelta(minutes=30))
        return first, moved

    first, moved = run_db(scenario)
    assert moved.appointment_datetime == MONDAY + timedelta(minutes=30)
    assert moved.overlap_allowed is False


def test_delete_removes_lines_then_appointment(run_db, seed):
    async def scenario():
        ids = await seed()
        appt = await svc.create_appointment(_intent(ids, services=[ids.cut, ids.beard]))
        assert await svc.delete_appointment(appt.id) is True
        with pytest.raises(NotFound):
            await svc.delete_appointment(appt.id)
        return await _count(Appointment), await _count(AppointmentService)

    assert run_db(scenario) == (0, 0)


def test_fetch_filters_by_range_and_status(run_db, seed):
    async def scenario():
        ids = await seed()
        await svc.create_appointment(_intent(ids, recurrence=RecurrenceSpec(RecurrenceType.WEEKLY, occurrences=4)))
        rows = await svc.fetch_appointments(
            svc.AppointmentQuery(start=MONDAY + timedelta(days=1), end=MONDAY + timedelta(days=15))
        )
        await svc.update_status(rows[0].id, "no_show")
        scheduled = await svc.fetch_appointments(svc.AppointmentQuery(statuses=[AppointmentStatus.SCHEDULED]))
        return rows, scheduled

    rows, scheduled = run_db(scenario)
    assert [r.appointment_datetime.day for r in rows] == [12, 19]
    assert len(scheduled) == 3


def test_serialized_calendar_event(run_db, seed):
    async def scenario():
        ids = await seed()
        return svc.serialize_appointment(await svc.create_appointment(_intent(ids, services=[ids.cut, ids.beard])))

    event = run_db(scenario)
    assert event["title"] == "Ana Souza - Corte, Barba"
    assert event["start"] == "2026-01-05T10:00:00"
    assert event["end"] == "2026-01-05T11:00:00"
    assert event["status"] == "scheduled"
    assert [s["name"] for s in event["services"]] == ["Corte", "Barba"]
