"""FastAPI facade for the scheduling calendar.

Thin REST layer over the scheduling services: request models carry input
bounds, business errors become HTTP errors with a stable code, and
successful mutations are announced to other calendar views on the peer
broadcast channel.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from functools import wraps
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from barbershop.app.core.constants import (
    BROADCAST_EVENT,
    MAX_DURATION_OVERRIDE,
    MAX_RECURRENCE_OCCURRENCES,
    MIN_DURATION_OVERRIDE,
    SYNC_BROADCAST_ENABLED,
)
from barbershop.app.core.errors import (
    InvalidStatusTransition,
    NotFound,
    PersistenceError,
    SchedulingConflict,
    ValidationError,
)
from barbershop.app.domain.models import (
    AppointmentStatus,
    DeleteScope,
    PaymentMethod,
    RecurrenceType,
    normalize_appointment_status,
)
from barbershop.app.services.appointment_services import (
    AppointmentInput,
    AppointmentQuery,
    AppointmentUpdate,
    create_appointment,
    delete_appointment,
    fetch_appointments,
    reschedule_appointment,
    serialize_appointment,
    update_appointment,
    update_status,
)
from barbershop.app.services.block_services import (
    BlockInput,
    create_schedule_block,
    delete_schedule_block,
    list_schedule_blocks,
    serialize_block,
)
from barbershop.app.services.group_services import (
    GroupUpdate,
    delete_appointment_group,
    update_appointment_group,
)
from barbershop.app.services.shared_services import RecurrenceSpec
from barbershop.app.workers.realtime import PgChangeFeed
from barbershop.config import get_setting

logger = logging.getLogger(__name__)

# Feed used to broadcast after mutations (None when disabled or not connected)
_feed: PgChangeFeed | None = None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class RecurrenceIn(BaseModel):
    type: RecurrenceType = RecurrenceType.NONE
    interval: int = Field(1, ge=1, le=12)
    end_date: Optional[date] = None
    occurrences: Optional[int] = Field(None, ge=1, le=MAX_RECURRENCE_OCCURRENCES)

    def to_spec(self) -> RecurrenceSpec:
        return RecurrenceSpec(
            type=self.type, interval=self.interval, end_date=self.end_date, occurrences=self.occurrences
        )


class AppointmentUpdateIn(BaseModel):
    client_id: int
    barber_id: int
    appointment_datetime: datetime
    service_ids: list[int] = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=2000)
    duration_override: Optional[int] = Field(None, ge=MIN_DURATION_OVERRIDE, le=MAX_DURATION_OVERRIDE)
    allow_overlap: bool = False


class AppointmentIn(AppointmentUpdateIn):
    recurrence: Optional[RecurrenceIn] = None


class GroupUpdateIn(BaseModel):
    client_id: int
    barber_id: int
    service_ids: list[int] = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=2000)
    duration_override: Optional[int] = Field(None, ge=MIN_DURATION_OVERRIDE, le=MAX_DURATION_OVERRIDE)
    allow_overlap: bool = False


class StatusIn(BaseModel):
    status: AppointmentStatus
    payment_method: Optional[PaymentMethod] = None
    final_amount_cents: Optional[int] = Field(None, ge=0)


class RescheduleIn(BaseModel):
    appointment_datetime: datetime
    allow_overlap: bool = False


class BlockIn(BaseModel):
    block_date: date
    start_time: time
    end_time: time
    barber_id: Optional[int] = None
    reason: Optional[str] = Field(None, max_length=500)
    recurrence: Optional[RecurrenceIn] = None


def _local(value: datetime) -> datetime:
    """Appointment times are shop wall-clock; drop any offset sent by clients."""
    return value.replace(tzinfo=None) if value.tzinfo is not None else value


# ---------------------------------------------------------------------------
# Error handling helpers
# ---------------------------------------------------------------------------

def _normalize_error_code(val: str | Exception | None, default: str) -> str:
    """Return a safe error code for frontend without leaking exception text."""
    if val is None:
        return default
    try:
        code = str(val).strip().lower()
    except Exception:
        return default
    if not code:
        return default
    if not all(ch.isalnum() or ch in {"_", "-"} for ch in code):
        return default
    return code[:64]


def _http_error(status_code: int, code: str, **extra: Any) -> HTTPException:
    detail: dict[str, Any] = {"error": code}
    detail.update({k: v for k, v in extra.items() if v is not None})
    return HTTPException(status_code=status_code, detail=detail)


def scheduling_error_handler(default_error: str):
    """Decorator mapping scheduling errors to HTTP responses.

    - Passes through FastAPI `HTTPException` untouched.
    - Conflicts and terminal-state transitions become 409, bad input 422,
      unknown ids 404, store failures 500.
    - Logs unexpected exceptions and returns a unified error code.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except HTTPException:
                raise
            except SchedulingConflict as exc:
                report = exc.report.to_dict() if exc.report is not None else None
                raise _http_error(status.HTTP_409_CONFLICT, exc.code, conflicts=report) from exc
            except InvalidStatusTransition as exc:
                current = getattr(exc.current, "value", exc.current)
                raise _http_error(status.HTTP_409_CONFLICT, exc.code, current_status=current) from exc
            except ValidationError as exc:
                raise _http_error(
                    status.HTTP_422_UNPROCESSABLE_ENTITY, _normalize_error_code(exc.code, default_error), message=exc.detail
                ) from exc
            except NotFound as exc:
                raise _http_error(status.HTTP_404_NOT_FOUND, exc.code) from exc
            except ValueError as exc:
                raise _http_error(
                    status.HTTP_422_UNPROCESSABLE_ENTITY, _normalize_error_code(exc, default_error)
                ) from exc
            except PersistenceError as exc:
                raise _http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.code) from exc
            except Exception as exc:  # noqa: BLE001 - API boundary
                logger.exception("%s failed: %s", func.__name__, exc)
                raise _http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, default_error) from exc

        return wrapper

    return decorator


async def _publish_change(**info: Any) -> None:
    feed = _feed
    if feed is None or not feed.connected:
        return
    try:
        await feed.publish({"event": BROADCAST_EVENT, "sender": "api", **info})
    except Exception as exc:  # noqa: BLE001 - broadcast is best-effort
        logger.warning("Broadcast after %s failed: %s", info.get("action"), exc)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    global _feed
    if SYNC_BROADCAST_ENABLED:
        feed = PgChangeFeed()
        try:
            await feed.connect()
            _feed = feed
        except Exception as exc:  # noqa: BLE001 - API still serves without broadcasts
            logger.warning("Change feed unavailable, broadcasts disabled: %s", exc)
    try:
        yield
    finally:
        if _feed is not None:
            await _feed.close()
            _feed = None


app = FastAPI(title="Barbershop Scheduling API", version="0.1.0", lifespan=lifespan)
_origins = get_setting("api_allowed_origins", []) or []
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins or ["*"],
    allow_credentials=bool(_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.post("/api/appointments", status_code=status.HTTP_201_CREATED)
@scheduling_error_handler("create_failed")
async def create_appointment_endpoint(payload: AppointmentIn) -> dict[str, Any]:
    appt = await create_appointment(
        AppointmentInput(
            client_id=payload.client_id,
            barber_id=payload.barber_id,
            appointment_datetime=_local(payload.appointment_datetime),
            service_ids=list(payload.service_ids),
            note=payload.note,
            duration_override=payload.duration_override,
            recurrence=payload.recurrence.to_spec() if payload.recurrence else None,
            allow_overlap=payload.allow_overlap,
        )
    )
    await _publish_change(action="create", appointment_id=appt.id)
    return serialize_appointment(appt)


@app.get("/api/appointments")
@scheduling_error_handler("list_failed")
async def list_appointments_endpoint(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    barber_id: Optional[int] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
) -> list[dict[str, Any]]:
    statuses = []
    for raw in (status_filter or "").split(","):
        if not raw.strip():
            continue
        st = normalize_appointment_status(raw)
        if st is None:
            raise ValidationError("invalid_status", f"unknown status {raw!r}")
        statuses.append(st)
    rows = await fetch_appointments(
        AppointmentQuery(
            start=_local(start) if start else None,
            end=_local(end) if end else None,
            barber_id=barber_id,
            statuses=statuses,
        )
    )
    return [serialize_appointment(a) for a in rows]


@app.put("/api/appointments/{appointment_id}")
@scheduling_error_handler("update_failed")
async def update_appointment_endpoint(appointment_id: int, payload: AppointmentUpdateIn) -> dict[str, Any]:
    appt = await update_appointment(
        appointment_id,
        AppointmentUpdate(
            client_id=payload.client_id,
            barber_id=payload.barber_id,
            appointment_datetime=_local(payload.appointment_datetime),
            service_ids=list(payload.service_ids),
            note=payload.note,
            duration_override=payload.duration_override,
            allow_overlap=payload.allow_overlap,
        ),
    )
    await _publish_change(action="update", appointment_id=appointment_id)
    return serialize_appointment(appt)


@app.put("/api/appointments/{appointment_id}/group")
@scheduling_error_handler("group_update_failed")
async def update_group_endpoint(appointment_id: int, payload: GroupUpdateIn) -> list[dict[str, Any]]:
    rows = await update_appointment_group(
        appointment_id,
        GroupUpdate(
            client_id=payload.client_id,
            barber_id=payload.barber_id,
            service_ids=list(payload.service_ids),
            note=payload.note,
            duration_override=payload.duration_override,
            allow_overlap=payload.allow_overlap,
        ),
    )
    await _publish_change(action="group_update", appointment_id=appointment_id)
    return [serialize_appointment(a) for a in rows]


@app.post("/api/appointments/{appointment_id}/status")
@scheduling_error_handler("status_failed")
async def update_status_endpoint(appointment_id: int, payload: StatusIn) -> dict[str, Any]:
    appt = await update_status(
        appointment_id,
        payload.status,
        payment_method=payload.payment_method.value if payload.payment_method else None,
        final_amount_cents=payload.final_amount_cents,
    )
    await _publish_change(action="status", appointment_id=appointment_id, status=appt.status.value)
    return serialize_appointment(appt)


@app.post("/api/appointments/{appointment_id}/reschedule")
@scheduling_error_handler("reschedule_failed")
async def reschedule_endpoint(appointment_id: int, payload: RescheduleIn) -> dict[str, Any]:
    appt = await reschedule_appointment(
        appointment_id, _local(payload.appointment_datetime), allow_overlap=payload.allow_overlap
    )
    await _publish_change(action="reschedule", appointment_id=appointment_id)
    return serialize_appointment(appt)


@app.delete("/api/appointments/{appointment_id}")
@scheduling_error_handler("delete_failed")
async def delete_appointment_endpoint(appointment_id: int, scope: DeleteScope = DeleteScope.SINGLE) -> dict[str, Any]:
    if scope is DeleteScope.SINGLE:
        await delete_appointment(appointment_id)
        deleted = 1
    else:
        deleted = await delete_appointment_group(appointment_id, scope)
    await _publish_change(action="delete", appointment_id=appointment_id, scope=scope.value)
    return {"ok": True, "deleted": deleted}


@app.post("/api/blocks", status_code=status.HTTP_201_CREATED)
@scheduling_error_handler("block_create_failed")
async def create_block_endpoint(payload: BlockIn) -> list[dict[str, Any]]:
    rows = await create_schedule_block(
        BlockInput(
            block_date=payload.block_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            barber_id=payload.barber_id,
            reason=payload.reason,
            recurrence=payload.recurrence.to_spec() if payload.recurrence else None,
        )
    )
    await _publish_change(action="block_create", block_id=rows[0].id)
    return [serialize_block(b) for b in rows]


@app.get("/api/blocks")
@scheduling_error_handler("block_list_failed")
async def list_blocks_endpoint(
    start: Optional[date] = None, end: Optional[date] = None, barber_id: Optional[int] = None
) -> list[dict[str, Any]]:
    return [serialize_block(b) for b in await list_schedule_blocks(start, end, barber_id)]


@app.delete("/api/blocks/{block_id}")
@scheduling_error_handler("block_delete_failed")
async def delete_block_endpoint(block_id: int, scope: DeleteScope = DeleteScope.SINGLE) -> dict[str, Any]:
    deleted = await delete_schedule_block(block_id, scope)
    await _publish_change(action="block_delete", block_id=block_id, scope=scope.value)
    return {"ok": True, "deleted": deleted}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


def get_app() -> FastAPI:
    """Exported factory for uvicorn or tests."""
    return app
