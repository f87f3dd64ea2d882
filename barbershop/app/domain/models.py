from datetime import UTC, date as _date, datetime, time as _time
from decimal import Decimal
from enum import Enum as _Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class (explicit for mypy)."""

    pass


class AppointmentStatus(_Enum):  # Values match DB labels (Postgres enum)
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class PaymentMethod(_Enum):
    MONEY = "money"
    PIX = "pix"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"


class RecurrenceType(_Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class DeleteScope(_Enum):
    SINGLE = "single"
    FUTURE = "future"
    ALL = "all"


def normalize_appointment_status(value: str | AppointmentStatus | None) -> AppointmentStatus | None:
    """Return an AppointmentStatus enum when possible (accepts strings/enum values)."""
    if isinstance(value, AppointmentStatus):
        return value
    if isinstance(value, str):
        cleaned = value.strip().lower().replace("-", "_")
        try:
            return AppointmentStatus(cleaned)
        except ValueError:
            return None
    return None


def normalize_payment_method(value: str | PaymentMethod | None) -> PaymentMethod | None:
    if isinstance(value, PaymentMethod):
        return value
    if isinstance(value, str):
        try:
            return PaymentMethod(value.strip().lower())
        except ValueError:
            return None
    return None


TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)

# Allowed transitions; terminal states have no outgoing edges.
STATUS_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: frozenset(TERMINAL_STATUSES),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in STATUS_TRANSITIONS.get(current, frozenset())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Client(Base):
    __tablename__ = "clients"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120))
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Barber(Base):
    __tablename__ = "barbers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120))
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Special barbers use the alternate per-service duration table
    is_special_barber: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Commission rates in percent
    commission_rate_service: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    commission_rate_chemical_service: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    commission_rate_product: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))


class Service(Base):
    __tablename__ = "services"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200))
    price_cents: Mapped[int] = mapped_column(Integer, default=0)
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Duration used when the assigned barber is special (nullable: falls back to normal)
    duration_special_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_chemical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="ck_appointments_duration_positive"),
        Index("ix_appointments_barber_datetime", "barber_id", "appointment_datetime"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id"))
    barber_id: Mapped[int] = mapped_column(ForeignKey("barbers.id"))
    # Display snapshot resolved at booking time
    client_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    barber_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    # Local wall-clock time of the shop (naive)
    appointment_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=False))
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(
            AppointmentStatus,
            name="appointment_status",
            values_callable=lambda e: [m.value for m in e],
            native_enum=True,
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    total_price_cents: Mapped[int] = mapped_column(Integer, default=0)
    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        Enum(
            PaymentMethod,
            name="payment_method",
            values_callable=lambda e: [m.value for m in e],
            native_enum=True,
        ),
        nullable=True,
    )
    # Settled amount; independent from the live service prices
    final_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    recurrence_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    # Booked with the overlap override; excluded from the DB exclusion constraint
    overlap_allowed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    services: Mapped[list["AppointmentService"]] = relationship(
        back_populates="appointment",
        order_by="AppointmentService.position",
        passive_deletes=True,
    )


class AppointmentService(Base):
    __tablename__ = "appointment_services"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id", ondelete="CASCADE"), index=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"))
    # Snapshots captured at booking time; never recomputed afterwards
    price_at_booking_cents: Mapped[int] = mapped_column(Integer, default=0)
    commission_rate_applied: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    position: Mapped[int] = mapped_column(Integer, default=0)

    appointment: Mapped[Appointment] = relationship(back_populates="services")
    service: Mapped[Service] = relationship()


class ScheduleBlock(Base):
    __tablename__ = "schedule_blocks"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_schedule_blocks_time_range"),
        CheckConstraint(
            "is_recurring OR (recurrence_type IS NULL AND recurrence_pattern IS NULL AND recurrence_end_date IS NULL)",
            name="ck_schedule_blocks_recurrence_fields",
        ),
        Index("ix_schedule_blocks_date_barber", "block_date", "barber_id"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # NULL = applies to every barber
    barber_id: Mapped[int | None] = mapped_column(ForeignKey("barbers.id"), nullable=True)
    block_date: Mapped[_date] = mapped_column(Date, nullable=False)
    start_time: Mapped[_time] = mapped_column(Time, nullable=False)
    end_time: Mapped[_time] = mapped_column(Time, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurrence_type: Mapped[RecurrenceType | None] = mapped_column(
        Enum(
            RecurrenceType,
            name="recurrence_type",
            values_callable=lambda e: [m.value for m in e],
            native_enum=True,
        ),
        nullable=True,
    )
    recurrence_pattern: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    recurrence_end_date: Mapped[_date | None] = mapped_column(Date, nullable=True)
    # Child rows of a recurring series point to their generator
    parent_block_id: Mapped[int | None] = mapped_column(ForeignKey("schedule_blocks.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


__all__ = [
    "Base",
    "AppointmentStatus",
    "PaymentMethod",
    "RecurrenceType",
    "DeleteScope",
    "Client",
    "Barber",
    "Service",
    "Appointment",
    "AppointmentService",
    "ScheduleBlock",
    "normalize_appointment_status",
    "normalize_payment_method",
    "can_transition",
    "TERMINAL_STATUSES",
    "STATUS_TRANSITIONS",
]
