"""Administrative schedule blocks (barber unavailability windows).

A recurring block is stored as a parent row carrying the recurrence rule and
one child row per further occurrence; children are plain one-day blocks that
point back to the parent through ``parent_block_id``.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop.app.core.db import get_session
from barbershop.app.core.errors import NotFound, ValidationError, handle_db_error
from barbershop.app.domain.models import DeleteScope, RecurrenceType, ScheduleBlock
from barbershop.app.services.group_services import normalize_scope
from barbershop.app.services.shared_services import RecurrenceSpec, generate_recurrence_dates

logger = logging.getLogger(__name__)


@dataclass
class BlockInput:
    block_date: date
    start_time: time
    end_time: time
    barber_id: int | None = None
    reason: str | None = None
    recurrence: RecurrenceSpec | None = None


def validate_block_input(data: BlockInput) -> None:
    if data.block_date is None:
        raise ValidationError("date_required")
    if data.start_time is None or data.end_time is None:
        raise ValidationError("time_required")
    if data.start_time >= data.end_time:
        raise ValidationError("invalid_time_range", "start_time must be before end_time")
    rec = data.recurrence
    if rec is not None and rec.type is not RecurrenceType.NONE:
        if rec.end_date is None and rec.occurrences is None:
            raise ValidationError("recurrence_end_required")
        if rec.end_date is not None and rec.end_date < data.block_date:
            raise ValidationError("invalid_recurrence_end")


def _pattern(spec: RecurrenceSpec) -> dict[str, Any]:
    pattern: dict[str, Any] = {"interval": int(spec.interval or 1)}
    if spec.occurrences is not None:
        pattern["occurrences"] = int(spec.occurrences)
    return pattern


async def create_schedule_block(data: BlockInput) -> list[ScheduleBlock]:
    """Persist a block, fanning a recurring one out into child rows.

    Returns the parent followed by its children in date order.
    """
    validate_block_input(data)
    rec = data.recurrence
    recurring = rec is not None and rec.type is not RecurrenceType.NONE
    start = datetime.combine(data.block_date, data.start_time)
    dates = [d.date() for d in generate_recurrence_dates(start, rec)] if recurring else [data.block_date]
    reason = (data.reason or "").strip() or None

    try:
        async with get_session() as session:
            async with session.begin():
                parent = ScheduleBlock(
                    barber_id=data.barber_id,
                    block_date=dates[0],
                    start_time=data.start_time,
                    end_time=data.end_time,
                    reason=reason,
                    is_recurring=recurring,
                    recurrence_type=rec.type if recurring else None,
                    recurrence_pattern=_pattern(rec) if recurring else None,
                    recurrence_end_date=(rec.end_date or dates[-1]) if recurring else None,
                )
                session.add(parent)
                await session.flush()
                created = [parent]
                for day in dates[1:]:
                    child = ScheduleBlock(
                        barber_id=data.barber_id,
                        block_date=day,
                        start_time=data.start_time,
                        end_time=data.end_time,
                        reason=reason,
                        is_recurring=False,
                        parent_block_id=parent.id,
                    )
                    session.add(child)
                    created.append(child)
            logger.info(
                "Created schedule block %s for barber=%s on %s (%d row(s))",
                parent.id, data.barber_id, dates[0].isoformat(), len(created),
            )
            return created
    except SQLAlchemyError as e:
        raise handle_db_error(e, "create_schedule_block") from e


async def list_schedule_blocks(
    start: date | None = None, end: date | None = None, barber_id: int | None = None
) -> list[ScheduleBlock]:
    """Blocks in ``[start, end]``; a barber filter also returns shop-wide blocks."""
    stmt = select(ScheduleBlock).order_by(ScheduleBlock.block_date, ScheduleBlock.start_time)
    if start is not None:
        stmt = stmt.where(ScheduleBlock.block_date >= start)
    if end is not None:
        stmt = stmt.where(ScheduleBlock.block_date <= end)
    if barber_id is not None:
        stmt = stmt.where(or_(ScheduleBlock.barber_id == int(barber_id), ScheduleBlock.barber_id.is_(None)))
    try:
        async with get_session() as session:
            return list((await session.execute(stmt)).scalars().all())
    except SQLAlchemyError as e:
        raise handle_db_error(e, "list_schedule_blocks") from e


async def _series(session: AsyncSession, root_id: int) -> list[ScheduleBlock]:
    stmt = (
        select(ScheduleBlock)
        .where(or_(ScheduleBlock.id == root_id, ScheduleBlock.parent_block_id == root_id))
        .order_by(ScheduleBlock.block_date, ScheduleBlock.id)
        .with_for_update()
    )
    return list((await session.execute(stmt)).scalars().all())


async def _reparent(session: AsyncSession, root: ScheduleBlock, remaining: Sequence[ScheduleBlock]) -> None:
    """Promote the earliest remaining child to carry the series' recurrence rule."""
    heir = remaining[0]
    heir.parent_block_id = None
    heir.is_recurring = True
    heir.recurrence_type = root.recurrence_type
    heir.recurrence_pattern = dict(root.recurrence_pattern or {})
    heir.recurrence_end_date = remaining[-1].block_date
    for blk in remaining[1:]:
        blk.parent_block_id = heir.id
    await session.flush()


async def delete_schedule_block(block_id: int, scope: str | DeleteScope = DeleteScope.SINGLE) -> int:
    """Delete a block, or part of its recurring series.

    ``single`` removes only this row, ``future`` this row and every later
    member, ``all`` the whole series. A standalone block accepts only
    ``single``. Returns the number of rows deleted.
    """
    target_scope = normalize_scope(scope)
    try:
        async with get_session() as session:
            async with session.begin():
                block = await session.get(ScheduleBlock, int(block_id))
                if block is None:
                    raise NotFound("schedule_block", block_id)
                standalone = not block.is_recurring and block.parent_block_id is None
                if standalone and target_scope is not DeleteScope.SINGLE:
                    raise ValidationError("invalid_scope", "standalone blocks only support single deletion")

                if standalone:
                    targets = [block]
                    series: list[ScheduleBlock] = [block]
                else:
                    root_id = block.parent_block_id or block.id
                    series = await _series(session, root_id)
                    if target_scope is DeleteScope.SINGLE:
                        targets = [block]
                    elif target_scope is DeleteScope.FUTURE:
                        targets = [b for b in series if b.block_date >= block.block_date]
                    else:
                        targets = list(series)

                target_ids = {b.id for b in targets}
                remaining = [b for b in series if b.id not in target_ids]
                root = series[0] if series and series[0].parent_block_id is None else None
                if remaining:
                    if root is not None and root.id in target_ids:
                        await _reparent(session, root, remaining)
                    elif root is not None and root.is_recurring:
                        root.recurrence_end_date = remaining[-1].block_date

                result = await session.execute(delete(ScheduleBlock).where(ScheduleBlock.id.in_(sorted(target_ids))))
                deleted = int(result.rowcount or 0)
            logger.info("Deleted %d schedule block(s) (ref=%s, scope=%s)", deleted, block_id, target_scope.value)
            return deleted
    except SQLAlchemyError as e:
        raise handle_db_error(e, "delete_schedule_block") from e


def serialize_block(block: ScheduleBlock) -> dict[str, Any]:
    return {
        "id": block.id,
        "barber_id": block.barber_id,
        "block_date": block.block_date.isoformat(),
        "start_time": block.start_time.isoformat(timespec="minutes"),
        "end_time": block.end_time.isoformat(timespec="minutes"),
        "reason": block.reason,
        "is_recurring": block.is_recurring,
        "recurrence_type": block.recurrence_type.value if block.recurrence_type else None,
        "recurrence_pattern": block.recurrence_pattern,
        "recurrence_end_date": block.recurrence_end_date.isoformat() if block.recurrence_end_date else None,
        "parent_block_id": block.parent_block_id,
    }


__all__ = [
    "BlockInput",
    "validate_block_input",
    "create_schedule_block",
    "list_schedule_blocks",
    "delete_schedule_block",
    "serialize_block",
]
