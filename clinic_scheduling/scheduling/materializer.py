"""Slot materialization.

Turns availability templates into concrete ``SlotInstance`` rows for a date
range. Materialization only ever adds rows: slots that already exist are left
alone, whatever the template says today. Blacked-out dates get no slots.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.models.availability import AvailabilityTemplate
from clinic_scheduling.models.slot import SlotInstance
from clinic_scheduling.scheduling.blackouts import list_blackouts
from clinic_scheduling.scheduling.errors import SlotNotFoundError, ValidationError
from clinic_scheduling.scheduling.templates import list_templates, template_dates

logger = logging.getLogger(__name__)

SLOT_IDENTITY_COLUMNS = ['provider_id', 'slot_date', 'start_time', 'end_time']

# Keeps each INSERT well under the 32767 bind parameters asyncpg accepts.
INSERT_BATCH_SIZE = 500


@dataclass(frozen=True)
class SlotWindow:
    start: datetime
    end: datetime


def working_windows(template: AvailabilityTemplate, on_date: date) -> list[tuple[datetime, datetime]]:
    day_start = datetime.combine(on_date, template.start_time)
    day_end = datetime.combine(on_date, template.end_time)
    if not template.has_break:
        return [(day_start, day_end)]
    return [
        (day_start, datetime.combine(on_date, template.break_start_time)),
        (datetime.combine(on_date, template.break_end_time), day_end),
    ]


def plan_slot_windows(template: AvailabilityTemplate, on_date: date) -> list[SlotWindow]:
    """Chunk the template's working hours on ``on_date`` into whole slots.

    A break splits the day into two windows that are chunked independently.
    Any remainder shorter than one slot at the end of a window is dropped.
    """
    duration = timedelta(minutes=template.slot_duration_minutes)
    windows: list[SlotWindow] = []

    for window_start, window_end in working_windows(template, on_date):
        current = window_start
        while current + duration <= window_end:
            windows.append(SlotWindow(start=current, end=current + duration))
            current += duration

    return windows


def _insert_if_absent(db: AsyncSession):
    dialect_name = db.get_bind().dialect.name
    if dialect_name == 'postgresql':
        return postgresql.insert(SlotInstance)
    if dialect_name == 'sqlite':
        return sqlite.insert(SlotInstance)
    raise RuntimeError(f'Slot materialization does not support the {dialect_name} dialect.')


async def materialize(
    db: AsyncSession,
    provider_id: int,
    start_date: date,
    end_date: date,
) -> list[SlotInstance]:
    if start_date > end_date:
        raise ValidationError('Start date must not be after end date.')

    blackouts = await list_blackouts(db, provider_id, start_date, end_date)
    now = datetime.now()
    rows: list[dict] = []
    for template in await list_templates(db, provider_id):
        for slot_date in template_dates(template, start_date, end_date):
            if any(blackout.covers(slot_date) for blackout in blackouts):
                continue
            for window in plan_slot_windows(template, slot_date):
                rows.append({
                    'provider_id': provider_id,
                    'template_id': template.id,
                    'slot_date': slot_date,
                    'start_time': window.start,
                    'end_time': window.end,
                    'capacity': template.max_bookings_per_slot,
                    'booked_count': 0,
                    'is_available': True,
                    'slot_kind': template.slot_kind,
                    'created_at': now,
                    'updated_at': now,
                })

    if rows:
        created = 0
        try:
            for offset in range(0, len(rows), INSERT_BATCH_SIZE):
                statement = _insert_if_absent(db).values(rows[offset:offset + INSERT_BATCH_SIZE])
                result = await db.execute(statement.on_conflict_do_nothing(index_elements=SLOT_IDENTITY_COLUMNS))
                created += max(getattr(result, 'rowcount', 0) or 0, 0)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            'Materialized %s new slots for provider %s between %s and %s (%s planned)',
            created, provider_id, start_date, end_date, len(rows),
        )

    return await list_calendar(db, provider_id, start_date, end_date)


async def list_calendar(
    db: AsyncSession,
    provider_id: int,
    start_date: date,
    end_date: date,
) -> list[SlotInstance]:
    query = select(SlotInstance).where(
        SlotInstance.provider_id == provider_id,
        SlotInstance.slot_date >= start_date,
        SlotInstance.slot_date <= end_date,
    ).order_by(SlotInstance.start_time.asc(), SlotInstance.end_time.asc())
    result = await db.scalars(query.execution_options(populate_existing=True))
    return list(result.all())


async def get_slot(db: AsyncSession, slot_id: int) -> SlotInstance:
    slot = await db.get(SlotInstance, slot_id, populate_existing=True)
    if slot is None:
        raise SlotNotFoundError(f'Slot {slot_id} not found.')
    return slot


async def find_slot_by_start(db: AsyncSession, provider_id: int, start_time: datetime) -> SlotInstance | None:
    query = select(SlotInstance).where(
        SlotInstance.provider_id == provider_id,
        SlotInstance.start_time == start_time,
    ).order_by(SlotInstance.end_time.asc())
    result = await db.scalars(query.execution_options(populate_existing=True))
    return result.first()


async def update_slot(
    db: AsyncSession,
    slot_id: int,
    capacity: int | None = None,
    is_available: bool | None = None,
    notes: str | None = None,
) -> SlotInstance:
    """Apply a provider's edit to one slot; capacity never drops below bookings."""
    slot = await get_slot(db, slot_id)

    try:
        if capacity is not None:
            if capacity < 1:
                raise ValidationError('Slot capacity must be at least 1.')
            result = await db.execute(
                update(SlotInstance)
                .where(SlotInstance.id == slot_id, SlotInstance.booked_count <= capacity)
                .values(capacity=capacity, updated_at=datetime.now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ValidationError('Capacity cannot drop below the number of bookings already on this slot.')

        if is_available is not None:
            slot.is_available = is_available
        if notes is not None:
            slot.notes = notes.strip() or None

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return await get_slot(db, slot_id)
