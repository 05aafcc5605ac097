"""Booking ledger: the booked count of each slot.

Both operations are single conditional UPDATE statements, so concurrent
callers never read-modify-write the count in Python. Neither commits; the
caller's transaction decides whether the change sticks.
"""

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.models.slot import SlotInstance
from clinic_scheduling.scheduling.errors import ConcurrencyConflictError, SlotFullError, SlotNotFoundError

logger = logging.getLogger(__name__)


async def guarded_execute(db: AsyncSession, statement):
    try:
        return await db.execute(statement.execution_options(synchronize_session=False))
    except OperationalError as exc:
        # Lock timeouts and serialization failures; the caller may retry.
        raise ConcurrencyConflictError('The slot is being updated by another request.') from exc


async def reserve(db: AsyncSession, slot_id: int) -> None:
    result = await guarded_execute(
        db,
        update(SlotInstance)
        .where(
            SlotInstance.id == slot_id,
            SlotInstance.is_available.is_(True),
            SlotInstance.booked_count < SlotInstance.capacity,
        )
        .values(booked_count=SlotInstance.booked_count + 1, updated_at=datetime.now()),
    )
    if result.rowcount == 1:
        return

    exists = await db.scalar(select(SlotInstance.id).where(SlotInstance.id == slot_id))
    if exists is None:
        raise SlotNotFoundError(f'Slot {slot_id} not found.')
    raise SlotFullError(f'Slot {slot_id} has no remaining capacity.')


async def release(db: AsyncSession, slot_id: int) -> bool:
    """Give one unit of capacity back. Returns False when there was nothing to release."""
    result = await guarded_execute(
        db,
        update(SlotInstance)
        .where(SlotInstance.id == slot_id, SlotInstance.booked_count > 0)
        .values(booked_count=SlotInstance.booked_count - 1, updated_at=datetime.now()),
    )
    if result.rowcount == 1:
        return True

    logger.warning('Ignoring release of slot %s: booked count is already zero or slot is missing', slot_id)
    return False
