"""Provider blackout dates (vacations, conferences, sick leave).

Slot materialization skips blacked-out dates. Adding a blackout also closes
slots already generated for those dates; bookings on them are left for the
provider to cancel or reschedule.
"""

import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.models.blackout import ProviderBlackout
from clinic_scheduling.models.slot import SlotInstance
from clinic_scheduling.scheduling.errors import BlackoutNotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_BLACKOUT_REASON_LENGTH = 200


async def add_blackout(
    db: AsyncSession,
    provider_id: int,
    start_date: date,
    end_date: date,
    reason: str | None = None,
) -> ProviderBlackout:
    if start_date > end_date:
        raise ValidationError('Blackout start date must not be after its end date.')

    reason = reason.strip() if reason else None
    if reason and len(reason) > MAX_BLACKOUT_REASON_LENGTH:
        raise ValidationError(f'Blackout reason must be {MAX_BLACKOUT_REASON_LENGTH} characters or fewer.')

    blackout = ProviderBlackout(
        provider_id=provider_id,
        start_date=start_date,
        end_date=end_date,
        reason=reason or None,
    )
    try:
        db.add(blackout)
        closed = await db.execute(
            update(SlotInstance)
            .where(
                SlotInstance.provider_id == provider_id,
                SlotInstance.slot_date >= start_date,
                SlotInstance.slot_date <= end_date,
                SlotInstance.is_available.is_(True),
            )
            .values(is_available=False, updated_at=datetime.now())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(blackout)

    logger.info(
        'Provider %s blacked out %s to %s; closed %s existing slots',
        provider_id, start_date, end_date, closed.rowcount,
    )
    return blackout


async def get_blackout(db: AsyncSession, blackout_id: int) -> ProviderBlackout:
    blackout = await db.get(ProviderBlackout, blackout_id)
    if blackout is None:
        raise BlackoutNotFoundError(f'Blackout {blackout_id} not found.')
    return blackout


async def remove_blackout(db: AsyncSession, blackout_id: int) -> None:
    """Delete a blackout. Slots it closed stay closed until the provider reopens them."""
    blackout = await get_blackout(db, blackout_id)
    provider_id = blackout.provider_id
    await db.delete(blackout)
    await db.commit()
    logger.info('Removed blackout %s of provider %s', blackout_id, provider_id)


async def list_blackouts(
    db: AsyncSession,
    provider_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[ProviderBlackout]:
    query = select(ProviderBlackout).where(ProviderBlackout.provider_id == provider_id)
    if start_date is not None:
        query = query.where(ProviderBlackout.end_date >= start_date)
    if end_date is not None:
        query = query.where(ProviderBlackout.start_date <= end_date)
    query = query.order_by(ProviderBlackout.start_date.asc())
    return list((await db.scalars(query)).all())


async def is_blacked_out(db: AsyncSession, provider_id: int, on_date: date) -> bool:
    return bool(await list_blackouts(db, provider_id, on_date, on_date))
