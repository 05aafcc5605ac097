"""Availability template store.

One active template governs a provider's weekday at any given date. Templates
are soft-deleted so that slots generated from them keep their provenance.
"""

import logging
from datetime import date, datetime, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.core import config
from clinic_scheduling.models.availability import AvailabilityTemplate
from clinic_scheduling.models.slot import SlotKind
from clinic_scheduling.scheduling.errors import (
    OverlappingTemplateError,
    TemplateNotFoundError,
    ValidationError,
)
from clinic_scheduling.scheduling.recurrence import expand, sunday_based_weekday, weekly_rule

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    'day_of_week',
    'start_time',
    'end_time',
    'slot_duration_minutes',
    'max_bookings_per_slot',
    'break_start_time',
    'break_end_time',
    'slot_kind',
    'recurrence_interval_weeks',
    'effective_from',
    'effective_until',
}


def validate_template(template: AvailabilityTemplate) -> None:
    if template.day_of_week is None or not 0 <= template.day_of_week <= 6:
        raise ValidationError('Day of week must be between 0 (Sunday) and 6 (Saturday).')

    if template.start_time is None or template.end_time is None:
        raise ValidationError('Start and end time are required.')

    if template.start_time >= template.end_time:
        raise ValidationError('Start time must be before end time.')

    if template.slot_duration_minutes is None or template.slot_duration_minutes <= 0:
        raise ValidationError('Slot duration must be a positive number of minutes.')

    if template.max_bookings_per_slot is None or template.max_bookings_per_slot < 1:
        raise ValidationError('Each slot must accept at least one booking.')

    if (template.break_start_time is None) != (template.break_end_time is None):
        raise ValidationError('A break needs both a start and an end time.')

    if template.has_break:
        if template.break_start_time >= template.break_end_time:
            raise ValidationError('Break start must be before break end.')
        if template.break_start_time < template.start_time or template.break_end_time > template.end_time:
            raise ValidationError('Break must lie within the working hours.')

    if template.recurrence_interval_weeks is None or template.recurrence_interval_weeks < 1:
        raise ValidationError('Recurrence interval must be at least one week.')

    if template.effective_from is None:
        raise ValidationError('Effective from date is required.')

    if template.effective_until is not None and template.effective_until < template.effective_from:
        raise ValidationError('Effective until must not be before effective from.')

    if template.slot_kind not in {kind.value for kind in SlotKind}:
        raise ValidationError(f'Unknown slot kind: {template.slot_kind}.')


def _ranges_intersect(first: AvailabilityTemplate, second: AvailabilityTemplate) -> bool:
    first_end = first.effective_until or date.max
    second_end = second.effective_until or date.max
    return first.effective_from <= second_end and second.effective_from <= first_end


async def _ensure_no_overlap(db: AsyncSession, template: AvailabilityTemplate) -> None:
    query = select(AvailabilityTemplate).where(
        AvailabilityTemplate.provider_id == template.provider_id,
        AvailabilityTemplate.day_of_week == template.day_of_week,
        AvailabilityTemplate.is_active.is_(True),
    )
    if template.id is not None:
        query = query.where(AvailabilityTemplate.id != template.id)

    for existing in (await db.scalars(query)).all():
        if _ranges_intersect(existing, template):
            raise OverlappingTemplateError(
                f'Provider {template.provider_id} already has an active template '
                f'(id {existing.id}) for day {template.day_of_week}.'
            )


async def create_template(
    db: AsyncSession,
    *,
    provider_id: int,
    day_of_week: int,
    start_time: time,
    end_time: time,
    slot_duration_minutes: int,
    max_bookings_per_slot: int = 1,
    break_start_time: time | None = None,
    break_end_time: time | None = None,
    slot_kind: str | None = None,
    recurrence_interval_weeks: int = 1,
    effective_from: date | None = None,
    effective_until: date | None = None,
) -> AvailabilityTemplate:
    template = AvailabilityTemplate(
        provider_id=provider_id,
        day_of_week=day_of_week,
        start_time=start_time,
        end_time=end_time,
        slot_duration_minutes=slot_duration_minutes,
        max_bookings_per_slot=max_bookings_per_slot,
        break_start_time=break_start_time,
        break_end_time=break_end_time,
        slot_kind=slot_kind or config.DEFAULT_SLOT_KIND,
        recurrence_interval_weeks=recurrence_interval_weeks,
        effective_from=effective_from or date.today(),
        effective_until=effective_until,
        is_active=True,
    )
    validate_template(template)
    await _ensure_no_overlap(db, template)

    db.add(template)
    await db.commit()
    await db.refresh(template)

    logger.info('Created availability template %s for provider %s on day %s', template.id, provider_id, day_of_week)
    return template


async def get_template(db: AsyncSession, template_id: int) -> AvailabilityTemplate:
    template = await db.get(AvailabilityTemplate, template_id, populate_existing=True)
    if template is None:
        raise TemplateNotFoundError(f'Availability template {template_id} not found.')
    return template


async def update_template(db: AsyncSession, template_id: int, **changes) -> AvailabilityTemplate:
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f'Fields cannot be edited: {", ".join(sorted(unknown))}.')

    template = await get_template(db, template_id)
    if not template.is_active:
        raise ValidationError('Inactive templates cannot be edited.')

    try:
        for field, value in changes.items():
            setattr(template, field, value)
        validate_template(template)
        await _ensure_no_overlap(db, template)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(template)
    logger.info('Updated availability template %s (%s)', template_id, ', '.join(sorted(changes)))
    return template


async def deactivate_template(db: AsyncSession, template_id: int) -> AvailabilityTemplate:
    template = await get_template(db, template_id)
    if not template.is_active:
        return template

    template.is_active = False
    template.deleted_at = datetime.now()
    await db.commit()
    await db.refresh(template)

    logger.info('Deactivated availability template %s', template_id)
    return template


async def list_templates(
    db: AsyncSession,
    provider_id: int,
    include_inactive: bool = False,
) -> list[AvailabilityTemplate]:
    query = select(AvailabilityTemplate).where(AvailabilityTemplate.provider_id == provider_id)
    if not include_inactive:
        query = query.where(AvailabilityTemplate.is_active.is_(True))
    query = query.order_by(AvailabilityTemplate.day_of_week.asc(), AvailabilityTemplate.effective_from.asc())
    return list((await db.scalars(query)).all())


def template_dates(template: AvailabilityTemplate, window_start: date, window_end: date) -> list[date]:
    """Dates within the window on which ``template`` governs its weekday."""
    rule = weekly_rule(
        template.day_of_week,
        template.effective_from,
        template.effective_until,
        template.recurrence_interval_weeks,
    )
    if rule is None:
        return []
    return list(expand(rule, window_start, window_end))


async def resolve_template(db: AsyncSession, provider_id: int, on_date: date) -> AvailabilityTemplate | None:
    query = select(AvailabilityTemplate).where(
        AvailabilityTemplate.provider_id == provider_id,
        AvailabilityTemplate.day_of_week == sunday_based_weekday(on_date),
        AvailabilityTemplate.is_active.is_(True),
        AvailabilityTemplate.effective_from <= on_date,
    )
    for template in (await db.scalars(query)).all():
        if on_date in template_dates(template, on_date, on_date):
            return template
    return None
