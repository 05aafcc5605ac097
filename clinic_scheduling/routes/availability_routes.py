from datetime import date, time

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_scheduling.auth.dependencies import get_current_user, require_provider_access
from clinic_scheduling.database import get_db
from clinic_scheduling.models.slot import SlotKind
from clinic_scheduling.models.user import User
from clinic_scheduling.scheduling import blackouts, templates
from clinic_scheduling.schemas import CamelModel

router = APIRouter(tags=['availability'])

SLOT_KINDS = {kind.value for kind in SlotKind}


def _normalize_slot_kind(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower().replace('-', '_')
    if normalized not in SLOT_KINDS:
        raise ValueError('Invalid slot kind.')
    return normalized


class CreateTemplateRequest(CamelModel):
    doctor_id: int
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(gt=0)
    max_bookings_per_slot: int = Field(default=1, ge=1)
    break_start_time: time | None = None
    break_end_time: time | None = None
    slot_kind: str | None = None
    recurrence_interval_weeks: int = Field(default=1, ge=1)
    effective_from: date | None = None
    effective_until: date | None = None

    @field_validator('slot_kind')
    @classmethod
    def validate_slot_kind(cls, value: str | None) -> str | None:
        return _normalize_slot_kind(value)

    @model_validator(mode='after')
    def validate_hours(self) -> 'CreateTemplateRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class UpdateTemplateRequest(CamelModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: time | None = None
    end_time: time | None = None
    slot_duration_minutes: int | None = Field(default=None, gt=0)
    max_bookings_per_slot: int | None = Field(default=None, ge=1)
    break_start_time: time | None = None
    break_end_time: time | None = None
    slot_kind: str | None = None
    recurrence_interval_weeks: int | None = Field(default=None, ge=1)
    effective_from: date | None = None
    effective_until: date | None = None

    @field_validator('slot_kind')
    @classmethod
    def validate_slot_kind(cls, value: str | None) -> str | None:
        return _normalize_slot_kind(value)


class TemplateResponse(CamelModel):
    id: int
    provider_id: int
    day_of_week: int
    start_time: time
    end_time: time
    slot_duration_minutes: int
    max_bookings_per_slot: int
    break_start_time: time | None = None
    break_end_time: time | None = None
    slot_kind: str
    recurrence_interval_weeks: int
    effective_from: date
    effective_until: date | None = None
    is_active: bool


@router.post('/templates', response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    data: CreateTemplateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_provider_access(current_user, data.doctor_id)
    return await templates.create_template(
        db,
        provider_id=data.doctor_id,
        **data.model_dump(exclude={'doctor_id'}),
    )


@router.get('/templates', response_model=list[TemplateResponse])
async def list_templates(
    doctor_id: int = Query(..., alias='doctorId'),
    include_inactive: bool = Query(default=False, alias='includeInactive'),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if include_inactive:
        require_provider_access(current_user, doctor_id)
    return await templates.list_templates(db, doctor_id, include_inactive=include_inactive)


@router.patch('/templates/{template_id}', response_model=TemplateResponse)
async def update_template(
    template_id: int,
    data: UpdateTemplateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    template = await templates.get_template(db, template_id)
    require_provider_access(current_user, template.provider_id)
    return await templates.update_template(db, template_id, **data.model_dump(exclude_unset=True))


@router.delete('/templates/{template_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_template(
    template_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    template = await templates.get_template(db, template_id)
    require_provider_access(current_user, template.provider_id)
    await templates.deactivate_template(db, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


class CreateBlackoutRequest(CamelModel):
    doctor_id: int
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=200)

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateBlackoutRequest':
        if self.start_date > self.end_date:
            raise ValueError('Start date must not be after end date.')
        return self


class BlackoutResponse(CamelModel):
    id: int
    provider_id: int
    start_date: date
    end_date: date
    reason: str | None = None


@router.post('/blackouts', response_model=BlackoutResponse, status_code=status.HTTP_201_CREATED)
async def create_blackout(
    data: CreateBlackoutRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    require_provider_access(current_user, data.doctor_id)
    return await blackouts.add_blackout(db, data.doctor_id, data.start_date, data.end_date, data.reason)


@router.get('/blackouts', response_model=list[BlackoutResponse])
async def list_blackouts(
    doctor_id: int = Query(..., alias='doctorId'),
    start_date: date | None = Query(default=None, alias='startDate'),
    end_date: date | None = Query(default=None, alias='endDate'),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    del current_user
    return await blackouts.list_blackouts(db, doctor_id, start_date, end_date)


@router.delete('/blackouts/{blackout_id}', status_code=status.HTTP_204_NO_CONTENT)
async def remove_blackout(
    blackout_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    blackout = await blackouts.get_blackout(db, blackout_id)
    require_provider_access(current_user, blackout.provider_id)
    await blackouts.remove_blackout(db, blackout_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
