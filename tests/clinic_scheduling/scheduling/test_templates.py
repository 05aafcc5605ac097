from datetime import date, time

import pytest

from clinic_scheduling.core import config
from clinic_scheduling.scheduling import templates
from clinic_scheduling.scheduling.errors import (
    OverlappingTemplateError,
    TemplateNotFoundError,
    ValidationError,
)


def test_create_template_persists_active_template(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            template = await templates.create_template(db, **monday_template_fields)
            listed = await templates.list_templates(db, 10)
            return template, listed

    template, listed = run_db(scenario)

    assert template.id is not None
    assert template.is_active is True
    assert template.slot_kind == 'regular'
    assert [item.id for item in listed] == [template.id]


@pytest.mark.parametrize(
    ('overrides', 'message'),
    [
        ({'start_time': time(12, 0), 'end_time': time(9, 0)}, 'Start time must be before end time.'),
        ({'slot_duration_minutes': 0}, 'Slot duration must be a positive number of minutes.'),
        ({'max_bookings_per_slot': 0}, 'Each slot must accept at least one booking.'),
        ({'break_start_time': time(10, 0)}, 'A break needs both a start and an end time.'),
        (
            {'break_start_time': time(11, 0), 'break_end_time': time(12, 30)},
            'Break must lie within the working hours.',
        ),
        (
            {'break_start_time': time(11, 0), 'break_end_time': time(10, 0)},
            'Break start must be before break end.',
        ),
        ({'day_of_week': 7}, 'Day of week must be between 0 (Sunday) and 6 (Saturday).'),
        ({'slot_kind': 'walk_in'}, 'Unknown slot kind: walk_in.'),
        ({'effective_until': date(2029, 12, 31)}, 'Effective until must not be before effective from.'),
    ],
)
def test_create_template_rejects_invalid_fields(run_db, monday_template_fields, overrides, message) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            with pytest.raises(ValidationError) as exception_info:
                await templates.create_template(db, **{**monday_template_fields, **overrides})
            return exception_info.value, await templates.list_templates(db, 10, include_inactive=True)

    error, remaining = run_db(scenario)

    assert error.message == message
    assert remaining == []


def test_second_active_template_for_same_weekday_overlaps(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **monday_template_fields)
            with pytest.raises(OverlappingTemplateError):
                await templates.create_template(
                    db,
                    **{**monday_template_fields, 'start_time': time(13, 0), 'end_time': time(17, 0)},
                )
            tuesday = await templates.create_template(db, **{**monday_template_fields, 'day_of_week': 2})
            other_provider = await templates.create_template(db, **{**monday_template_fields, 'provider_id': 11})
            return tuesday, other_provider

    tuesday, other_provider = run_db(scenario)

    assert tuesday.day_of_week == 2
    assert other_provider.provider_id == 11


def test_templates_with_disjoint_effective_ranges_do_not_overlap(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            winter = await templates.create_template(
                db, **{**monday_template_fields, 'effective_until': date(2030, 3, 31)}
            )
            spring = await templates.create_template(
                db, **{**monday_template_fields, 'effective_from': date(2030, 4, 1), 'end_time': time(16, 0)}
            )
            in_winter = await templates.resolve_template(db, 10, date(2030, 3, 25))
            in_spring = await templates.resolve_template(db, 10, date(2030, 4, 1))
            return winter.id, spring.id, in_winter.id, in_spring.id

    winter_id, spring_id, resolved_winter, resolved_spring = run_db(scenario)

    assert resolved_winter == winter_id
    assert resolved_spring == spring_id


def test_deactivated_template_is_hidden_and_frees_weekday(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            template = await templates.create_template(db, **monday_template_fields)
            deactivated = await templates.deactivate_template(db, template.id)
            deactivated_again = await templates.deactivate_template(db, template.id)
            replacement = await templates.create_template(db, **monday_template_fields)
            active = await templates.list_templates(db, 10)
            everything = await templates.list_templates(db, 10, include_inactive=True)
            return deactivated, deactivated_again, replacement, active, everything

    deactivated, deactivated_again, replacement, active, everything = run_db(scenario)

    assert deactivated.is_active is False
    assert deactivated.deleted_at is not None
    assert deactivated_again.deleted_at == deactivated.deleted_at
    assert [item.id for item in active] == [replacement.id]
    assert len(everything) == 2


def test_update_template_revalidates_and_ignores_itself_for_overlap(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            template_id = (await templates.create_template(db, **monday_template_fields)).id
            updated_end = (await templates.update_template(db, template_id, end_time=time(13, 0))).end_time
            with pytest.raises(ValidationError):
                await templates.update_template(db, template_id, slot_duration_minutes=-5)
            with pytest.raises(ValidationError):
                await templates.update_template(db, template_id, provider_id=99)
            reloaded = await templates.get_template(db, template_id)
            await db.refresh(reloaded)
            return updated_end, reloaded

    updated_end, reloaded = run_db(scenario)

    assert updated_end == time(13, 0)
    assert reloaded.slot_duration_minutes == 30
    assert reloaded.end_time == time(13, 0)


def test_get_template_raises_when_missing(run_db) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            with pytest.raises(TemplateNotFoundError):
                await templates.get_template(db, 404)

    run_db(scenario)


def test_resolve_template_honours_recurrence_interval(run_db, monday_template_fields) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            await templates.create_template(db, **{**monday_template_fields, 'recurrence_interval_weeks': 2})
            return [
                await templates.resolve_template(db, 10, on_date)
                for on_date in (date(2030, 1, 7), date(2030, 1, 14), date(2030, 1, 21), date(2030, 1, 8))
            ]

    resolved = run_db(scenario)

    assert [template is not None for template in resolved] == [True, False, True, False]


@pytest.mark.parametrize('effective_until', [None, date(2030, 6, 30)])
def test_update_template_rejects_clearing_effective_from(run_db, monday_template_fields, effective_until) -> None:
    async def scenario(sessions):
        async with sessions() as db:
            template_id = (
                await templates.create_template(db, **{**monday_template_fields, 'effective_until': effective_until})
            ).id
            with pytest.raises(ValidationError) as exception_info:
                await templates.update_template(db, template_id, effective_from=None)
            return exception_info.value, await templates.get_template(db, template_id)

    error, reloaded = run_db(scenario)

    assert error.message == 'Effective from date is required.'
    assert error.status_code == 400
    assert reloaded.effective_from == date(2030, 1, 1)


def test_create_template_defaults_to_configured_slot_kind(run_db, monday_template_fields, monkeypatch) -> None:
    monkeypatch.setattr(config, 'DEFAULT_SLOT_KIND', 'consultation')

    async def scenario(sessions):
        async with sessions() as db:
            configured = await templates.create_template(db, **monday_template_fields)
            explicit = await templates.create_template(
                db, **{**monday_template_fields, 'day_of_week': 2, 'slot_kind': 'emergency'}
            )
            return configured.slot_kind, explicit.slot_kind

    assert run_db(scenario) == ('consultation', 'emergency')


def test_runtime_config_rejects_unknown_default_slot_kind(monkeypatch) -> None:
    monkeypatch.setattr(config, 'DEFAULT_SLOT_KIND', 'walk_in')

    with pytest.raises(RuntimeError, match='DEFAULT_SLOT_KIND'):
        config.validate_runtime_config()
