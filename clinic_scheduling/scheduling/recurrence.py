"""Recurrence expansion.

Turns a daily, weekly or monthly rule into the concrete dates that fall
inside a query window. Monthly rules keep the day-of-month of their start
date; months that do not have that day produce no occurrence at all.
"""

import calendar
import enum
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator

from clinic_scheduling.scheduling.errors import InvalidRecurrenceError


class Frequency(str, enum.Enum):
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'


@dataclass(frozen=True)
class RecurrenceRule:
    frequency: Frequency
    start_date: date
    end_date: date | None = None
    interval: int = 1

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, 'frequency', Frequency(self.frequency))
        except ValueError as exc:
            raise InvalidRecurrenceError(f'Unsupported frequency: {self.frequency!r}.') from exc

        if self.interval < 1:
            raise InvalidRecurrenceError('Recurrence interval must be at least 1.')

        if self.end_date is not None and self.start_date > self.end_date:
            raise InvalidRecurrenceError('Recurrence start date must not be after its end date.')


class Occurrences:
    """Dates of ``rule`` within ``[window_start, window_end]``.

    Iterating an instance twice yields the same sequence; nothing is
    computed until iteration starts.
    """

    def __init__(self, rule: RecurrenceRule, window_start: date, window_end: date):
        self.rule = rule
        self.window_start = window_start
        self.window_end = window_end

    def __iter__(self) -> Iterator[date]:
        lower = max(self.rule.start_date, self.window_start)
        upper = self.window_end
        if self.rule.end_date is not None:
            upper = min(upper, self.rule.end_date)

        if lower > upper:
            return iter(())

        if self.rule.frequency is Frequency.MONTHLY:
            return self._monthly(lower, upper)
        return self._fixed_step(lower, upper)

    def _fixed_step(self, lower: date, upper: date) -> Iterator[date]:
        step_days = self.rule.interval * (7 if self.rule.frequency is Frequency.WEEKLY else 1)
        offset = (lower - self.rule.start_date).days
        steps_to_lower = -(-offset // step_days)
        current = self.rule.start_date + timedelta(days=steps_to_lower * step_days)
        step = timedelta(days=step_days)

        while current <= upper:
            yield current
            current += step

    def _monthly(self, lower: date, upper: date) -> Iterator[date]:
        start = self.rule.start_date
        months_to_lower = (lower.year - start.year) * 12 + (lower.month - start.month)
        index = max(0, months_to_lower // self.rule.interval)

        while True:
            month_offset = start.month - 1 + index * self.rule.interval
            year = start.year + month_offset // 12
            month = month_offset % 12 + 1
            if (year, month) > (upper.year, upper.month):
                return

            if start.day <= calendar.monthrange(year, month)[1]:
                occurrence = date(year, month, start.day)
                if lower <= occurrence <= upper:
                    yield occurrence

            index += 1


def expand(rule: RecurrenceRule, window_start: date, window_end: date) -> Occurrences:
    return Occurrences(rule, window_start, window_end)


def weekly_rule(
    weekday: int,
    effective_from: date,
    effective_until: date | None = None,
    interval_weeks: int = 1,
) -> RecurrenceRule | None:
    """Weekly rule anchored on the first ``weekday`` (0 = Sunday) on or after ``effective_from``.

    Returns None when the anchor falls after ``effective_until``.
    """
    days_ahead = (weekday - sunday_based_weekday(effective_from)) % 7
    anchor = effective_from + timedelta(days=days_ahead)
    if effective_until is not None and anchor > effective_until:
        return None
    return RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=anchor,
        end_date=effective_until,
        interval=interval_weeks,
    )


def sunday_based_weekday(value: date) -> int:
    return (value.weekday() + 1) % 7
