"""Mapping between abstract working units and calendar dates.

Unit ``n`` is the n-th working day counted from the project origin, where the
origin is the first working day on or after the project start date. Units
are half-open: a task with earliest start 0 and earliest finish 2 occupies
working days 0 and 1.
"""

from __future__ import annotations

import bisect
import math
from datetime import date, timedelta

from .config import DAYS_IN_WEEK, CalendarConfig
from .exceptions import InvalidConstraintError
from .logger import get_logger

logger = get_logger()

EPSILON = 1e-9
ONE_DAY = timedelta(days=1)


class CalendarMapper:
    """Converts working units from the project start to dates and back.

    Walks day-by-day skipping days outside the working-day mask and holidays.
    Walked days are cached per instance; an instance belongs to one
    calculation and is not shared between threads.
    """

    def __init__(self, project_start: date, calendar: CalendarConfig | None = None) -> None:
        """Initialize the mapper.

        Args:
            project_start: Calendar date of the project start (may be a non-working day)
            calendar: Working-day mask, holidays and hours/day

        Raises:
            InvalidConstraintError: If the calendar has no usable working days
        """
        self.calendar = calendar or CalendarConfig()
        self._working_weekdays = frozenset(self.calendar.working_days)
        if not self._working_weekdays or any(
            not 0 <= day < DAYS_IN_WEEK for day in self._working_weekdays
        ):
            raise InvalidConstraintError(
                f"Calendar working days {sorted(self._working_weekdays)} are not valid weekdays"
            )
        if self.calendar.hours_per_day <= 0:
            raise InvalidConstraintError("Calendar hours_per_day must be positive")
        self._holidays = frozenset(self.calendar.holidays)

        self.project_start = project_start
        self.origin = self.next_working_day(project_start)
        # _forward[i] is the date of unit i; _backward[i] is the date of unit -(i + 1)
        self._forward: list[date] = [self.origin]
        self._backward: list[date] = []

    @property
    def hours_per_day(self) -> float:
        return self.calendar.hours_per_day

    def is_working_day(self, day: date) -> bool:
        """True if the day is in the weekday mask and not a holiday."""
        return day.weekday() in self._working_weekdays and day not in self._holidays

    def next_working_day(self, day: date, *, inclusive: bool = True) -> date:
        """First working day on or after ``day`` (strictly after if not inclusive)."""
        current = day if inclusive else day + ONE_DAY
        while not self.is_working_day(current):
            current += ONE_DAY
        return current

    def previous_working_day(self, day: date, *, inclusive: bool = True) -> date:
        """Last working day on or before ``day`` (strictly before if not inclusive)."""
        current = day if inclusive else day - ONE_DAY
        while not self.is_working_day(current):
            current -= ONE_DAY
        return current

    def _extend_forward(self, index: int) -> None:
        while len(self._forward) <= index:
            self._forward.append(self.next_working_day(self._forward[-1], inclusive=False))

    def _extend_backward(self, index: int) -> None:
        while len(self._backward) <= index:
            last = self._backward[-1] if self._backward else self.origin
            self._backward.append(self.previous_working_day(last, inclusive=False))

    def to_date(self, units: float) -> date:
        """Date of the working day containing ``units`` (fractions fall in their day)."""
        index = math.floor(units + EPSILON)
        if index >= 0:
            self._extend_forward(index)
            return self._forward[index]
        back_index = -index - 1
        self._extend_backward(back_index)
        return self._backward[back_index]

    def to_units(self, day: date) -> int:
        """Working days elapsed from the origin up to (not including) ``day``.

        Negative for dates before the origin. ``to_units(to_date(n)) == n``.
        """
        if day >= self.origin:
            while self._forward[-1] < day:
                self._extend_forward(len(self._forward))
            return bisect.bisect_left(self._forward, day)

        # Count working days in [day, origin); _backward is in descending order
        count = 0
        while True:
            self._extend_backward(count)
            if self._backward[count] < day:
                return -count
            count += 1

    def elapsed_units(self, end_inclusive: date) -> int:
        """Working units consumed by work that finished on ``end_inclusive``."""
        return self.to_units(end_inclusive + ONE_DAY)

    def task_dates(self, earliest_start: float, earliest_finish: float) -> tuple[date, date]:
        """Map a half-open unit window to (start date, inclusive end date)."""
        start_unit = math.floor(earliest_start + EPSILON)
        end_unit = math.ceil(earliest_finish - EPSILON)
        start = self.to_date(start_unit)
        if end_unit <= start_unit + 1:
            return start, start
        return start, self.to_date(end_unit - 1)

    def add_working_days(self, start: date, working_days: int) -> date:
        """Walk ``working_days`` working days from ``start`` (backwards if negative)."""
        result = start
        step = ONE_DAY if working_days >= 0 else -ONE_DAY
        remaining = abs(working_days)
        while remaining > 0:
            result += step
            if self.is_working_day(result):
                remaining -= 1
        return result

    def working_days_between(self, start: date, end: date) -> int:
        """Number of working days in [start, end); negative if end precedes start."""
        if end < start:
            return -self.working_days_between(end, start)
        count = 0
        current = start
        while current < end:
            if self.is_working_day(current):
                count += 1
            current += ONE_DAY
        return count

    def holidays_between(self, start: date, end: date) -> list[date]:
        """Holidays falling within [start, end] that would otherwise be working days."""
        return sorted(
            day
            for day in self._holidays
            if start <= day <= end and day.weekday() in self._working_weekdays
        )

    def hours_to_units(self, hours: float) -> float:
        return hours / self.calendar.hours_per_day

    def units_to_hours(self, units: float) -> float:
        return units * self.calendar.hours_per_day
