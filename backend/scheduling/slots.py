"""Pure slot arithmetic.

Nothing in this module touches the database or the system clock. Callers pass
in the template, the ledger snapshot and the current time, so every function
is deterministic for fixed inputs.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Protocol

from backend.core.errors import InvalidDate

MINUTES_PER_DAY = 24 * 60


class WeeklyWindow(Protocol):
    day_of_week: int
    start_time: time
    end_time: time
    is_enabled: bool


@dataclass(frozen=True)
class Slot:
    start_time: time
    duration_minutes: int
    available: bool

    @property
    def end_time(self) -> time:
        return time_from_minutes(minutes_of_day(self.start_time) + self.duration_minutes)


def day_of_week(target_date: date) -> int:
    """Weekday index with Sunday as 0, matching stored templates."""
    return (target_date.weekday() + 1) % 7


def minutes_of_day(value: time) -> int:
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> time:
    if minutes >= MINUTES_PER_DAY:
        return time(23, 59)
    return time(minutes // 60, minutes % 60)


def is_on_granularity(value: time, granularity_minutes: int) -> bool:
    return value.second == 0 and minutes_of_day(value) % granularity_minutes == 0


def iterate_slot_starts(window_start: time, window_end: time, granularity_minutes: int) -> list[time]:
    """Slot starts from window_start in fixed steps; partial trailing slots are dropped."""
    if granularity_minutes <= 0:
        raise ValueError('granularity_minutes must be positive')

    starts: list[time] = []
    end_minutes = minutes_of_day(window_end)
    current = minutes_of_day(window_start)

    while current + granularity_minutes <= end_minutes:
        starts.append(time_from_minutes(current))
        current += granularity_minutes

    return starts


def is_slot_start(window: WeeklyWindow, slot_time: time, granularity_minutes: int) -> bool:
    offset = minutes_of_day(slot_time) - minutes_of_day(window.start_time)
    return slot_time.second == 0 and offset >= 0 and offset % granularity_minutes == 0


def window_contains_time(window: WeeklyWindow, slot_time: time) -> bool:
    return window.start_time <= slot_time < window.end_time


def window_contains_slot(window: WeeklyWindow, slot_time: time, granularity_minutes: int) -> bool:
    start = minutes_of_day(slot_time)
    return (
        minutes_of_day(window.start_time) <= start
        and start + granularity_minutes <= minutes_of_day(window.end_time)
    )


def generate_slots(
    window: Optional[WeeklyWindow],
    target_date: date,
    granularity_minutes: int,
    booked_times: Iterable[time] = (),
    capacity_remaining: Optional[int] = None,
) -> list[Slot]:
    """Expand a weekly window into the ordered slots for ``target_date``.

    A missing or disabled window, or one for another weekday, yields an empty
    list. A slot is unavailable when ``booked_times`` holds its start, or when
    ``capacity_remaining`` says the counselor's day is already full.
    """
    if window is None or not window.is_enabled:
        return []
    if window.day_of_week != day_of_week(target_date):
        return []

    taken = {booked.replace(second=0, microsecond=0) for booked in booked_times}
    day_is_full = capacity_remaining is not None and capacity_remaining <= 0

    return [
        Slot(
            start_time=start,
            duration_minutes=granularity_minutes,
            available=not day_is_full and start not in taken,
        )
        for start in iterate_slot_starts(window.start_time, window.end_time, granularity_minutes)
    ]


def check_booking_window(target_date: date, now: datetime, horizon_days: int) -> None:
    today = now.date()
    if target_date < today:
        raise InvalidDate('Appointment date cannot be in the past.', date=target_date.isoformat())

    last_day = today + timedelta(days=horizon_days)
    if target_date > last_day:
        raise InvalidDate(
            f'Appointments can only be booked up to {horizon_days} days in advance.',
            date=target_date.isoformat(),
            last_bookable_date=last_day.isoformat(),
        )
