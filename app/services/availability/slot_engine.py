# app/services/availability/slot_engine.py
"""
Slot computation for a single day.

Everything here is pure: callers load business hours, policy, appointments
and blocks, pass them in together with "now", and get back the bookable
start times. Times are business-local wall clock, compared as minutes since
midnight. Intervals are half-open, so back-to-back appointments never
conflict.
"""
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from app.models.appointment import AppointmentStatus


MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def closing_minutes(close_time: time) -> int:
    """Closing time in minutes; 00:00 means open until midnight"""
    return to_minutes(close_time) or MINUTES_PER_DAY


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_hhmm(value: str) -> time:
    """Parse "HH:MM" (seconds tolerated) into a time"""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    hour, minute = int(parts[0]), int(parts[1])
    return time(hour, minute)


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """[start_a, end_a) and [start_b, end_b) share at least one minute"""
    return start_a < end_b and start_b < end_a


def blocks_for_day(blocks: Iterable, day: date, staff_id=None) -> list:
    """
    Blocks that apply to the day. Business-wide blocks always apply; a staff
    block applies when that staff member is requested or nobody is.
    """
    return [
        b for b in blocks
        if b.block_date == day and (b.staff_id is None or staff_id is None or b.staff_id == staff_id)
    ]


def is_day_blocked(day_blocks: Sequence, staff_id=None) -> bool:
    """A whole-day block closes the agenda unless it belongs to another staff member"""
    for block in day_blocks:
        if block.start_time is None and block.end_time is None:
            if block.staff_id is None or block.staff_id == staff_id:
                return True
    return False


def busy_intervals(appointments: Iterable) -> List[Tuple[int, int]]:
    """Minute ranges taken by appointments that still occupy the agenda"""
    return [
        (to_minutes(a.start_time), to_minutes(a.end_time))
        for a in appointments
        if a.status != AppointmentStatus.CANCELED
    ]


def count_overlapping(intervals: Iterable[Tuple[int, int]], start: int, end: int) -> int:
    return sum(1 for s, e in intervals if overlaps(start, end, s, e))


def compute_available_slots(
        hours,
        policy,
        duration_minutes: int,
        appointments: Iterable,
        requested_date: date,
        now: datetime,
        blocks: Iterable = (),
        staff_id=None,
) -> List[str]:
    """
    Bookable start times ("HH:MM", ascending) for one day.

    Args:
        hours: BusinessHours row for the requested weekday, or None
        policy: SchedulingPolicy (interval, advance notice, capacity)
        duration_minutes: length of the requested service
        appointments: appointments on requested_date; canceled ones are ignored
        requested_date: the day being booked
        now: current business-local time (naive)
        blocks: TimeBlock rows; only those on requested_date are used
        staff_id: requested staff member, for staff-scoped blocks
    """
    if duration_minutes is None or duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    if hours is None or not hours.is_open:
        return []

    day_blocks = blocks_for_day(blocks, requested_date, staff_id)
    if is_day_blocked(day_blocks, staff_id):
        return []

    blocked = [
        (to_minutes(b.start_time), to_minutes(b.end_time))
        for b in day_blocks
        if b.start_time is not None and b.end_time is not None
    ]
    busy = busy_intervals(appointments)

    open_at = to_minutes(hours.open_time)
    # End times are same-day wall clock, so nothing can end at midnight itself
    close_at = min(closing_minutes(hours.close_time), MINUTES_PER_DAY - 1)
    earliest = now + timedelta(hours=policy.min_advance_hours)
    capacity = policy.max_capacity_per_slot

    slots = []
    current = open_at
    while current + duration_minutes <= close_at:
        end = current + duration_minutes
        starts_at = datetime.combine(requested_date, from_minutes(current))

        if starts_at >= earliest \
                and not any(overlaps(current, end, s, e) for s, e in blocked) \
                and count_overlapping(busy, current, end) < capacity:
            slots.append(format_hhmm(current))

        current += policy.slot_interval_minutes

    return slots


def slot_end_time(start: time, duration_minutes: int) -> Optional[time]:
    """End of a slot starting at `start`, or None when it would run past midnight"""
    end = to_minutes(start) + duration_minutes
    if end >= MINUTES_PER_DAY:
        return None
    return from_minutes(end)
