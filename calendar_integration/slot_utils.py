import datetime
from collections.abc import Iterable

from calendar_integration.services.dataclasses import BusyInterval, TimeSlot


def overlaps(
    start: datetime.datetime,
    end: datetime.datetime,
    busy_start: datetime.datetime,
    busy_end: datetime.datetime,
) -> bool:
    """Half-open interval overlap: [start, end) intersects [busy_start, busy_end)."""
    return end > busy_start and start < busy_end


def find_free_slots(
    time_min: datetime.datetime,
    time_max: datetime.datetime,
    duration_minutes: int,
    busy_intervals: Iterable[BusyInterval],
) -> list[TimeSlot]:
    """
    Walks ``[time_min, time_max)`` in back-to-back steps of ``duration_minutes`` and keeps
    the steps that don't overlap any busy interval. A trailing partial step is dropped.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    busy = list(busy_intervals)
    step = datetime.timedelta(minutes=duration_minutes)
    slots = []
    slot_start = time_min
    while slot_start + step <= time_max:
        slot_end = slot_start + step
        if not any(overlaps(slot_start, slot_end, b.start, b.end) for b in busy):
            slots.append(TimeSlot(start=slot_start, end=slot_end))
        slot_start = slot_end
    return slots
