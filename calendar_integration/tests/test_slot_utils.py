import datetime

import pytest

from calendar_integration.services.dataclasses import BusyInterval, TimeSlot
from calendar_integration.slot_utils import find_free_slots, overlaps


def at(hour, minute=0):
    return datetime.datetime(2025, 6, 20, hour, minute, tzinfo=datetime.UTC)


def test_overlaps_is_half_open():
    assert overlaps(at(9), at(10), at(9, 30), at(11))
    assert not overlaps(at(9), at(10), at(10), at(11))
    assert not overlaps(at(10), at(11), at(9), at(10))


def test_busy_half_hour_removes_one_slot():
    slots = find_free_slots(at(9), at(11), 30, [BusyInterval(start=at(10), end=at(10, 30))])

    assert slots == [
        TimeSlot(start=at(9), end=at(9, 30)),
        TimeSlot(start=at(9, 30), end=at(10)),
        TimeSlot(start=at(10, 30), end=at(11)),
    ]


def test_busy_interval_straddling_two_slots():
    slots = find_free_slots(at(9), at(11), 30, [BusyInterval(start=at(9, 45), end=at(10, 15))])

    assert slots == [
        TimeSlot(start=at(9), end=at(9, 30)),
        TimeSlot(start=at(10, 30), end=at(11)),
    ]


def test_trailing_partial_slot_is_dropped():
    slots = find_free_slots(at(9), at(10, 20), 30, [])

    assert [slot.start for slot in slots] == [at(9), at(9, 30)]


def test_window_shorter_than_duration():
    assert find_free_slots(at(9), at(9, 20), 30, []) == []


def test_fully_busy_window():
    assert find_free_slots(at(9), at(11), 60, [BusyInterval(start=at(8), end=at(12))]) == []


@pytest.mark.parametrize("duration", [0, -15])
def test_duration_must_be_positive(duration):
    with pytest.raises(ValueError):
        find_free_slots(at(9), at(11), duration, [])
