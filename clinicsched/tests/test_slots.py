from __future__ import annotations

import datetime as dt

import pytest

from clinicsched.domain import BusinessHoursConfig, ConfigurationError, TimeSlot
from clinicsched.slots import (
    format_time_range,
    generate_slots,
    is_valid_slot,
    local_instant,
    local_weekday,
    week_range,
)

ZONE = "America/New_York"
MONDAY = dt.date(2026, 10, 19)


def _hours(**days: tuple[str, str] | None) -> BusinessHoursConfig:
    # _hours(mon=("09:00", "18:00"), sat=None)
    index = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}
    raw = {}
    for name, window in days.items():
        if window is None:
            raw[str(index[name])] = {"isOpen": False}
        else:
            raw[str(index[name])] = {"isOpen": True, "open": window[0], "close": window[1]}
    return BusinessHoursConfig.from_dict(raw)


def _week() -> tuple[dt.datetime, dt.datetime]:
    return week_range(MONDAY, ZONE)


def test_monday_half_hour_slots_cover_nine_to_six() -> None:
    hours = _hours(mon=("09:00", "18:00"))

    slots = list(generate_slots(_week(), hours, ZONE, 30))

    assert len(slots) == 18
    assert (slots[0].start.hour, slots[0].start.minute) == (9, 0)
    assert (slots[0].end.hour, slots[0].end.minute) == (9, 30)
    assert (slots[-1].start.hour, slots[-1].start.minute) == (17, 30)
    assert (slots[-1].end.hour, slots[-1].end.minute) == (18, 0)
    assert {s.start.date() for s in slots} == {MONDAY}


def test_slot_ending_exactly_at_close_is_included() -> None:
    hours = _hours(mon=("09:00", "18:00"))

    slots = list(generate_slots(_week(), hours, ZONE, 45))

    assert len(slots) == 12
    assert (slots[-1].start.hour, slots[-1].start.minute) == (17, 15)
    assert (slots[-1].end.hour, slots[-1].end.minute) == (18, 0)


@pytest.mark.parametrize("duration", [15, 30, 45, 50, 60, 90])
def test_closed_days_yield_no_slots(duration: int) -> None:
    hours = _hours(
        mon=("09:00", "18:00"),
        tue=None,
        wed=("08:00", "12:00"),
        thu=None,
        fri=("13:00", "17:00"),
        sat=None,
        sun=None,
    )

    slots = list(generate_slots(_week(), hours, ZONE, duration))

    assert slots
    closed = {2, 4, 6, 0}
    assert not [s for s in slots if local_weekday(s.start) in closed]


@pytest.mark.parametrize("duration", [15, 30, 45, 50, 60, 90])
def test_every_slot_lies_inside_its_local_window(duration: int) -> None:
    hours = _hours(mon=("09:00", "18:00"), wed=("08:00", "12:00"), fri=("13:00", "17:00"))

    for slot in generate_slots(_week(), hours, ZONE, duration):
        day = hours.for_weekday(local_weekday(slot.start))
        assert day.is_open
        assert slot.start.date() == slot.end.date()
        assert day.open <= slot.start.time()
        assert slot.end.time() <= day.close
        assert slot.end - slot.start == dt.timedelta(minutes=duration)
        assert is_valid_slot(slot, hours, ZONE)


def test_generation_is_restartable() -> None:
    hours = _hours(mon=("09:00", "18:00"), fri=("13:00", "17:00"))

    seq = generate_slots(_week(), hours, ZONE, 30)

    first = list(seq)
    assert list(seq) == first
    assert list(generate_slots(_week(), hours, ZONE, 30)) == first


def test_unknown_zone_fails_before_any_output() -> None:
    hours = _hours(mon=("09:00", "18:00"))

    with pytest.raises(ConfigurationError, match=r"Unknown time zone"):
        generate_slots(_week(), hours, "Mars/Olympus_Mons", 30)


def test_naive_range_is_rejected() -> None:
    hours = _hours(mon=("09:00", "18:00"))
    start = dt.datetime(2026, 10, 19)

    with pytest.raises(ConfigurationError, match=r"timezone-aware"):
        generate_slots((start, start + dt.timedelta(days=1)), hours, ZONE, 30)


def test_non_positive_duration_is_rejected() -> None:
    hours = _hours(mon=("09:00", "18:00"))

    with pytest.raises(ConfigurationError, match=r"duration"):
        generate_slots(_week(), hours, ZONE, 0)


def test_slots_follow_local_time_across_dst_change() -> None:
    # 2026-11-01 is the day New York falls back from EDT to EST.
    sunday = dt.date(2026, 11, 1)
    hours = _hours(sun=("09:00", "12:00"))
    time_range = (local_instant(sunday, dt.time(0, 0), ZONE), local_instant(sunday + dt.timedelta(days=1), dt.time(0, 0), ZONE))

    slots = list(generate_slots(time_range, hours, ZONE, 30))

    assert [(s.start.hour, s.start.minute) for s in slots] == [(9, 0), (9, 30), (10, 0), (10, 30), (11, 0), (11, 30)]
    assert slots[0].start.utcoffset() == dt.timedelta(hours=-5)


def test_same_range_in_another_zone_shifts_local_window() -> None:
    hours = _hours(mon=("09:00", "10:00"))
    time_range = week_range(MONDAY, "UTC")

    slots = list(generate_slots(time_range, hours, "Europe/Warsaw", 30))

    # Week boundaries are UTC midnight, but the window is 09:00-10:00 Warsaw time.
    assert [s.start.astimezone(dt.timezone.utc).hour for s in slots] == [7, 7]


def test_slot_spanning_midnight_is_not_valid() -> None:
    hours = _hours(mon=("00:00", "23:59"), tue=("00:00", "23:59"))
    start = local_instant(MONDAY, dt.time(23, 45), ZONE)

    assert not is_valid_slot(TimeSlot(start=start, end=start + dt.timedelta(minutes=30)), hours, ZONE)


def test_slot_outside_business_hours_is_not_valid() -> None:
    hours = _hours(mon=("09:00", "18:00"))
    start = local_instant(MONDAY, dt.time(17, 45), ZONE)

    assert not is_valid_slot(TimeSlot(start=start, end=start + dt.timedelta(minutes=30)), hours, ZONE)


def test_week_range_starts_on_monday() -> None:
    start, end = week_range(dt.date(2026, 10, 22), ZONE)

    assert start.date() == MONDAY
    assert (start.hour, start.minute) == (0, 0)
    assert end - start == dt.timedelta(days=7)


def test_format_time_range() -> None:
    start = local_instant(MONDAY, dt.time(9, 0), ZONE)
    end = local_instant(MONDAY, dt.time(13, 30), ZONE)

    assert format_time_range(start, end, ZONE) == "Oct 19, 2026 9:00 AM - 1:30 PM"


def test_business_hours_reject_malformed_times() -> None:
    with pytest.raises(ConfigurationError, match=r"HH:MM"):
        BusinessHoursConfig.from_dict({"1": {"isOpen": True, "open": "9am", "close": "18:00"}})


def test_business_hours_reject_open_after_close() -> None:
    with pytest.raises(ConfigurationError, match=r"open after they close"):
        BusinessHoursConfig.from_dict({"1": {"isOpen": True, "open": "18:00", "close": "09:00"}})


@pytest.mark.parametrize("flag", ["false", "true", 1, None])
def test_business_hours_require_boolean_is_open(flag) -> None:
    with pytest.raises(ConfigurationError, match=r"isOpen"):
        BusinessHoursConfig.from_dict({"1": {"isOpen": flag, "open": "09:00", "close": "18:00"}})


def test_business_hours_reject_unknown_weekday() -> None:
    with pytest.raises(ConfigurationError, match=r"weekday"):
        BusinessHoursConfig.from_dict({"7": {"isOpen": True, "open": "09:00", "close": "18:00"}})
