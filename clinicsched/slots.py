"""
Slot calendar generation.

Computes the bookable time windows of a range from the clinic's weekly
business hours, evaluated on the clinic's local wall clock:
- stepping is done on UTC instants so DST changes never skip or repeat a step
- each candidate is accepted only if it starts and ends inside the open window
  of the same local calendar day
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterator

import pytz

from clinicsched.domain import BusinessHoursConfig, ConfigurationError, TimeSlot


def resolve_zone(name: str) -> dt.tzinfo:
    """Return the pytz zone for an IANA identifier or raise ConfigurationError."""
    try:
        return pytz.timezone(name)
    except (pytz.UnknownTimeZoneError, AttributeError, ValueError) as e:
        raise ConfigurationError(f"Unknown time zone: {name!r}") from e


def local_weekday(local: dt.datetime) -> int:
    # 0 = Sunday .. 6 = Saturday, as in BusinessHoursConfig.
    return local.isoweekday() % 7


def _fits_window(local_start: dt.datetime, local_end: dt.datetime, hours: BusinessHoursConfig) -> bool:
    if local_start.date() != local_end.date():
        return False

    day = hours.for_weekday(local_weekday(local_start))
    if not day.is_open:
        return False

    # Ending exactly at closing time is allowed.
    return day.open <= local_start.time() and local_end.time() <= day.close


def is_valid_slot(slot: TimeSlot, hours: BusinessHoursConfig, zone: str | dt.tzinfo) -> bool:
    tz = resolve_zone(zone) if isinstance(zone, str) else zone
    if slot.start.tzinfo is None or slot.end.tzinfo is None or slot.end <= slot.start:
        return False
    return _fits_window(slot.start.astimezone(tz), slot.end.astimezone(tz), hours)


@dataclass(frozen=True)
class SlotSequence:
    """Lazy, restartable sequence of slots.

    Every iteration recomputes from the stored inputs, so iterating twice
    yields the same slots.
    """

    range_start: dt.datetime
    range_end: dt.datetime
    hours: BusinessHoursConfig
    tz: dt.tzinfo
    duration_minutes: int

    def __iter__(self) -> Iterator[TimeSlot]:
        step = dt.timedelta(minutes=self.duration_minutes)
        current = self.range_start.astimezone(dt.timezone.utc)
        end = self.range_end.astimezone(dt.timezone.utc)

        while current + step <= end:
            slot_end = current + step
            local_start = current.astimezone(self.tz)
            local_end = slot_end.astimezone(self.tz)
            if _fits_window(local_start, local_end, self.hours):
                yield TimeSlot(start=local_start, end=local_end)
            current = slot_end


def generate_slots(
    time_range: tuple[dt.datetime, dt.datetime],
    hours: BusinessHoursConfig,
    zone: str,
    duration_minutes: int,
) -> SlotSequence:
    """
    Build the bookable slots of ``time_range``.

    Args:
        time_range: (start, end) aware instants; end is exclusive for slot ends
            past it
        hours: weekly business hours in the clinic's local time
        zone: IANA zone of the clinic
        duration_minutes: slot length and stepping increment

    Returns:
        SlotSequence of TimeSlot with local-zone start/end

    Raises:
        ConfigurationError: unknown zone, naive bounds, reversed range or
            non-positive duration. Raised here, before any slot is produced.
    """
    tz = resolve_zone(zone)

    range_start, range_end = time_range
    if range_start.tzinfo is None or range_end.tzinfo is None:
        raise ConfigurationError("Slot range bounds must be timezone-aware instants")
    if range_end < range_start:
        raise ConfigurationError(f"Slot range ends before it starts ({range_start} > {range_end})")
    if duration_minutes < 1:
        raise ConfigurationError(f"Slot duration must be >= 1 minute, got {duration_minutes}")

    return SlotSequence(
        range_start=range_start,
        range_end=range_end,
        hours=hours,
        tz=tz,
        duration_minutes=duration_minutes,
    )


def local_instant(day: dt.date, at: dt.time, zone: str | dt.tzinfo) -> dt.datetime:
    """Aware instant for a wall-clock time in ``zone`` (pytz needs localize, not replace)."""
    tz = resolve_zone(zone) if isinstance(zone, str) else zone
    naive = dt.datetime.combine(day, at)
    localize = getattr(tz, "localize", None)
    return localize(naive) if localize else naive.replace(tzinfo=tz)


def local_midnight(day: dt.date, zone: str | dt.tzinfo) -> dt.datetime:
    return local_instant(day, dt.time.min, zone)


def week_range(day: dt.date, zone: str) -> tuple[dt.datetime, dt.datetime]:
    """Monday 00:00 to the next Monday 00:00 (local) of the week containing ``day``."""
    monday = day - dt.timedelta(days=day.weekday())
    return local_midnight(monday, zone), local_midnight(monday + dt.timedelta(days=7), zone)


def format_time_range(start: dt.datetime, end: dt.datetime, zone: str) -> str:
    tz = resolve_zone(zone)
    local_start = start.astimezone(tz)
    local_end = end.astimezone(tz)
    return f"{_format_day(local_start)} {_format_clock(local_start)} - {_format_clock(local_end)}"


def _format_day(value: dt.datetime) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def _format_clock(value: dt.datetime) -> str:
    hour = value.hour % 12 or 12
    return f"{hour}:{value:%M} {'AM' if value.hour < 12 else 'PM'}"
