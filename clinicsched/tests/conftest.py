from __future__ import annotations

import datetime as dt
from dataclasses import replace

import pytest

from clinicsched.directory import ClinicDirectory
from clinicsched.domain import (
    BookingStatus,
    BusinessHoursConfig,
    CatalogItem,
    Dentist,
    Notification,
    Patient,
    ProcedureBooking,
    TimeSlot,
)
from clinicsched.inventory import InventoryChecker
from clinicsched.notifications import NotificationDispatcher
from clinicsched.orchestrator import ScheduleOrchestrator
from clinicsched.slots import local_instant
from clinicsched.week_calendar import WeeklyCalendar

ZONE = "America/New_York"
MONDAY = dt.date(2026, 10, 19)


class FakeCatalog:
    """In-memory inventory catalog. Tests must not reach the clinic backend."""

    def __init__(self) -> None:
        self.items: dict[str, list[CatalogItem]] = {}
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def common_items_for_category(self, category: str) -> list[CatalogItem]:
        self.calls.append(category)
        if self.error is not None:
            raise self.error
        return list(self.items.get(category, []))


class FakeStore:
    def __init__(self, events: list[str]) -> None:
        self.bookings: list[ProcedureBooking] = []
        self.fail: Exception | None = None
        self.list_error: Exception | None = None
        self.events = events

    async def list_bookings(self, start, end, status=BookingStatus.SCHEDULED) -> list[ProcedureBooking]:
        self.events.append("refresh")
        if self.list_error is not None:
            raise self.list_error
        return [
            b for b in self.bookings if start <= b.scheduled_date < end and (status is None or b.status == status)
        ]

    async def create_booking(self, booking: ProcedureBooking) -> ProcedureBooking:
        self.events.append("create")
        if self.fail is not None:
            raise self.fail
        created = replace(booking, id=f"proc-{len(self.bookings) + 1}")
        self.bookings.append(created)
        return created


class RecordingChannel:
    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.sent.append(notification)


@pytest.fixture
def events() -> list[str]:
    return []


@pytest.fixture
def hours() -> BusinessHoursConfig:
    return BusinessHoursConfig.from_dict(
        {str(weekday): {"isOpen": True, "open": "09:00", "close": "18:00"} for weekday in range(1, 6)}
    )


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def store(events: list[str]) -> FakeStore:
    return FakeStore(events)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def directory() -> ClinicDirectory:
    return ClinicDirectory(
        patients=[Patient(id="p1", first_name="Anna", last_name="Nowak")],
        dentists=[Dentist(id="d1", first_name="Jan", last_name="Kowalski")],
    )


@pytest.fixture
def orchestrator(store, catalog, channel, hours, directory) -> ScheduleOrchestrator:
    calendar = WeeklyCalendar(store, hours=hours, zone=ZONE, slot_duration_minutes=30, day=MONDAY)
    return ScheduleOrchestrator(
        store=store,
        checker=InventoryChecker(catalog),
        dispatcher=NotificationDispatcher(channel, zone=ZONE),
        calendar=calendar,
        hours=hours,
        zone=ZONE,
        directory=directory,
    )


@pytest.fixture
def monday_slot() -> TimeSlot:
    start = local_instant(MONDAY, dt.time(10, 0), ZONE)
    return TimeSlot(start=start, end=start + dt.timedelta(minutes=30))
