from __future__ import annotations

import datetime as dt
import logging
from typing import Protocol, Sequence

from clinicsched.domain import BookingStatus, BusinessHoursConfig, FetchError, ProcedureBooking, TimeSlot
from clinicsched.slots import SlotSequence, generate_slots, week_range

logger = logging.getLogger(__name__)


class BookingStore(Protocol):
    async def list_bookings(
        self, start: dt.datetime, end: dt.datetime, status: BookingStatus | None = BookingStatus.SCHEDULED
    ) -> Sequence[ProcedureBooking]: ...

    async def create_booking(self, booking: ProcedureBooking) -> ProcedureBooking: ...


class WeeklyCalendar:
    """The week of scheduled procedures shown to staff.

    Shared across booking attempts. Never patched in place: ``refresh``
    always re-fetches the whole week from the store.
    """

    def __init__(
        self,
        store: BookingStore,
        *,
        hours: BusinessHoursConfig,
        zone: str,
        slot_duration_minutes: int = 30,
        day: dt.date | None = None,
    ) -> None:
        self._store = store
        self.hours = hours
        self.zone = zone
        self.slot_duration_minutes = slot_duration_minutes
        self.start, self.end = week_range(day or dt.date.today(), zone)
        self.procedures: list[ProcedureBooking] = []
        self.last_error: FetchError | None = None

    def slots(self) -> SlotSequence:
        return generate_slots((self.start, self.end), self.hours, self.zone, self.slot_duration_minutes)

    async def refresh(self) -> list[ProcedureBooking]:
        try:
            procedures = list(await self._store.list_bookings(self.start, self.end, BookingStatus.SCHEDULED))
        except FetchError as e:
            self.last_error = e
            raise
        except Exception as e:
            self.last_error = FetchError(f"Failed to load scheduled procedures ({type(e).__name__}: {e})")
            raise self.last_error from e

        self.procedures = procedures
        self.last_error = None
        logger.info("Calendar refreshed for week of %s: %d procedures", self.start.date(), len(procedures))
        return procedures

    def go_to_week(self, day: dt.date) -> None:
        self.start, self.end = week_range(day, self.zone)
        self.procedures = []

    def next_week(self) -> None:
        self.go_to_week(self.start.date() + dt.timedelta(days=7))

    def previous_week(self) -> None:
        self.go_to_week(self.start.date() - dt.timedelta(days=7))

    def procedures_for_slot(self, slot: TimeSlot) -> list[ProcedureBooking]:
        return [p for p in self.procedures if slot.start <= p.scheduled_date < slot.end]
