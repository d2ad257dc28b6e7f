"""
Schedule orchestration.

One ``BookingSession`` per booking dialog walks a single attempt through

    EMPTY -> SLOT_SELECTED -> FORM_FILLED -> INVENTORY_CHECKING
        -> INVENTORY_OK -> CONFIRMED
        -> INVENTORY_LOW -> AWAITING_OVERRIDE -> CONFIRMED | CANCELLED

Every collaborator call is awaited before the state advances. Closing the
dialog just drops the session; a late response then has nowhere to land.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass

from clinicsched.directory import ClinicDirectory
from clinicsched.domain import (
    BookingStatus,
    BusinessHoursConfig,
    ConsumedItem,
    FetchError,
    InventoryCheckResult,
    InventoryItemCheck,
    PersistenceError,
    ProcedureBooking,
    TimeSlot,
    TransitionError,
    ValidationError,
)
from clinicsched.inventory import InventoryChecker
from clinicsched.notifications import DispatchReport, NotificationDispatcher
from clinicsched.slots import is_valid_slot, resolve_zone
from clinicsched.week_calendar import BookingStore, WeeklyCalendar

logger = logging.getLogger(__name__)

DEFAULT_PROCEDURE_DURATION_MINUTES = 60


class BookingState(str, enum.Enum):
    EMPTY = "Empty"
    SLOT_SELECTED = "SlotSelected"
    FORM_FILLED = "FormFilled"
    INVENTORY_CHECKING = "InventoryChecking"
    INVENTORY_OK = "InventoryOk"
    INVENTORY_LOW = "InventoryLow"
    AWAITING_OVERRIDE = "AwaitingOverride"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


TERMINAL_STATES = frozenset({BookingState.CONFIRMED, BookingState.CANCELLED})


@dataclass(frozen=True)
class BookingForm:
    patient_id: str = ""
    dentist_id: str = ""
    category: str = ""
    name: str = ""
    description: str = ""
    duration_minutes: int | None = None


@dataclass(frozen=True)
class Shortfall:
    name: str
    required: int
    on_hand: int

    @classmethod
    def from_check(cls, item: InventoryItemCheck) -> Shortfall:
        return cls(name=item.name, required=item.estimated_quantity, on_hand=item.current_stock)


class ScheduleOrchestrator:
    """Wires the collaborators together and hands out booking sessions."""

    def __init__(
        self,
        *,
        store: BookingStore,
        checker: InventoryChecker,
        dispatcher: NotificationDispatcher,
        calendar: WeeklyCalendar,
        hours: BusinessHoursConfig,
        zone: str,
        directory: ClinicDirectory | None = None,
        clinic_id: str | None = None,
        default_duration_minutes: int = DEFAULT_PROCEDURE_DURATION_MINUTES,
    ) -> None:
        self.store = store
        self.checker = checker
        self.dispatcher = dispatcher
        self.calendar = calendar
        self.hours = hours
        self.zone = zone
        self.tz = resolve_zone(zone)
        self.directory = directory or ClinicDirectory()
        self.clinic_id = clinic_id
        self.default_duration_minutes = default_duration_minutes

    def new_session(self) -> BookingSession:
        return BookingSession(self)


class BookingSession:
    """State of one booking attempt. Owned by exactly one dialog."""

    def __init__(self, orchestrator: ScheduleOrchestrator) -> None:
        self._o = orchestrator
        self.state = BookingState.EMPTY
        self.history: list[BookingState] = [BookingState.EMPTY]
        self.slot: TimeSlot | None = None
        self.form = BookingForm()
        self.check_result: InventoryCheckResult | None = None
        self.booking: ProcedureBooking | None = None
        self.notifications: asyncio.Task[DispatchReport] | None = None
        # Set while confirm/override is awaiting a collaborator.
        self._busy = False
        # Set when the last write was rejected; only then may confirm() resume from INVENTORY_CHECKING.
        self._write_failed = False

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def shortfall(self) -> list[Shortfall]:
        if self.check_result is None:
            return []
        return [Shortfall.from_check(item) for item in self.check_result.low_items]

    def _enter(self, state: BookingState) -> None:
        logger.info("Booking session: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _require(self, *allowed: BookingState) -> None:
        if self._busy:
            raise TransitionError(f"Cannot do this while a previous step is still running (state {self.state.value})")
        if self.state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise TransitionError(f"Cannot do this in state {self.state.value} (allowed: {names})")

    def select_slot(self, slot: TimeSlot) -> None:
        self._require(BookingState.EMPTY, BookingState.SLOT_SELECTED)
        if not is_valid_slot(slot, self._o.hours, self._o.tz):
            raise ValidationError(f"Slot {slot.start.isoformat()} - {slot.end.isoformat()} is outside business hours")

        self.slot = slot
        if self.state != BookingState.SLOT_SELECTED:
            self._enter(BookingState.SLOT_SELECTED)

    def fill_form(self, form: BookingForm) -> None:
        self._require(BookingState.SLOT_SELECTED, BookingState.FORM_FILLED)
        if form.duration_minutes is not None and form.duration_minutes < 1:
            raise ValidationError(f"Duration must be a positive number of minutes, got {form.duration_minutes}")

        self.form = form
        if self.state != BookingState.FORM_FILLED:
            self._enter(BookingState.FORM_FILLED)

    def _draft(self) -> ProcedureBooking:
        """Build the booking from the selected slot and form, rejecting anything not bookable."""
        if self.slot is None:
            raise TransitionError(f"No slot selected (state {self.state.value})")

        draft = ProcedureBooking(
            patient_id=self.form.patient_id.strip(),
            dentist_id=self.form.dentist_id.strip(),
            category=self.form.category.strip(),
            name=self.form.name.strip(),
            description=self.form.description,
            duration_minutes=self.form.duration_minutes or self._o.default_duration_minutes,
            scheduled_date=self.slot.start,
            status=BookingStatus.DRAFT,
            clinic_id=self._o.clinic_id,
        )

        missing = draft.missing_fields()
        if missing:
            raise ValidationError(f"Please fill in all required fields: {', '.join(missing)}")

        # The procedure, not just the slot, has to fit inside business hours.
        if not is_valid_slot(TimeSlot(start=draft.scheduled_date, end=draft.end), self._o.hours, self._o.tz):
            raise ValidationError(
                f"A {draft.duration_minutes}-minute procedure starting {draft.scheduled_date.isoformat()} "
                "runs outside business hours"
            )
        return draft

    async def confirm(self) -> BookingState:
        """Run the inventory check and, unless stock is low, persist the booking.

        Returns the state reached: CONFIRMED or AWAITING_OVERRIDE.

        Raises:
            ValidationError: required fields missing or the procedure runs past
                closing; state stays FORM_FILLED.
            FetchError: catalog unavailable; state goes back to FORM_FILLED.
            PersistenceError: write rejected; state stays INVENTORY_CHECKING.
            TransitionError: wrong state, or a previous call is still running.
        """
        if self._write_failed:
            self._require(BookingState.FORM_FILLED, BookingState.INVENTORY_CHECKING)
        else:
            self._require(BookingState.FORM_FILLED)

        draft = self._draft()

        self._busy = True
        try:
            return await self._check_and_persist(draft)
        finally:
            self._busy = False

    async def _check_and_persist(self, draft: ProcedureBooking) -> BookingState:
        if self.state != BookingState.INVENTORY_CHECKING:
            self._enter(BookingState.INVENTORY_CHECKING)

        try:
            result = await self._o.checker.check_availability(draft.category)
        except FetchError:
            self._write_failed = False
            self._enter(BookingState.FORM_FILLED)
            raise

        if not result.items:
            # Nothing is catalogued for this category: no check was performed.
            self.check_result = None
            logger.info("No inventory items for category %r, skipping check", draft.category)
            await self._persist(draft, BookingState.INVENTORY_CHECKING)
            return self.state

        self.check_result = result
        if result.has_low_stock:
            self._write_failed = False
            self._enter(BookingState.INVENTORY_LOW)
            for item in self.shortfall:
                logger.info("Low stock: %s (required %d, on hand %d)", item.name, item.required, item.on_hand)
            self._enter(BookingState.AWAITING_OVERRIDE)
            return self.state

        self._enter(BookingState.INVENTORY_OK)
        await self._persist(draft, BookingState.INVENTORY_CHECKING)
        return self.state

    async def override(self) -> BookingState:
        """Book despite the detected shortfall."""
        self._require(BookingState.AWAITING_OVERRIDE)
        draft = self._draft()

        logger.info("Low stock overridden for %r", draft.name)
        self._busy = True
        try:
            await self._persist(draft, BookingState.AWAITING_OVERRIDE)
        finally:
            self._busy = False
        return self.state

    def cancel(self) -> None:
        self._require(BookingState.AWAITING_OVERRIDE)
        self._enter(BookingState.CANCELLED)

    async def _persist(self, draft: ProcedureBooking, fallback: BookingState) -> None:
        items = self.check_result.items if self.check_result is not None else ()
        draft.inventory_items = [
            ConsumedItem(name=i.name, quantity=i.estimated_quantity, item_id=i.item_id, was_low=i.is_low)
            for i in items
        ]
        draft.status = BookingStatus.SCHEDULED

        try:
            created = await self._o.store.create_booking(draft)
        except PersistenceError:
            self._hold(fallback)
            raise
        except Exception as e:
            self._hold(fallback)
            raise PersistenceError(f"Failed to save procedure {draft.name!r} ({type(e).__name__}: {e})") from e

        self._write_failed = False
        self.booking = created
        self._enter(BookingState.CONFIRMED)

        self.notifications = self._o.dispatcher.dispatch(
            created,
            self.check_result,
            patient_name=self._o.directory.patient_name(created.patient_id),
            dentist_name=self._o.directory.dentist_name(created.dentist_id),
        )

        try:
            await self._o.calendar.refresh()
        except FetchError as e:
            # The booking is committed; a stale calendar is only a display problem.
            logger.warning("Calendar refresh after booking failed (%s)", e)

    def _hold(self, state: BookingState) -> None:
        # INVENTORY_OK is transient: a failed write leaves the session where the write started.
        self._write_failed = state == BookingState.INVENTORY_CHECKING
        if self.state != state:
            self._enter(state)
