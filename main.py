import argparse
import asyncio
import datetime as dt
import logging
from typing import Sequence

from clinicsched.clinic_api import ApiNotificationChannel, ClinicApiClient
from clinicsched.config import Settings, load_settings
from clinicsched.directory import ClinicDirectory
from clinicsched.domain import (
    ConfigurationError,
    FetchError,
    PersistenceError,
    TimeSlot,
    TransitionError,
    ValidationError,
)
from clinicsched.file_store import FileBookingStore
from clinicsched.inventory import InventoryChecker
from clinicsched.notifications import LoggingNotificationChannel, NotificationChannel, NotificationDispatcher
from clinicsched.orchestrator import BookingForm, BookingState, ScheduleOrchestrator
from clinicsched.slots import format_time_range, local_instant
from clinicsched.telegram_notifier import TelegramNotificationChannel
from clinicsched.week_calendar import BookingStore, WeeklyCalendar

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 2

USER_VISIBLE_ERRORS = (ValidationError, ConfigurationError, FetchError, PersistenceError, TransitionError)


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def build_channel(settings: Settings, api: ClinicApiClient) -> NotificationChannel:
    if settings.notification_channel == "api":
        return ApiNotificationChannel(api)
    if settings.notification_channel == "telegram":
        return TelegramNotificationChannel(
            bot_token=settings.telegram_bot_token,
            chat_ids=settings.telegram_chat_ids,
            timeout_seconds=settings.http_timeout_seconds,
        )
    return LoggingNotificationChannel()


def build_api(settings: Settings) -> ClinicApiClient:
    return ClinicApiClient(
        settings.clinic_api_url,
        settings.clinic_api_token,
        timeout_seconds=settings.http_timeout_seconds,
    )


def build_orchestrator(
    settings: Settings, api: ClinicApiClient, *, day: dt.date | None = None
) -> ScheduleOrchestrator:
    store: BookingStore = FileBookingStore(settings.bookings_file) if settings.store_backend == "file" else api

    calendar = WeeklyCalendar(
        store,
        hours=settings.business_hours,
        zone=settings.clinic_timezone,
        slot_duration_minutes=settings.slot_duration_minutes,
        day=day,
    )
    dispatcher = NotificationDispatcher(
        build_channel(settings, api),
        zone=settings.clinic_timezone,
        staff_roles=settings.notify_roles,
    )
    return ScheduleOrchestrator(
        store=store,
        checker=InventoryChecker(api),
        dispatcher=dispatcher,
        calendar=calendar,
        hours=settings.business_hours,
        zone=settings.clinic_timezone,
        clinic_id=settings.clinic_id or None,
        default_duration_minutes=settings.default_procedure_duration_minutes,
    )


async def _load_directory(orchestrator: ScheduleOrchestrator, source: ClinicApiClient) -> None:
    try:
        orchestrator.directory = await ClinicDirectory.load(source)
    except FetchError as e:
        # Names in notices fall back to "Unknown ..."; booking still works by id.
        logger.warning("Clinic directory unavailable (%s)", e)


async def show_slots(orchestrator: ScheduleOrchestrator) -> int:
    calendar = orchestrator.calendar
    await calendar.refresh()

    current_day = None
    for slot in calendar.slots():
        if slot.start.date() != current_day:
            current_day = slot.start.date()
            print(f"\n{current_day:%A, %b %d %Y}")
        booked = calendar.procedures_for_slot(slot)
        names = ", ".join(p.name for p in booked)
        print(f"  {slot.start:%H:%M}-{slot.end:%H:%M}  {names or 'free'}")
    return EXIT_OK


async def book(orchestrator: ScheduleOrchestrator, args: argparse.Namespace) -> int:
    start = local_instant(args.date, args.time, orchestrator.tz)
    slot = TimeSlot(start=start, end=start + dt.timedelta(minutes=orchestrator.calendar.slot_duration_minutes))

    session = orchestrator.new_session()
    session.select_slot(slot)
    session.fill_form(
        BookingForm(
            patient_id=args.patient,
            dentist_id=args.dentist,
            category=args.category,
            name=args.name,
            description=args.description,
            duration_minutes=args.duration,
        )
    )

    state = await session.confirm()
    if state == BookingState.AWAITING_OVERRIDE:
        print("Insufficient stock for this procedure:")
        for item in session.shortfall:
            print(f"  {item.name}: required {item.required}, on hand {item.on_hand}")
        if not args.override:
            session.cancel()
            print("Booking cancelled. Re-run with --override to book anyway.")
            return EXIT_CANCELLED
        await session.override()

    booking = session.booking
    if booking is None:
        raise TransitionError(f"Booking session ended in state {session.state.value} without a booking")
    print(f"Scheduled {booking.name}: {format_time_range(booking.scheduled_date, booking.end, orchestrator.zone)}")
    await orchestrator.dispatcher.drain()
    return EXIT_OK


async def run(settings: Settings, args: argparse.Namespace) -> int:
    api = build_api(settings)
    orchestrator = build_orchestrator(settings, api, day=args.date)
    if args.command == "slots":
        return await show_slots(orchestrator)

    await _load_directory(orchestrator, api)
    return await book(orchestrator, args)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="clinicsched: dental procedure scheduling")
    sub = parser.add_subparsers(dest="command", required=True)

    slots = sub.add_parser("slots", help="Show bookable slots of a week")
    slots.add_argument("--date", type=dt.date.fromisoformat, default=None, help="Any day of the week (YYYY-MM-DD)")

    booking = sub.add_parser("book", help="Schedule a procedure")
    booking.add_argument("--date", type=dt.date.fromisoformat, required=True, help="Day (YYYY-MM-DD)")
    booking.add_argument("--time", type=dt.time.fromisoformat, required=True, help="Local start time (HH:MM)")
    booking.add_argument("--patient", required=True, help="Patient id")
    booking.add_argument("--dentist", required=True, help="Dentist id")
    booking.add_argument("--category", required=True, help="Procedure category")
    booking.add_argument("--name", required=True, help="Procedure name")
    booking.add_argument("--description", default="", help="Free-text description")
    booking.add_argument("--duration", type=int, default=None, help="Duration in minutes")
    booking.add_argument("--override", action="store_true", help="Book even if stock is low")

    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    _setup_logging()

    try:
        settings = load_settings()
        return asyncio.run(run(settings, args))
    except USER_VISIBLE_ERRORS as e:
        logger.error("%s: %s", type(e).__name__, e)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
