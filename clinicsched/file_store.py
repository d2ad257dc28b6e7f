from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
import uuid
from dataclasses import replace
from typing import Iterable

from clinicsched.domain import BookingStatus, FetchError, PersistenceError, ProcedureBooking

logger = logging.getLogger(__name__)


def load_bookings(path: str) -> list[ProcedureBooking]:
    if not os.path.exists(path):
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise FetchError(f"Failed to read bookings file {path!r} ({type(e).__name__}: {e})") from e

    bookings: list[ProcedureBooking] = []
    for item in raw.get("bookings", []):
        try:
            bookings.append(ProcedureBooking.from_json(item))
        except FetchError:
            logger.warning("Skipping malformed booking record in %s: %r", path, item)
    return bookings


def save_bookings(path: str, bookings: Iterable[ProcedureBooking]) -> None:
    data = {
        "bookings": [b.to_json() for b in sorted(bookings, key=lambda b: (b.scheduled_date, b.dentist_id))],
    }

    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    # Atomic write
    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)


class FileBookingStore:
    """Booking store kept in a local JSON file, for running without the clinic backend.

    Unlike the HTTP store it refuses a second active booking for the same
    dentist at the same instant.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    async def list_bookings(
        self, start: dt.datetime, end: dt.datetime, status: BookingStatus | None = BookingStatus.SCHEDULED
    ) -> list[ProcedureBooking]:
        return [
            b
            for b in load_bookings(self.path)
            if start <= b.scheduled_date < end and (status is None or b.status == status)
        ]

    async def create_booking(self, booking: ProcedureBooking) -> ProcedureBooking:
        try:
            existing = load_bookings(self.path)
        except FetchError as e:
            raise PersistenceError(str(e)) from e

        for other in existing:
            if (
                other.status != BookingStatus.CANCELLED
                and other.dentist_id == booking.dentist_id
                and other.scheduled_date == booking.scheduled_date
            ):
                raise PersistenceError(
                    f"Dentist {booking.dentist_id} already has a procedure at {booking.scheduled_date.isoformat()}"
                )

        created = replace(booking, id=booking.id or uuid.uuid4().hex)
        try:
            save_bookings(self.path, [*existing, created])
        except OSError as e:
            raise PersistenceError(f"Failed to write bookings file {self.path!r} ({type(e).__name__}: {e})") from e
        return created
