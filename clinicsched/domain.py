from __future__ import annotations

import datetime as dt
import enum
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping


class SchedulingError(RuntimeError):
    """Base class for every error raised by the scheduling core."""


class ValidationError(SchedulingError):
    """Missing or invalid booking fields. Recoverable by correcting the input."""


class ConfigurationError(SchedulingError):
    """Malformed business hours, unknown time zone or bad settings."""


class FetchError(SchedulingError):
    """A read from a collaborator (store, directory, catalog) failed.

    Never retried automatically: the user retries explicitly.
    """


class PersistenceError(SchedulingError):
    """The booking write was rejected."""


class NotificationError(SchedulingError):
    """A notice could not be delivered. Logged only, never surfaced."""


class TransitionError(SchedulingError):
    """The booking session was asked to do something its state does not allow."""


PROCEDURE_CATEGORIES: tuple[str, ...] = (
    "Diagnostic",
    "Preventive",
    "Restorative",
    "Endodontic",
    "Periodontic",
    "Prosthodontic",
    "Oral Surgery",
    "Orthodontic",
    "Implant",
    "Other",
)

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(raw: str) -> dt.time:
    m = _HHMM.match(str(raw).strip())
    if not m:
        raise ConfigurationError(f"Invalid time value: {raw!r}. Expected HH:MM.")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise ConfigurationError(f"Invalid time value: {raw!r}. Expected HH:MM.")
    return dt.time(hour, minute)


@dataclass(frozen=True)
class BusinessDay:
    is_open: bool
    open: dt.time = dt.time(9, 0)
    close: dt.time = dt.time(18, 0)


CLOSED = BusinessDay(is_open=False)


@dataclass(frozen=True)
class BusinessHoursConfig:
    """Opening hours per weekday, in the clinic's local time.

    Weekdays are numbered the way the clinic settings store them:
    0 = Sunday, 1 = Monday, ... 6 = Saturday. A missing weekday is closed.
    """

    days: Mapping[int, BusinessDay]

    def __post_init__(self) -> None:
        object.__setattr__(self, "days", MappingProxyType(dict(self.days)))

    def for_weekday(self, weekday: int) -> BusinessDay:
        return self.days.get(weekday, CLOSED)

    @classmethod
    def from_dict(cls, raw: Mapping[Any, Any]) -> BusinessHoursConfig:
        days: dict[int, BusinessDay] = {}
        for key, value in raw.items():
            try:
                weekday = int(key)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"Invalid weekday key: {key!r}") from e
            if weekday < 0 or weekday > 6:
                raise ConfigurationError(f"Invalid weekday key: {key!r}. Expected 0-6.")
            if not isinstance(value, Mapping):
                raise ConfigurationError(f"Invalid business hours for weekday {weekday}: {value!r}")

            is_open = value.get("isOpen", False)
            if not isinstance(is_open, bool):
                raise ConfigurationError(f"isOpen for weekday {weekday} must be true or false, got {is_open!r}")
            if not is_open:
                days[weekday] = CLOSED
                continue

            open_at = parse_hhmm(value.get("open", ""))
            close_at = parse_hhmm(value.get("close", ""))
            if open_at > close_at:
                raise ConfigurationError(
                    f"Business hours for weekday {weekday} open after they close ({open_at} > {close_at})"
                )
            days[weekday] = BusinessDay(is_open=True, open=open_at, close=close_at)

        return cls(days=days)


def default_business_hours() -> BusinessHoursConfig:
    # Monday to Friday, 09:00-18:00.
    return BusinessHoursConfig(
        days={weekday: BusinessDay(is_open=True, open=dt.time(9, 0), close=dt.time(18, 0)) for weekday in range(1, 6)}
    )


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A candidate bookable interval. Never persisted."""

    start: dt.datetime
    end: dt.datetime

    @property
    def duration(self) -> dt.timedelta:
        return self.end - self.start


class BookingStatus(str, enum.Enum):
    DRAFT = "Draft"
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class ConsumedItem:
    name: str
    quantity: int
    item_id: str | None = None
    was_low: bool = False

    def to_json(self) -> dict[str, Any]:
        return {"itemId": self.item_id, "name": self.name, "quantity": self.quantity, "wasLow": self.was_low}

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> ConsumedItem:
        return cls(
            name=str(raw.get("name", "")),
            quantity=int(raw.get("quantity", 0)),
            item_id=raw.get("itemId"),
            was_low=bool(raw.get("wasLow", False)),
        )


def _parse_instant(raw: Any) -> dt.datetime:
    if isinstance(raw, dt.datetime):
        value = raw
    else:
        value = dt.datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value


@dataclass
class ProcedureBooking:
    patient_id: str
    dentist_id: str
    category: str
    name: str
    scheduled_date: dt.datetime
    duration_minutes: int = 60
    description: str = ""
    status: BookingStatus = BookingStatus.DRAFT
    inventory_items: list[ConsumedItem] = field(default_factory=list)
    id: str | None = None
    clinic_id: str | None = None

    @property
    def end(self) -> dt.datetime:
        return self.scheduled_date + dt.timedelta(minutes=self.duration_minutes)

    def missing_fields(self) -> list[str]:
        required = {
            "patient": self.patient_id,
            "dentist": self.dentist_id,
            "category": self.category,
            "name": self.name,
        }
        return [label for label, value in required.items() if not str(value or "").strip()]

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "patientId": self.patient_id,
            "dentistId": self.dentist_id,
            "category": self.category,
            "name": self.name,
            "description": self.description,
            "duration": self.duration_minutes,
            "scheduledDate": self.scheduled_date.astimezone(dt.timezone.utc).isoformat(),
            "status": self.status.value,
            "inventoryItems": [item.to_json() for item in self.inventory_items],
        }
        if self.id is not None:
            data["_id"] = self.id
        if self.clinic_id:
            data["clinic"] = self.clinic_id
        return data

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> ProcedureBooking:
        try:
            return cls(
                id=raw.get("_id") or raw.get("id"),
                patient_id=_ref_id(raw.get("patientId", raw.get("patient"))),
                dentist_id=_ref_id(raw.get("dentistId", raw.get("dentist"))),
                category=str(raw.get("category", "")),
                name=str(raw.get("name", "")),
                description=str(raw.get("description") or ""),
                duration_minutes=int(raw.get("duration", raw.get("durationMinutes", 60))),
                scheduled_date=_parse_instant(raw.get("scheduledDate", raw.get("date"))),
                status=BookingStatus(raw.get("status", BookingStatus.SCHEDULED.value)),
                inventory_items=[ConsumedItem.from_json(i) for i in raw.get("inventoryItems") or []],
                clinic_id=_ref_id(raw.get("clinic")) or None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed booking record: {e}") from e


def _ref_id(value: Any) -> str:
    # References arrive either as a bare id or as a populated document.
    if isinstance(value, Mapping):
        return str(value.get("_id") or value.get("id") or "")
    return "" if value is None else str(value)


@dataclass(frozen=True)
class CatalogItem:
    name: str
    estimated_quantity: int
    current_stock: int
    item_id: str | None = None

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> CatalogItem:
        try:
            return cls(
                name=str(raw["name"]),
                # Catalog rows without an estimate count as one unit per procedure.
                estimated_quantity=int(raw.get("estimatedQuantity") or 1),
                current_stock=int(raw.get("currentStock") or 0),
                item_id=raw.get("_id") or raw.get("itemId"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed catalog item: {raw!r}") from e


@dataclass(frozen=True)
class InventoryItemCheck:
    name: str
    estimated_quantity: int
    current_stock: int
    is_low: bool
    item_id: str | None = None


@dataclass(frozen=True)
class InventoryCheckResult:
    has_low_stock: bool
    items: tuple[InventoryItemCheck, ...] = ()

    @property
    def low_items(self) -> tuple[InventoryItemCheck, ...]:
        return tuple(item for item in self.items if item.is_low)

    @classmethod
    def from_items(cls, items: Iterable[InventoryItemCheck]) -> InventoryCheckResult:
        checked = tuple(items)
        return cls(has_low_stock=any(item.is_low for item in checked), items=checked)


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    type: str = "general"
    link: str = ""
    user_id: str | None = None
    roles: tuple[str, ...] = ()

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "type": self.type,
            "link": self.link,
        }
        if self.user_id is not None:
            data["userId"] = self.user_id
        return data


@dataclass(frozen=True)
class Person:
    id: str
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> Person:
        return cls(
            id=str(raw.get("_id") or raw.get("id") or ""),
            first_name=str(raw.get("firstName") or ""),
            last_name=str(raw.get("lastName") or ""),
        )


class Patient(Person):
    pass


class Dentist(Person):
    pass
