from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from clinicsched.domain import BusinessHoursConfig, ConfigurationError, default_business_hours
from clinicsched.slots import resolve_zone

STORE_BACKENDS = ("api", "file")
NOTIFICATION_CHANNELS = ("api", "telegram", "log")


def _parse_telegram_chat_ids(raw: str) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID supports a single value or a comma-separated list.
    # Examples:
    #   TELEGRAM_CHAT_ID=123456789
    #   TELEGRAM_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        # Groups/supergroups have negative ids.
        try:
            int(p)
        except ValueError as e:
            raise ConfigurationError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e

        if p == "0":
            raise ConfigurationError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise ConfigurationError("TELEGRAM_CHAT_ID is empty. Provide at least one chat id.")

    return tuple(result)


def _parse_roles(raw: str) -> tuple[str, ...]:
    roles = tuple(dict.fromkeys(r.strip() for r in raw.split(",") if r.strip()))
    if not roles:
        raise ConfigurationError("NOTIFY_ROLES is empty. Provide at least one role.")
    return roles


def _parse_business_hours(raw: str | None) -> BusinessHoursConfig:
    if not raw:
        return default_business_hours()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"BUSINESS_HOURS is not valid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ConfigurationError("BUSINESS_HOURS must be a JSON object keyed by weekday (0 = Sunday)")
    return BusinessHoursConfig.from_dict(data)


def _positive_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ConfigurationError(f"{name} must be >= 1")
    return value


def _choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(name, default).strip().lower()
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    clinic_timezone: str
    business_hours: BusinessHoursConfig = field(default_factory=default_business_hours)

    slot_duration_minutes: int = 30
    default_procedure_duration_minutes: int = 60

    store_backend: str = "api"
    clinic_api_url: str = ""
    clinic_api_token: str = ""
    clinic_id: str = ""
    http_timeout_seconds: float = 20.0

    # Where the file store keeps bookings
    bookings_file: str = "bookings.json"

    notification_channel: str = "log"
    notify_roles: tuple[str, ...] = ("admin", "receptionist")
    telegram_bot_token: str = ""
    telegram_chat_ids: tuple[str, ...] = ()


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    clinic_timezone = _require("CLINIC_TIMEZONE")
    resolve_zone(clinic_timezone)

    store_backend = _choice("STORE_BACKEND", "api", STORE_BACKENDS)
    notification_channel = _choice("NOTIFICATION_CHANNEL", "log", NOTIFICATION_CHANNELS)

    timeout_raw = os.getenv("HTTP_TIMEOUT_SECONDS", "20")
    try:
        http_timeout_seconds = float(timeout_raw)
    except ValueError as e:
        raise ConfigurationError(f"HTTP_TIMEOUT_SECONDS must be a number, got {timeout_raw!r}") from e

    telegram_bot_token = ""
    telegram_chat_ids: tuple[str, ...] = ()
    if notification_channel == "telegram":
        telegram_bot_token = _require("TELEGRAM_BOT_TOKEN")
        telegram_chat_ids = _parse_telegram_chat_ids(_require("TELEGRAM_CHAT_ID"))

    return Settings(
        clinic_timezone=clinic_timezone,
        business_hours=_parse_business_hours(os.getenv("BUSINESS_HOURS")),
        slot_duration_minutes=_positive_int("SLOT_DURATION_MINUTES", "30"),
        default_procedure_duration_minutes=_positive_int("DEFAULT_PROCEDURE_DURATION_MINUTES", "60"),
        store_backend=store_backend,
        clinic_api_url=_require("CLINIC_API_URL"),
        clinic_api_token=os.getenv("CLINIC_API_TOKEN", ""),
        clinic_id=os.getenv("CLINIC_ID", ""),
        http_timeout_seconds=http_timeout_seconds,
        bookings_file=os.getenv("BOOKINGS_FILE", "bookings.json"),
        notification_channel=notification_channel,
        notify_roles=_parse_roles(os.getenv("NOTIFY_ROLES", "admin,receptionist")),
        telegram_bot_token=telegram_bot_token,
        telegram_chat_ids=telegram_chat_ids,
    )
