from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Mapping

import httpx
from httpx import AsyncClient, Headers

from clinicsched.domain import (
    BookingStatus,
    CatalogItem,
    Dentist,
    FetchError,
    Notification,
    NotificationError,
    Patient,
    PersistenceError,
    ProcedureBooking,
)

logger = logging.getLogger(__name__)

PROCEDURES_PATH = "/dental/procedures"
INVENTORY_ITEMS_PATH = "/dental/procedures/inventory-items"
PATIENTS_PATH = "/patients"
STAFF_PATH = "/staff"
NOTIFICATIONS_PATH = "/notifications"
ROLE_NOTIFICATIONS_PATH = "/notifications/roles"

_LIST_KEYS = ("data", "items", "procedures", "patients", "staff", "results")


def normalize_list(payload: Any) -> list[dict[str, Any]]:
    """Map every list-ish response shape to a plain list of records.

    Collaborators answer with a bare array, ``{"data": [...]}``,
    ``{"items": [...]}`` or a resource-named key; nothing past this
    function ever sees the difference.
    """
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]

    if isinstance(payload, Mapping):
        for key in _LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return [row for row in value if isinstance(row, dict)]
            if isinstance(value, Mapping) and any(isinstance(value.get(k), list) for k in _LIST_KEYS):
                # {"data": {"items": [...]}}
                return normalize_list(value)

    raise FetchError(f"Unexpected list response shape: {type(payload).__name__}")


def normalize_record(payload: Any) -> dict[str, Any]:
    if isinstance(payload, Mapping):
        inner = payload.get("data")
        if isinstance(inner, Mapping):
            return dict(inner)
        return dict(payload)
    raise FetchError(f"Unexpected record response shape: {type(payload).__name__}")


class ClinicApiClient:
    """HTTP adapter for the clinic backend.

    Implements the booking store, clinic directory and inventory catalog
    interfaces. Read failures become FetchError and the booking write
    becomes PersistenceError.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def headers(self) -> Headers:
        headers = Headers({"Accept": "application/json"})
        if self._token:
            headers["Authorization"] = "Bearer " + self._token
        return headers

    def _client(self) -> AsyncClient:
        return AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )

    async def _get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
                response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise FetchError(f"GET {path} failed ({type(e).__name__}: {e})") from e

    async def _post(self, path: str, payload: Mapping[str, Any]) -> httpx.Response:
        async with self._client() as client:
            response = await client.post(path, json=dict(payload))
            response.raise_for_status()
        return response

    async def post_json(self, path: str, payload: Mapping[str, Any]) -> Any:
        response = await self._post(path, payload)
        return response.json() if response.content else None

    # Booking store

    async def list_bookings(
        self, start: dt.datetime, end: dt.datetime, status: BookingStatus | None = BookingStatus.SCHEDULED
    ) -> list[ProcedureBooking]:
        params: dict[str, Any] = {"startDate": start.isoformat(), "endDate": end.isoformat()}
        if status is not None:
            params["status"] = status.value
        rows = normalize_list(await self._get_json(PROCEDURES_PATH, params))
        return [ProcedureBooking.from_json(row) for row in rows]

    async def create_booking(self, booking: ProcedureBooking) -> ProcedureBooking:
        try:
            response = await self._post(PROCEDURES_PATH, booking.to_json())
        except httpx.HTTPError as e:
            raise PersistenceError(f"Failed to save procedure {booking.name!r} ({type(e).__name__}: {e})") from e

        # The write went through from here on; an unreadable body keeps what we sent.
        if not response.content:
            return booking
        try:
            return ProcedureBooking.from_json(normalize_record(response.json()))
        except (FetchError, ValueError) as e:
            logger.warning("Unreadable create response for %r (%s: %s)", booking.name, type(e).__name__, e)
            return booking

    # Clinic directory

    async def list_patients(self) -> list[Patient]:
        rows = normalize_list(await self._get_json(PATIENTS_PATH))
        return [Patient.from_json(row) for row in rows]

    async def list_dentists(self, role: str = "dentist") -> list[Dentist]:
        rows = normalize_list(await self._get_json(STAFF_PATH, {"role": role}))
        return [Dentist.from_json(row) for row in rows]

    # Inventory catalog

    async def common_items_for_category(self, category: str) -> list[CatalogItem]:
        rows = normalize_list(await self._get_json(INVENTORY_ITEMS_PATH, {"category": category}))
        return [CatalogItem.from_json(row) for row in rows]


class ApiNotificationChannel:
    """Posts notices to the clinic backend's notification endpoints."""

    def __init__(self, api: ClinicApiClient) -> None:
        self._api = api

    async def notify(self, notification: Notification) -> None:
        payload = notification.to_json()
        if notification.user_id is None and notification.roles:
            path = ROLE_NOTIFICATIONS_PATH
            payload["roles"] = list(notification.roles)
        else:
            path = NOTIFICATIONS_PATH

        try:
            await self._api.post_json(path, payload)
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"POST {path} failed ({type(e).__name__}: {e})") from e
