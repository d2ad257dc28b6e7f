from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from clinicsched.domain import (
    InventoryCheckResult,
    Notification,
    NotificationError,
    Priority,
    ProcedureBooking,
)
from clinicsched.slots import format_time_range

logger = logging.getLogger(__name__)

DEFAULT_STAFF_ROLES: tuple[str, ...] = ("admin", "receptionist")


class NotificationChannel(Protocol):
    async def notify(self, notification: Notification) -> None: ...


class LoggingNotificationChannel:
    """Channel that only writes notices to the log. Used when no transport is configured."""

    async def notify(self, notification: Notification) -> None:
        target = notification.user_id or ",".join(notification.roles) or "everyone"
        logger.info("[%s -> %s] %s: %s", notification.priority.value, target, notification.title, notification.message)


@dataclass
class DispatchReport:
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def procedure_scheduled_notice(
    booking: ProcedureBooking, *, patient_name: str, dentist_name: str, zone: str, roles: tuple[str, ...]
) -> Notification:
    when = format_time_range(booking.scheduled_date, booking.end, zone)
    return Notification(
        title="Procedure Scheduled",
        message=f"{booking.name} scheduled for {patient_name} with {dentist_name} on {when}",
        priority=Priority.MEDIUM,
        type="procedure",
        link="/dental/procedures",
        roles=roles,
    )


def dentist_assignment_notice(booking: ProcedureBooking, *, patient_name: str, zone: str) -> Notification:
    when = format_time_range(booking.scheduled_date, booking.end, zone)
    return Notification(
        title="New Procedure Assigned",
        message=f"You have been assigned {booking.name} for {patient_name} on {when}",
        priority=Priority.HIGH,
        type="procedure",
        link="/dental/procedures",
        user_id=booking.dentist_id,
    )


def inventory_outcome_notice(
    booking: ProcedureBooking, check_result: InventoryCheckResult, *, roles: tuple[str, ...]
) -> Notification:
    missing = [item.name for item in check_result.low_items]
    if check_result.has_low_stock:
        return Notification(
            title="Inventory Check: Items Missing",
            message=f"{booking.name} was scheduled with insufficient stock of: {', '.join(missing)}",
            priority=Priority.HIGH,
            type="inventory",
            link="/inventory",
            roles=roles,
        )
    return Notification(
        title="Inventory Check Passed",
        message=f"All inventory items for {booking.name} are available",
        priority=Priority.LOW,
        type="inventory",
        link="/inventory",
        roles=roles,
    )


class NotificationDispatcher:
    """Fan-out of the notices that follow a confirmed booking.

    Each notice is its own task with its own error boundary: a failure is
    logged and never re-raised, and never touches the booking.
    """

    def __init__(self, channel: NotificationChannel, *, zone: str, staff_roles: tuple[str, ...] = DEFAULT_STAFF_ROLES):
        self._channel = channel
        self._zone = zone
        self._staff_roles = staff_roles
        # Strong references so pending tasks are not garbage collected.
        self._pending: set[asyncio.Task[DispatchReport]] = set()

    def dispatch(
        self,
        booking: ProcedureBooking,
        check_result: InventoryCheckResult | None,
        *,
        patient_name: str,
        dentist_name: str,
    ) -> asyncio.Task[DispatchReport]:
        """Spawn the notices for ``booking`` and return the task that joins them.

        Must be called from a running event loop. The returned task never
        raises; awaiting it is optional and only useful for logging or tests.
        """
        notices: list[tuple[str, Notification]] = [
            (
                "scheduled",
                procedure_scheduled_notice(
                    booking,
                    patient_name=patient_name,
                    dentist_name=dentist_name,
                    zone=self._zone,
                    roles=self._staff_roles,
                ),
            ),
            ("dentist", dentist_assignment_notice(booking, patient_name=patient_name, zone=self._zone)),
        ]
        if check_result is not None:
            notices.append(("inventory", inventory_outcome_notice(booking, check_result, roles=self._staff_roles)))

        emissions = [asyncio.create_task(self._emit(label, notice)) for label, notice in notices]
        joined = asyncio.create_task(self._join(booking, emissions))
        self._pending.add(joined)
        joined.add_done_callback(self._pending.discard)
        return joined

    async def _emit(self, label: str, notification: Notification) -> tuple[str, bool]:
        try:
            await self._channel.notify(notification)
        except Exception as e:
            # Best-effort: one failed notice never affects the others or the booking.
            err = e if isinstance(e, NotificationError) else NotificationError(f"{type(e).__name__}: {e}")
            logger.warning("Failed to send %s notification %r (%s)", label, notification.title, err)
            return label, False
        return label, True

    async def _join(self, booking: ProcedureBooking, emissions: list[asyncio.Task[tuple[str, bool]]]) -> DispatchReport:
        report = DispatchReport()
        for label, ok in await asyncio.gather(*emissions):
            (report.delivered if ok else report.failed).append(label)

        logger.info(
            "Notifications for booking %s: delivered=%s failed=%s",
            booking.id,
            report.delivered,
            report.failed,
        )
        return report

    async def drain(self) -> None:
        """Wait for every dispatch still in flight (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
