from __future__ import annotations

import logging

import httpx

from clinicsched.domain import Notification, NotificationError, Priority

logger = logging.getLogger(__name__)

_PRIORITY_MARK = {
    Priority.LOW: "",
    Priority.MEDIUM: "[!] ",
    Priority.HIGH: "[!!] ",
}


async def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }

    async with httpx.AsyncClient(timeout=timeout_seconds) as client:
        r = await client.post(url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")


def format_notification(notification: Notification) -> str:
    lines = [f"{_PRIORITY_MARK[notification.priority]}{notification.title}", "", notification.message]
    if notification.user_id:
        lines.append(f"Recipient: {notification.user_id}")
    elif notification.roles:
        lines.append(f"Roles: {', '.join(notification.roles)}")
    return "\n".join(lines)


class TelegramNotificationChannel:
    """Delivers every notice to the configured staff chats.

    Telegram has no notion of clinic users or roles, so addressing is carried
    in the message text and all chats receive every notice.
    """

    def __init__(self, *, bot_token: str, chat_ids: tuple[str, ...], timeout_seconds: float = 20.0) -> None:
        self._bot_token = bot_token
        self._chat_ids = chat_ids
        self._timeout_seconds = timeout_seconds

    async def notify(self, notification: Notification) -> None:
        text = format_notification(notification)
        errors: list[tuple[str, Exception]] = []

        for chat_id in self._chat_ids:
            try:
                await send_telegram_message(
                    bot_token=self._bot_token,
                    chat_id=chat_id,
                    text=text,
                    timeout_seconds=self._timeout_seconds,
                )
            except Exception as e:
                # Best-effort: don't stop sending to other chat_ids.
                logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
                errors.append((chat_id, e))

        if errors:
            failed = ", ".join([cid for cid, _ in errors])
            raise NotificationError(f"Failed to send telegram message to some recipients: {failed}")
