# app/services/notifications/dispatcher.py
import asyncio
import logging
from typing import Iterable

from app.services.notifications.notifier import (
    EmailNotifier,
    LoggingEmailNotifier,
    NotificationKind,
    QuotationSnapshot,
    Recipient,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Sends workflow emails in the background.

    fire() must only be called after the triggering mutation is committed.
    A failed send is logged and dropped; it never reaches the workflow caller.
    """

    def __init__(self, notifier: EmailNotifier | None = None):
        self.notifier = notifier or LoggingEmailNotifier()
        self._pending: set[asyncio.Task] = set()

    def fire(
        self,
        kind: NotificationKind,
        recipients: Iterable[Recipient],
        quotation: QuotationSnapshot,
        **payload,
    ) -> None:
        loop = asyncio.get_running_loop()
        seen = set()
        for recipient in recipients:
            if recipient.email in seen:
                continue
            seen.add(recipient.email)
            task = loop.create_task(self._send(kind, recipient, quotation, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _send(self, kind, recipient, quotation, payload) -> None:
        send = getattr(self.notifier, kind.value)
        try:
            delivered = await send(recipient, quotation, **payload)
        except Exception:
            logger.exception(
                "Error sending notification",
                extra={"kind": kind.value, "to": recipient.email, "quotation_id": quotation.id},
            )
            return

        if not delivered:
            logger.error(
                "Notification not delivered",
                extra={"kind": kind.value, "to": recipient.email, "quotation_id": quotation.id},
            )

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


_dispatcher = NotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher) -> NotificationDispatcher:
    global _dispatcher
    previous, _dispatcher = _dispatcher, dispatcher
    return previous
