"""Fan a detected event out through webhooks, realtime push and email."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from finnotify.models import NotificationEvent, WebhookEvent
from finnotify.notify.email import EmailNotifier
from finnotify.realtime.channel import PushEvent, RealtimeChannel
from finnotify.store.ledger import LedgerStore
from finnotify.utils.logging import get_logger
from finnotify.webhooks.dispatcher import WebhookDispatcher

log = get_logger(__name__)

_PUSH_EVENTS: dict[WebhookEvent, PushEvent] = {
    WebhookEvent.TRANSACTION_CREATED: PushEvent.TRANSACTION_CREATED,
    WebhookEvent.TRANSACTION_UPDATED: PushEvent.TRANSACTION_UPDATED,
    WebhookEvent.TRANSACTION_DELETED: PushEvent.TRANSACTION_DELETED,
    WebhookEvent.BUDGET_ALERT: PushEvent.BUDGET_ALERT,
    WebhookEvent.GOAL_ACHIEVED: PushEvent.GOAL_ACHIEVED,
}


class NotificationOrchestrator:
    """Best-effort multi-channel delivery.

    Callers must commit their own state before ``fan_out``; nothing here
    raises back into them.
    """

    def __init__(
        self,
        store: LedgerStore,
        dispatcher: WebhookDispatcher,
        realtime: RealtimeChannel,
        email: EmailNotifier,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._realtime = realtime
        self._email = email

    async def fan_out(self, event: NotificationEvent) -> dict[str, bool]:
        """Run every channel independently; returns per-channel success."""
        channels = ("webhook", "realtime", "email")
        outcomes = await asyncio.gather(
            self._guard("webhook", event, self._webhook(event)),
            self._guard("realtime", event, self._push(event)),
            self._guard("email", event, self._send_email(event)),
        )
        return dict(zip(channels, outcomes))

    async def _guard(self, channel: str, event: NotificationEvent, work: Awaitable[Any]) -> bool:
        try:
            await work
        except Exception:
            log.exception(
                "notification_channel_failed",
                channel=channel,
                event_type=event.type.value,
                user_id=event.user_id,
            )
            return False
        return True

    async def _webhook(self, event: NotificationEvent) -> None:
        await self._dispatcher.trigger(event.type, event.user_id, event.payload)

    async def _push(self, event: NotificationEvent) -> None:
        push_event = _PUSH_EVENTS.get(event.type)
        if push_event is None or not self._realtime.is_connected(event.user_id):
            return
        await self._realtime.emit(event.user_id, push_event, event.payload)

    async def _send_email(self, event: NotificationEvent) -> None:
        if event.type not in (WebhookEvent.BUDGET_ALERT, WebhookEvent.GOAL_ACHIEVED):
            return
        user = await self._store.get_user(event.user_id)
        if user is None or not user.email:
            return

        data = event.payload
        if event.type is WebhookEvent.BUDGET_ALERT:
            await self._email.send_budget_alert(
                user.id, user.email, data["budget_name"], data["overage"]
            )
        else:
            await self._email.send_goal_achieved(
                user.id, user.email, data["goal_name"], data["current_amount"]
            )
