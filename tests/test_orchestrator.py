"""Tests for multi-channel fan-out."""

from finnotify.config import EmailConfig
from finnotify.models import NotificationEvent, WebhookEvent
from finnotify.notify.email import EmailNotifier
from finnotify.notify.orchestrator import NotificationOrchestrator

from conftest import FakeSocket


class ExplodingDispatcher:
    async def trigger(self, event, user_id, payload):
        raise RuntimeError("dispatcher down")


def budget_event(user_id):
    return NotificationEvent(
        type=WebhookEvent.BUDGET_ALERT,
        user_id=user_id,
        payload={"budget_name": "Groceries", "overage": -20.0, "status": "warning"},
    )


class TestFanOut:
    async def test_all_channels(self, store, orchestrator, realtime, email, receiver, user):
        await store.create_subscription(
            user.id, "https://hooks.example/a", "s", {WebhookEvent.BUDGET_ALERT}
        )
        socket = FakeSocket()
        realtime.attach(user.id, socket)

        outcome = await orchestrator.fan_out(budget_event(user.id))

        assert outcome == {"webhook": True, "realtime": True, "email": True}
        assert len(receiver.requests) == 1
        assert socket.sent[0]["event"] == "budget:alert"
        assert email.outbox[0].to == "alice@example.com"
        assert "Groceries" in email.outbox[0].subject

    async def test_push_skipped_without_connection(self, orchestrator, realtime, user):
        outcome = await orchestrator.fan_out(budget_event(user.id))
        assert outcome["realtime"] is True

    async def test_channel_failure_isolated(self, store, realtime, user):
        email = EmailNotifier(EmailConfig())
        orchestrator = NotificationOrchestrator(store, ExplodingDispatcher(), realtime, email)
        socket = FakeSocket()
        realtime.attach(user.id, socket)

        outcome = await orchestrator.fan_out(budget_event(user.id))

        assert outcome == {"webhook": False, "realtime": True, "email": True}
        assert len(socket.sent) == 1
        assert len(email.outbox) == 1

    async def test_raising_push_and_email_reported(
        self, store, dispatcher, realtime, receiver, user
    ):
        class BadSocket:
            async def send_json(self, data):
                raise ValueError("unserializable")

        class BrokenEmail(EmailNotifier):
            async def send_budget_alert(self, *args, **kwargs):
                raise RuntimeError("smtp down")

        await store.create_subscription(
            user.id, "https://hooks.example/a", "s", {WebhookEvent.BUDGET_ALERT}
        )
        realtime.attach(user.id, BadSocket())
        orchestrator = NotificationOrchestrator(
            store, dispatcher, realtime, BrokenEmail(EmailConfig())
        )

        outcome = await orchestrator.fan_out(budget_event(user.id))

        assert outcome == {"webhook": True, "realtime": False, "email": False}
        assert len(receiver.requests) == 1

    async def test_goal_achieved_email(self, orchestrator, email, user):
        await orchestrator.fan_out(
            NotificationEvent(
                type=WebhookEvent.GOAL_ACHIEVED,
                user_id=user.id,
                payload={"goal_id": 1, "goal_name": "Car", "current_amount": 1000.0},
            )
        )
        assert email.outbox[0].subject == "Goal achieved: Car"
        assert "1000.00" in email.outbox[0].body

    async def test_transaction_events_skip_email(self, orchestrator, email, user):
        await orchestrator.fan_out(
            NotificationEvent(type=WebhookEvent.TRANSACTION_CREATED, user_id=user.id, payload={})
        )
        assert email.outbox == []

    async def test_disabled_email(self, store, dispatcher, realtime, user):
        email = EmailNotifier(EmailConfig(enabled=False))
        orchestrator = NotificationOrchestrator(store, dispatcher, realtime, email)
        await orchestrator.fan_out(budget_event(user.id))
        assert email.outbox == []
