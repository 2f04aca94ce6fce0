"""Resolve which subscriptions care about an event for an owner."""

from __future__ import annotations

from typing import Literal

from finnotify.models import WebhookEvent, WebhookSubscription
from finnotify.store.ledger import LedgerStore

MatchStrategy = Literal["query", "memory"]


class SubscriptionMatcher:
    """Matches active subscriptions by event-set membership.

    ``query`` pushes the containment test into the store; ``memory`` loads
    the owner's active subscriptions and filters them here. Both return the
    same rows in id order with no duplicates.
    """

    def __init__(self, store: LedgerStore, strategy: MatchStrategy = "query") -> None:
        if strategy not in ("query", "memory"):
            raise ValueError(f"Unknown match strategy: {strategy}")
        self._store = store
        self._strategy = strategy

    @property
    def strategy(self) -> MatchStrategy:
        return self._strategy

    async def match(self, user_id: int, event: WebhookEvent) -> list[WebhookSubscription]:
        if self._strategy == "query":
            return await self._store.find_subscriptions_containing(
                user_id, {event, WebhookEvent.ALL}
            )

        subscriptions = await self._store.list_active_subscriptions(user_id)
        return [s for s in subscriptions if s.is_active and s.wants(event)]
