"""Signed outbound webhook delivery with a consecutive-failure breaker."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from finnotify.config import WebhooksConfig
from finnotify.errors import NotFoundError
from finnotify.models import WebhookEvent, WebhookSubscription
from finnotify.store.ledger import LedgerStore
from finnotify.utils.logging import get_logger
from finnotify.webhooks.matcher import SubscriptionMatcher
from finnotify.webhooks.signer import build_envelope, canonical_json, generate_secret, sign

log = get_logger(__name__)

TEST_EVENT = "webhook.test"


@dataclass
class DeliveryResult:
    subscription_id: int
    success: bool
    status_code: int | None = None
    error: str | None = None


class WebhookDispatcher:
    """Delivers events to matching subscriptions.

    Delivery failures never propagate: they are recorded on the subscription
    and reported in the returned ``DeliveryResult`` list.
    """

    def __init__(
        self,
        config: WebhooksConfig,
        store: LedgerStore,
        matcher: SubscriptionMatcher | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._matcher = matcher or SubscriptionMatcher(store, config.match_strategy)
        self._client = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": self._config.user_agent},
                follow_redirects=False,
            )
            self._owns_client = True

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def trigger(
        self, event: WebhookEvent, user_id: int, payload: dict[str, Any]
    ) -> list[DeliveryResult]:
        """Deliver ``event`` to every matching subscription concurrently."""
        subscriptions = await self._matcher.match(user_id, event)
        if not subscriptions:
            return []

        log.info(
            "webhooks_triggering",
            event_type=event.value,
            user_id=user_id,
            count=len(subscriptions),
        )
        created_at = datetime.now(timezone.utc)
        results = await asyncio.gather(
            *(self.dispatch(s, event, payload, created_at=created_at) for s in subscriptions),
            return_exceptions=True,
        )

        delivered: list[DeliveryResult] = []
        for subscription, result in zip(subscriptions, results):
            if isinstance(result, BaseException):
                log.error(
                    "webhook_dispatch_error",
                    subscription_id=subscription.id,
                    error=repr(result),
                )
                delivered.append(
                    DeliveryResult(subscription.id, success=False, error=repr(result))
                )
            else:
                delivered.append(result)
        return delivered

    async def dispatch(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
        payload: dict[str, Any],
        created_at: datetime | None = None,
    ) -> DeliveryResult:
        created_at = created_at or datetime.now(timezone.utc)
        envelope = build_envelope(event.value, created_at, payload)
        result = await self._post(
            subscription.url,
            subscription.secret,
            event.value,
            envelope,
            timeout=self._config.timeout,
        )
        result.subscription_id = subscription.id

        if result.success:
            await self._store.record_delivery_success(subscription.id, datetime.now(timezone.utc))
            log.info("webhook_delivered", subscription_id=subscription.id, url=subscription.url)
            return result

        fail_count, disabled = await self._store.record_delivery_failure(
            subscription.id, self._config.failure_threshold
        )
        log.error(
            "webhook_delivery_failed",
            subscription_id=subscription.id,
            url=subscription.url,
            fail_count=fail_count,
            status_code=result.status_code,
            error=result.error,
        )
        if disabled:
            log.warning(
                "webhook_disabled",
                subscription_id=subscription.id,
                fail_count=fail_count,
            )
        return result

    async def test_dispatch(self, url: str, secret: str) -> bool:
        """Send a synthetic signed event. Mutates no subscription state."""
        envelope = build_envelope(
            TEST_EVENT,
            datetime.now(timezone.utc),
            {"message": "This is a test webhook from your financial app"},
        )
        result = await self._post(
            url, secret, TEST_EVENT, envelope, timeout=self._config.test_timeout
        )
        if not result.success:
            log.error("webhook_test_failed", url=url, error=result.error)
        return result.success

    async def _post(
        self,
        url: str,
        secret: str,
        event_name: str,
        envelope: dict[str, Any],
        *,
        timeout: float,
    ) -> DeliveryResult:
        assert self._client is not None, "dispatcher not started"
        body = canonical_json(envelope)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign(body, secret),
            "X-Webhook-Event": event_name,
        }
        try:
            response = await self._client.post(url, content=body, headers=headers, timeout=timeout)
        except httpx.HTTPError as exc:
            return DeliveryResult(0, success=False, error=f"{type(exc).__name__}: {exc}")

        if 200 <= response.status_code < 300:
            return DeliveryResult(0, success=True, status_code=response.status_code)
        return DeliveryResult(
            0,
            success=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}: {response.text[:200]}",
        )

    # ------------------------------------------------------------------
    # Owner actions
    # ------------------------------------------------------------------

    async def rotate_secret(self, subscription_id: int, user_id: int) -> WebhookSubscription:
        """Replace the secret immediately; the old one stops verifying at once."""
        updated = await self._store.update_subscription(
            subscription_id, user_id, secret=generate_secret()
        )
        if updated is None:
            raise NotFoundError("Webhook", subscription_id)
        log.info("webhook_secret_rotated", subscription_id=subscription_id)
        return updated

    async def reactivate(self, subscription_id: int, user_id: int) -> WebhookSubscription:
        updated = await self._store.update_subscription(
            subscription_id, user_id, is_active=True, reset_failures=True
        )
        if updated is None:
            raise NotFoundError("Webhook", subscription_id)
        log.info("webhook_reactivated", subscription_id=subscription_id)
        return updated

    async def test_subscription(self, subscription_id: int, user_id: int) -> bool:
        subscription = await self._store.get_subscription(subscription_id, user_id)
        if subscription is None:
            raise NotFoundError("Webhook", subscription_id)
        return await self.test_dispatch(subscription.url, subscription.secret)
