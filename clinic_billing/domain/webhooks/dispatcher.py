"""
Webhook dispatcher - sends claimed queue items to subscriber endpoints
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from ...config import (
    WEBHOOK_DRAIN_BATCH_SIZE,
    WEBHOOK_RESPONSE_PREVIEW_CHARS,
    WEBHOOK_TIMEOUT_SECONDS,
    WEBHOOK_USER_AGENT,
)
from ...models_webhook import WebhookQueueItem, WebhookSubscription
from . import queue
from .events import WEBHOOK_TEST
from .repository import WebhookRepository

logger = logging.getLogger(__name__)


@dataclass
class DeliveryAttempt:
    subscription_id: int
    success: bool
    status_code: Optional[int] = None
    response_preview: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DrainSummary:
    released: int = 0
    claimed: int = 0
    delivered: int = 0
    retrying: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "released": self.released,
            "claimed": self.claimed,
            "delivered": self.delivered,
            "retrying": self.retrying,
            "failed": self.failed,
            "errors": list(self.errors),
        }


class WebhookDispatcher:
    def __init__(
        self,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = WEBHOOK_USER_AGENT,
    ):
        self.timeout = timeout
        self.transport = transport
        self.user_agent = user_agent

    def build_headers(self, subscription: WebhookSubscription, item: WebhookQueueItem) -> dict:
        """Defaults first, subscription's custom headers win"""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Webhook-Event": item.event_type,
            "X-Webhook-Id": str((item.payload or {}).get("webhook_id", "")),
        }
        for name, value in (subscription.headers or {}).items():
            headers[str(name)] = str(value)
        return headers

    async def deliver(self, subscription: WebhookSubscription, item: WebhookQueueItem) -> DeliveryAttempt:
        """POST the envelope to one subscriber. Never raises for HTTP problems."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    subscription.url, json=item.payload, headers=self.build_headers(subscription, item)
                )
        except httpx.TimeoutException:
            return DeliveryAttempt(
                subscription_id=subscription.id, success=False, error=f"Timeout after {self.timeout}s"
            )
        except httpx.HTTPError as e:
            return DeliveryAttempt(
                subscription_id=subscription.id, success=False, error=f"{type(e).__name__}: {e}"
            )

        preview = response.text[:WEBHOOK_RESPONSE_PREVIEW_CHARS]
        if response.is_success:
            return DeliveryAttempt(
                subscription_id=subscription.id,
                success=True,
                status_code=response.status_code,
                response_preview=preview,
            )
        return DeliveryAttempt(
            subscription_id=subscription.id,
            success=False,
            status_code=response.status_code,
            response_preview=preview,
            error=f"HTTP {response.status_code}",
        )

    def target_subscriptions(self, db: Session, item: WebhookQueueItem) -> list[WebhookSubscription]:
        """Targeted item -> that subscription; otherwise every active subscriber not yet served"""
        if item.subscription_id:
            subscription = WebhookRepository.get_subscription(db, item.subscription_id)
            return [subscription] if subscription else []

        already_delivered = set(item.delivered_subscription_ids or [])
        return [
            subscription
            for subscription in WebhookRepository.list_subscriptions(db, active_only=True)
            if subscription.subscribes_to(item.event_type) and subscription.id not in already_delivered
        ]

    async def dispatch_item(self, db: Session, item: WebhookQueueItem, now: Optional[datetime] = None) -> str:
        """Send a claimed item and record the outcome. Returns the item's new status."""
        now = now or datetime.utcnow()
        subscriptions = self.target_subscriptions(db, item)

        if not subscriptions:
            logger.info(f"📭 No subscribers for {item.event_type} (item {item.id}), marking delivered")
            queue.mark_delivered(db, item, now, attempted=False)
            return item.status

        attempts = [await self.deliver(subscription, item) for subscription in subscriptions]

        accepted = [attempt.subscription_id for attempt in attempts if attempt.success]
        if accepted:
            item.delivered_subscription_ids = list(item.delivered_subscription_ids or []) + accepted

        failures = [attempt for attempt in attempts if not attempt.success]
        if not failures:
            last = attempts[-1]
            queue.mark_delivered(db, item, now, status_code=last.status_code, response_preview=last.response_preview)
            logger.info(f"✅ Webhook item {item.id} ({item.event_type}) delivered to {len(attempts)} subscriber(s)")
            return item.status

        first = failures[0]
        error = "; ".join(f"subscription {f.subscription_id}: {f.error}" for f in failures)
        queue.mark_attempt_failed(
            db, item, error, now, status_code=first.status_code, response_preview=first.response_preview
        )
        return item.status

    async def drain(
        self, db: Session, now: Optional[datetime] = None, limit: int = WEBHOOK_DRAIN_BATCH_SIZE
    ) -> DrainSummary:
        """Release stale claims, claim due items and dispatch them one by one"""
        now = now or datetime.utcnow()
        summary = DrainSummary()

        summary.released = queue.release_stale_claims(db, now)
        items = queue.claim_due_items(db, now, limit)
        summary.claimed = len(items)

        for item in items:
            item_id = item.id
            try:
                status = await self.dispatch_item(db, item, now)
            except Exception as e:
                logger.error(f"❌ Unexpected error dispatching webhook item {item_id}: {e}")
                db.rollback()
                summary.errors.append(f"item {item_id}: {e}")
                try:
                    item = db.query(WebhookQueueItem).filter(WebhookQueueItem.id == item_id).first()
                    if item is None:
                        raise LookupError("queue item no longer exists")
                    status = queue.mark_attempt_failed(db, item, str(e), now).status
                except Exception as recovery_error:
                    logger.error(f"❌ Could not record failure for webhook item {item_id}: {recovery_error}")
                    db.rollback()
                    summary.errors.append(f"item {item_id}: {recovery_error}")
                    # Left in processing; release_stale_claims picks it up on a later drain
                    continue

            if status == queue.DELIVERED:
                summary.delivered += 1
            elif status == queue.FAILED:
                summary.failed += 1
            else:
                summary.retrying += 1

        if summary.claimed:
            logger.info(
                f"📤 Webhook drain: {summary.delivered} delivered, {summary.retrying} retrying, "
                f"{summary.failed} failed"
            )
        return summary

    async def send_test(self, db: Session, subscription_id: int, now: Optional[datetime] = None) -> WebhookQueueItem:
        """
        Send a webhook_test envelope right away and keep it in the queue history.

        Raises:
            WebhookQueueError: Unknown subscription (404)
        """
        subscription = WebhookRepository.get_subscription(db, subscription_id)
        if not subscription:
            raise queue.WebhookQueueError("Subscription not found", status_code=404)

        now = now or datetime.utcnow()
        envelope = queue.build_envelope(
            WEBHOOK_TEST,
            {"test": True, "webhook_id": subscription.id, "message": "Teste de webhook"},
            now,
        )
        item = WebhookQueueItem(
            event_type=WEBHOOK_TEST,
            payload=envelope,
            status=queue.PROCESSING,
            attempts=0,
            max_attempts=1,
            claimed_at=now,
            subscription_id=subscription.id,
            delivered_subscription_ids=[],
        )
        db.add(item)
        db.commit()
        db.refresh(item)

        await self.dispatch_item(db, item, now)
        db.refresh(item)
        return item
