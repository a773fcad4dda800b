"""
Webhook delivery queue - persistence side

Items move pending -> processing -> delivered | pending (retry) | failed.
Claiming is an optimistic UPDATE guarded on status='pending', so several
drains can run at once without sending the same item twice.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ...config import (
    WEBHOOK_CLAIM_TIMEOUT_SECONDS,
    WEBHOOK_MAX_ATTEMPTS,
    WEBHOOK_RETRY_BASE_SECONDS,
    WEBHOOK_RETRY_MAX_SECONDS,
)
from ...models_webhook import WebhookQueueItem
from .events import WEBHOOK_FAILED, WEBHOOK_TEST

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
DELIVERED = "delivered"
FAILED = "failed"

MAX_ERROR_CHARS = 1000


class WebhookQueueError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code


def build_envelope(event_type: str, data: Any, now: Optional[datetime] = None) -> dict:
    """{tipo, timestamp, data, webhook_id} - the body every subscriber receives"""
    timestamp = (now or datetime.utcnow()).isoformat(timespec="seconds") + "Z"
    return {
        "tipo": event_type,
        "timestamp": timestamp,
        "data": data,
        "webhook_id": str(uuid.uuid4()),
    }


def enqueue_event(
    db: Session,
    event_type: str,
    data: Any,
    max_attempts: int = WEBHOOK_MAX_ATTEMPTS,
    now: Optional[datetime] = None,
) -> WebhookQueueItem:
    """Append a pending item, due immediately"""
    now = now or datetime.utcnow()
    item = WebhookQueueItem(
        event_type=event_type,
        payload=build_envelope(event_type, data, now),
        status=PENDING,
        attempts=0,
        max_attempts=max_attempts,
        next_retry_at=now,
        delivered_subscription_ids=[],
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    logger.info(f"📬 Webhook event queued: {event_type} (item {item.id})")
    return item


def retry_delay_seconds(attempts: int) -> int:
    """Exponential backoff: base, 2x base, 4x base ... capped"""
    exponent = max(attempts - 1, 0)
    return min(WEBHOOK_RETRY_BASE_SECONDS * (2**exponent), WEBHOOK_RETRY_MAX_SECONDS)


def release_stale_claims(
    db: Session, now: datetime, timeout_seconds: int = WEBHOOK_CLAIM_TIMEOUT_SECONDS
) -> int:
    """Put items stuck in processing (crashed worker) back in the pending pool"""
    cutoff = now - timedelta(seconds=timeout_seconds)
    released = (
        db.query(WebhookQueueItem)
        .filter(WebhookQueueItem.status == PROCESSING, WebhookQueueItem.claimed_at < cutoff)
        .update(
            {WebhookQueueItem.status: PENDING, WebhookQueueItem.claimed_at: None},
            synchronize_session=False,
        )
    )
    db.commit()
    if released:
        logger.warning(f"⚠️ Released {released} stale webhook claim(s)")
    return released


def claim_item(db: Session, item_id: int, now: datetime) -> bool:
    """True only for the caller whose UPDATE actually flipped the row"""
    updated = (
        db.query(WebhookQueueItem)
        .filter(WebhookQueueItem.id == item_id, WebhookQueueItem.status == PENDING)
        .update(
            {WebhookQueueItem.status: PROCESSING, WebhookQueueItem.claimed_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def claim_due_items(db: Session, now: datetime, limit: int) -> list[WebhookQueueItem]:
    candidate_ids = [
        item_id
        for (item_id,) in db.query(WebhookQueueItem.id)
        .filter(
            WebhookQueueItem.status == PENDING,
            or_(WebhookQueueItem.next_retry_at.is_(None), WebhookQueueItem.next_retry_at <= now),
        )
        .order_by(WebhookQueueItem.next_retry_at, WebhookQueueItem.id)
        .limit(limit)
        .all()
    ]

    claimed = [item_id for item_id in candidate_ids if claim_item(db, item_id, now)]
    if not claimed:
        return []

    return db.query(WebhookQueueItem).filter(WebhookQueueItem.id.in_(claimed)).order_by(WebhookQueueItem.id).all()


def mark_delivered(
    db: Session,
    item: WebhookQueueItem,
    now: datetime,
    status_code: Optional[int] = None,
    response_preview: Optional[str] = None,
    attempted: bool = True,
) -> WebhookQueueItem:
    if attempted:
        item.attempts = (item.attempts or 0) + 1
    item.status = DELIVERED
    item.last_status_code = status_code
    item.response_preview = response_preview
    item.last_error = None
    item.next_retry_at = None
    item.processed_at = now
    db.commit()
    return item


def mark_attempt_failed(
    db: Session,
    item: WebhookQueueItem,
    error: str,
    now: datetime,
    status_code: Optional[int] = None,
    response_preview: Optional[str] = None,
) -> WebhookQueueItem:
    """Count the attempt; schedule the next one or give up"""
    item.attempts = (item.attempts or 0) + 1
    item.last_error = (error or "")[:MAX_ERROR_CHARS]
    item.last_status_code = status_code
    item.response_preview = response_preview
    item.claimed_at = None

    if item.attempts >= item.max_attempts:
        item.status = FAILED
        item.next_retry_at = None
        item.processed_at = now
        logger.error(f"❌ Webhook item {item.id} ({item.event_type}) failed after {item.attempts} attempt(s)")
    else:
        item.status = PENDING
        item.next_retry_at = now + timedelta(seconds=retry_delay_seconds(item.attempts))
        logger.warning(
            f"⚠️ Webhook item {item.id} attempt {item.attempts}/{item.max_attempts} failed, "
            f"next retry at {item.next_retry_at.isoformat()}"
        )

    db.commit()

    if item.status == FAILED and item.event_type not in (WEBHOOK_FAILED, WEBHOOK_TEST):
        enqueue_event(
            db,
            WEBHOOK_FAILED,
            {
                "queue_item_id": item.id,
                "event_type": item.event_type,
                "attempts": item.attempts,
                "last_error": item.last_error,
                "last_status_code": item.last_status_code,
            },
            now=now,
        )

    return item


def retry_item(db: Session, item_id: int, now: Optional[datetime] = None) -> WebhookQueueItem:
    """
    Manually re-enqueue a finished item as a fresh pending one.

    Raises:
        WebhookQueueError: Unknown item (404) or item still in flight (409)
    """
    original = db.query(WebhookQueueItem).filter(WebhookQueueItem.id == item_id).first()
    if not original:
        raise WebhookQueueError("Queue item not found", status_code=404)
    if original.status not in (DELIVERED, FAILED):
        raise WebhookQueueError(
            f"Only delivered or failed items can be retried (current status: {original.status})",
            status_code=409,
        )

    now = now or datetime.utcnow()
    retry = WebhookQueueItem(
        event_type=original.event_type,
        payload=original.payload,
        status=PENDING,
        attempts=0,
        max_attempts=max(original.max_attempts or WEBHOOK_MAX_ATTEMPTS, 1),
        next_retry_at=now,
        subscription_id=original.subscription_id,
        delivered_subscription_ids=[],
        retry_of_id=original.id,
    )
    db.add(retry)
    db.commit()
    db.refresh(retry)
    logger.info(f"🔁 Webhook item {original.id} re-enqueued as {retry.id}")
    return retry
