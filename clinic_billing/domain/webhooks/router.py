"""Webhooks router - subscription registry and delivery queue"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_admin
from ...database import get_db
from ...models import User
from . import queue
from .dispatcher import WebhookDispatcher
from .repository import WebhookRepository
from .schemas import (
    DrainResponse,
    QueueItemResponse,
    SubscriptionCreate,
    SubscriptionResponse,
    SubscriptionUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def get_dispatcher() -> WebhookDispatcher:
    """Dependency injection for WebhookDispatcher"""
    return WebhookDispatcher()


def _get_subscription_or_404(db: Session, subscription_id: int):
    subscription = WebhookRepository.get_subscription(db, subscription_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return subscription


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
async def list_subscriptions(
    active_only: bool = Query(False),
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return WebhookRepository.list_subscriptions(db, active_only=active_only)


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=201)
async def create_subscription(
    body: SubscriptionCreate,
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    subscription = WebhookRepository.create_subscription(db, **body.model_dump())
    logger.info(f"✅ Webhook subscription {subscription.id} created for {body.event_types}")
    return subscription


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: int,
    body: SubscriptionUpdate,
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    subscription = _get_subscription_or_404(db, subscription_id)
    return WebhookRepository.update_subscription(db, subscription, **body.model_dump(exclude_unset=True))


@router.delete("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def deactivate_subscription(
    subscription_id: int,
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Soft delete: queue history keeps pointing at the subscription"""
    subscription = _get_subscription_or_404(db, subscription_id)
    logger.info(f"🗑️ Webhook subscription {subscription_id} deactivated by {user.email}")
    return WebhookRepository.update_subscription(db, subscription, is_active=False)


@router.post("/subscriptions/{subscription_id}/test", response_model=QueueItemResponse)
async def send_test_webhook(
    subscription_id: int,
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Send a webhook_test event right away and return the recorded attempt"""
    try:
        return await dispatcher.send_test(db, subscription_id)
    except queue.WebhookQueueError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


# ============================================================================
# QUEUE
# ============================================================================


@router.get("/queue", response_model=list[QueueItemResponse])
async def list_queue(
    status: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return WebhookRepository.list_queue(db, status=status, event_type=event_type, skip=skip, limit=limit)


@router.post("/queue/{item_id}/retry", response_model=QueueItemResponse, status_code=201)
async def retry_queue_item(
    item_id: int,
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        return queue.retry_item(db, item_id)
    except queue.WebhookQueueError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e


@router.post("/queue/drain", response_model=DrainResponse)
async def drain_queue(
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_admin),
    db: Session = Depends(get_db),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Process due items now instead of waiting for the worker"""
    summary = await dispatcher.drain(db, limit=limit)
    return summary.as_dict()
