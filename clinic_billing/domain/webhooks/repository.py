"""Webhook repository - subscriptions and queue history"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models_webhook import WebhookQueueItem, WebhookSubscription


class WebhookRepository:
    """Repository for webhook database operations"""

    @staticmethod
    def get_subscription(db: Session, subscription_id: int) -> Optional[WebhookSubscription]:
        return db.query(WebhookSubscription).filter(WebhookSubscription.id == subscription_id).first()

    @staticmethod
    def list_subscriptions(db: Session, active_only: bool = False) -> list[WebhookSubscription]:
        query = db.query(WebhookSubscription)
        if active_only:
            query = query.filter(WebhookSubscription.is_active.is_(True))
        return query.order_by(WebhookSubscription.id).all()

    @staticmethod
    def create_subscription(db: Session, **fields) -> WebhookSubscription:
        subscription = WebhookSubscription(**fields)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def update_subscription(db: Session, subscription: WebhookSubscription, **fields) -> WebhookSubscription:
        for name, value in fields.items():
            setattr(subscription, name, value)
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def get_queue_item(db: Session, item_id: int) -> Optional[WebhookQueueItem]:
        return db.query(WebhookQueueItem).filter(WebhookQueueItem.id == item_id).first()

    @staticmethod
    def list_queue(
        db: Session,
        status: Optional[str] = None,
        event_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[WebhookQueueItem]:
        query = db.query(WebhookQueueItem)
        if status:
            query = query.filter(WebhookQueueItem.status == status)
        if event_type:
            query = query.filter(WebhookQueueItem.event_type == event_type)
        return query.order_by(WebhookQueueItem.id.desc()).offset(skip).limit(limit).all()
