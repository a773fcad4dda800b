"""
Outbound webhook subscription and delivery queue models
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class WebhookSubscription(Base):
    __tablename__ = "webhook_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    url = Column(String(500), nullable=False)  # https only
    event_types = Column(JSON, default=list, nullable=False)
    headers = Column(JSON, nullable=True)  # Custom headers, e.g. Authorization
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in (self.event_types or [])


class WebhookQueueItem(Base):
    """
    One outbound event. Status machine:
    pending -> processing -> delivered | pending (retry) | failed
    """

    __tablename__ = "webhook_queue"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False)  # {tipo, timestamp, data, webhook_id}

    status = Column(String(20), default="pending", nullable=False)  # pending, processing, delivered, failed
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    next_retry_at = Column(DateTime, nullable=True)
    claimed_at = Column(DateTime, nullable=True)

    # Targeted sends (test send) go to a single subscription
    subscription_id = Column(Integer, ForeignKey("webhook_subscriptions.id"), nullable=True)
    # Subscriptions that already accepted this item, skipped on retries
    delivered_subscription_ids = Column(JSON, default=list)

    last_status_code = Column(Integer, nullable=True)
    response_preview = Column(Text, nullable=True)
    last_error = Column(Text, nullable=True)

    retry_of_id = Column(Integer, ForeignKey("webhook_queue.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    subscription = relationship("WebhookSubscription")

    __table_args__ = (Index("ix_webhook_queue_status_next_retry", "status", "next_retry_at"),)
