"""
Webhook Delivery Background Worker
Redis-free alternative to the ARQ cron: polls the queue on a fixed interval
"""

import asyncio
import logging
from typing import Optional

from ..config import WEBHOOK_DRAIN_BATCH_SIZE, WEBHOOK_POLL_INTERVAL_SECONDS
from ..database import SessionLocal
from ..domain.webhooks.dispatcher import DrainSummary, WebhookDispatcher

logger = logging.getLogger(__name__)


async def process_webhook_queue(dispatcher: Optional[WebhookDispatcher] = None) -> Optional[DrainSummary]:
    """
    Drain due webhook items once
    """
    db = SessionLocal()
    try:
        summary = await (dispatcher or WebhookDispatcher()).drain(db, limit=WEBHOOK_DRAIN_BATCH_SIZE)
        if not summary.claimed:
            logger.debug("✅ No webhook items due")
        return summary
    except Exception as e:
        logger.error(f"❌ Error in process_webhook_queue: {e}")
        db.rollback()
        return None
    finally:
        db.close()


async def run_webhook_worker(interval_seconds: int = WEBHOOK_POLL_INTERVAL_SECONDS):
    """
    Main worker loop
    """
    logger.info(f"🚀 Starting webhook worker (every {interval_seconds}s)...")
    dispatcher = WebhookDispatcher()

    while True:
        await process_webhook_queue(dispatcher)
        await asyncio.sleep(interval_seconds)
