"""
Webhook Delivery Background Worker Runner
Run this as a separate process: python run_webhook_worker.py
"""

import asyncio
import logging
import sys

from clinic_billing.workers.webhook_worker import run_webhook_worker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info("🚀 Starting Webhook Delivery Worker...")
    try:
        asyncio.run(run_webhook_worker())
    except KeyboardInterrupt:
        logger.info("👋 Webhook worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Webhook worker crashed: {e}")
        sys.exit(1)
