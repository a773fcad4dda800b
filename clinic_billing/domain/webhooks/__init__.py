"""Webhooks domain - outbound event subscriptions and the delivery queue"""

from .router import router

__all__ = ["router"]
