"""Webhook domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_https_url
from .events import SUBSCRIBABLE_EVENT_TYPES


def _check_event_types(v: list[str]) -> list[str]:
    if not v:
        raise ValueError("At least one event type is required")
    unknown = [event for event in v if event not in SUBSCRIBABLE_EVENT_TYPES]
    if unknown:
        raise ValueError(f"Unknown event types: {', '.join(unknown)}")
    return list(dict.fromkeys(v))


class SubscriptionCreate(BaseModel):
    url: str
    event_types: list[str]
    headers: Optional[dict[str, str]] = None
    description: Optional[str] = None
    is_active: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return validate_https_url(v)

    @field_validator("event_types")
    @classmethod
    def validate_event_types(cls, v: list[str]) -> list[str]:
        return _check_event_types(v)


class SubscriptionUpdate(BaseModel):
    url: Optional[str] = None
    event_types: Optional[list[str]] = None
    headers: Optional[dict[str, str]] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        return validate_https_url(v) if v is not None else v

    @field_validator("event_types")
    @classmethod
    def validate_event_types(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _check_event_types(v) if v is not None else v


class SubscriptionResponse(BaseModel):
    id: int
    url: str
    event_types: list[str]
    headers: Optional[dict[str, str]] = None
    description: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QueueItemResponse(BaseModel):
    id: int
    event_type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    next_retry_at: Optional[datetime] = None
    subscription_id: Optional[int] = None
    delivered_subscription_ids: Optional[list[int]] = None
    last_status_code: Optional[int] = None
    response_preview: Optional[str] = None
    last_error: Optional[str] = None
    retry_of_id: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DrainResponse(BaseModel):
    released: int
    claimed: int
    delivered: int
    retrying: int
    failed: int
    errors: list[str] = []
