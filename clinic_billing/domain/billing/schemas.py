"""Billing domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator


class ChargeRequest(BaseModel):
    """Schema for charging a set of consultations"""

    consultation_ids: list[int]
    responsible_party_id: int
    tenant_id: int  # billing company

    @field_validator("consultation_ids")
    @classmethod
    def validate_consultation_ids(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least one consultation is required")
        return v


class InvoiceResponse(BaseModel):
    id: int
    public_id: Optional[str] = None
    external_payment_id: str
    internal_number: Optional[str] = None
    external_reference: Optional[str] = None
    total_value: float
    description: Optional[str] = None
    billing_type: Optional[str] = None
    billing_company_id: int
    responsible_party_id: int
    patient_id: Optional[int] = None
    status: str
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    consultation_ids: list[int] = []
    service_invoice_id: Optional[str] = None
    service_invoice_status: Optional[str] = None
    service_invoice_link: Optional[str] = None
    service_invoice_error: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChargeResponse(BaseModel):
    kind: str  # success | partial | failed
    invoice: Optional[InvoiceResponse] = None
    external_payment_id: Optional[str] = None
    customer_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = []


class InvoiceUpdateRequest(BaseModel):
    """Schema for editing a pending charge"""

    due_date: Optional[date] = None
    description: Optional[str] = None
    regenerate_description: bool = False

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("description cannot be blank")
        return v


class CancelInvoiceRequest(BaseModel):
    reason: Optional[str] = None


class CashReceiptRequest(BaseModel):
    payment_date: Optional[date] = None
    value: Optional[Decimal] = None

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v <= 0:
            raise ValueError("value must be greater than zero")
        return v


class ServiceInvoiceIssueRequest(BaseModel):
    service_description: Optional[str] = None


class GatewayEventRequest(BaseModel):
    """Status notification posted by the payment gateway"""

    event: str
    payment: dict = {}


class StatusTotals(BaseModel):
    count: int
    total: float


class InvoiceMetricsResponse(BaseModel):
    by_status: dict[str, StatusTotals]
    total_count: int
    total_value: float
    due_next_7_days: StatusTotals
