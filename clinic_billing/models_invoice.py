"""
Invoice ledger and charge lock models
"""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base
from .models import generate_public_id


class Invoice(Base):
    """Local mirror of a gateway charge. Written only after the charge exists."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, nullable=True, index=True, default=generate_public_id)

    # Gateway charge id (e.g. pay_xyz) - source of truth lives at the gateway
    external_payment_id = Column(String(255), unique=True, nullable=False, index=True)
    internal_number = Column(String(50), unique=True, nullable=True, index=True)
    external_reference = Column(String(64), nullable=True)

    total_value = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    billing_type = Column(String(20), default="PIX")

    billing_company_id = Column(Integer, ForeignKey("billing_companies.id"), nullable=False)
    responsible_party_id = Column(Integer, ForeignKey("people.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("people.id"), nullable=True)
    external_customer_id = Column(String(255), nullable=True)

    # pending, paid, overdue, cancelled, refunded
    status = Column(String(50), default="pending", nullable=False, index=True)
    due_date = Column(Date, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    # Ordered list of billed consultation ids
    consultation_ids = Column(JSON, default=list)
    # Raw gateway snapshot kept for audit/reconciliation
    gateway_payload = Column(JSON, nullable=True)

    # Service invoice (NFe): syncing, issued, error
    service_invoice_id = Column(String(255), nullable=True)
    service_invoice_status = Column(String(50), nullable=True)
    service_invoice_link = Column(String(500), nullable=True)
    service_invoice_error = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Audit
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    consultations = relationship("Consultation", back_populates="invoice")
    billing_company = relationship("BillingCompany")
    responsible_party = relationship("Person", foreign_keys=[responsible_party_id])
    patient = relationship("Person", foreign_keys=[patient_id])


class ChargeLock(Base):
    """In-flight guard: one live row per consultation set being charged"""

    __tablename__ = "charge_locks"

    id = Column(Integer, primary_key=True, index=True)
    lock_key = Column(String(64), unique=True, nullable=False, index=True)
    consultation_ids = Column(JSON, default=list)
    acquired_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    acquired_at = Column(DateTime, server_default=func.now())
    expires_at = Column(DateTime, nullable=False)
