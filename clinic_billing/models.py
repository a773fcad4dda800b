import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class User(Base):
    """Staff account. Only the admin role may bill or manage invoices."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(50), default="secretary", nullable=False)  # admin, secretary, professional
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Person(Base):
    """Patients, responsible parties and professionals share one table"""

    __tablename__ = "people"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(String(36), unique=True, index=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    tax_id = Column(String(20), nullable=True, index=True)  # CPF/CNPJ, digits or formatted
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)

    # Address (only what the gateway customer needs)
    postal_code = Column(String(20), nullable=True)
    address_number = Column(String(20), nullable=True)
    address_complement = Column(String(255), nullable=True)

    # Professional data, used in charge descriptions
    professional_license = Column(String(100), nullable=True)  # e.g. "CREFITO-8 123456-F"
    professional_label = Column(String(100), nullable=True)  # e.g. "fisioterapeuta"
    gender = Column(String(1), nullable=True)  # F, M

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class BillingCompany(Base):
    """Tenant: a company with its own payment gateway account"""

    __tablename__ = "billing_companies"

    id = Column(Integer, primary_key=True, index=True)
    legal_name = Column(String(255), nullable=False)
    trade_name = Column(String(255), nullable=True)
    tax_id = Column(String(20), nullable=True)

    # Fernet-encrypted gateway API token (see domain.billing.credentials)
    gateway_api_token = Column(Text, nullable=True)
    gateway_base_url = Column(String(255), nullable=True)  # Override for sandbox accounts
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ServiceType(Base):
    __tablename__ = "service_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    # Canonical label used in charge descriptions, e.g. "sessão de fisioterapia respiratória"
    description = Column(String(255), nullable=True)
    default_value = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


class Consultation(Base):
    """Scheduled appointment. Billing only ever touches the payment columns."""

    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True, index=True)
    scheduled_at = Column(DateTime, nullable=False)
    service_type_id = Column(Integer, ForeignKey("service_types.id"), nullable=True)
    service_name = Column(String(255), nullable=False)
    service_value = Column(Float, nullable=False, default=0)

    professional_id = Column(Integer, ForeignKey("people.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("people.id"), nullable=False)
    billing_company_id = Column(Integer, ForeignKey("billing_companies.id"), nullable=False)

    # Set exactly once, after the external charge succeeds
    payment_reference = Column(String(255), nullable=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    charged_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    service_type = relationship("ServiceType")
    professional = relationship("Person", foreign_keys=[professional_id])
    patient = relationship("Person", foreign_keys=[patient_id])
    billing_company = relationship("BillingCompany")
    invoice = relationship("Invoice", back_populates="consultations")
