"""
Billing orchestrator

Turns a set of consultations into one gateway charge. The gateway is the
source of truth for money, so local writes only happen after the charge
exists, and every step has a fixed failure policy:

    auth, lock, load, resolve customer, create charge  -> fatal, nothing written
    disable gateway notifications                       -> warning
    link consultations to the charge                    -> partial (charge exists!)
    write the local invoice, queue the webhook event    -> warning

The orchestrator never raises billing errors to callers; it returns a
ChargeResult.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ...config import (
    BILLING_TIMEZONE,
    CHARGE_LOCK_TTL_SECONDS,
    DEFAULT_BILLING_TYPE,
    DUE_DATE_OFFSET_DAYS,
    EXTERNAL_REFERENCE_PREFIX,
)
from ...models import Consultation, User
from ...models_invoice import Invoice
from ...shared.validators import format_iso_date
from ..webhooks.events import INVOICE_CREATED
from ..webhooks.queue import enqueue_event
from .credentials import credentials_for
from .customer_resolver import TenantCustomerResolver
from .description import ConsultationLine, PatientIdentity, generate_charge_description
from .errors import (
    PARTIAL,
    BillingError,
    ChargeCreationError,
    ChargeInProgressError,
    ConsultationLinkError,
    ConsultationSelectionError,
    TenantResolutionError,
    UnauthorizedBillingError,
)
from .gateway import PaymentGatewayClient, PaymentRequest
from .repository import BillingRepository

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"

MAX_EXTERNAL_REFERENCE_LENGTH = 40


@dataclass
class ChargeResult:
    kind: str
    invoice: Optional[Invoice] = None
    external_payment_id: Optional[str] = None
    customer_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.kind == SUCCESS

    @classmethod
    def failure(cls, error: BillingError, warnings: Optional[list[str]] = None) -> "ChargeResult":
        return cls(kind=FAILED, error_code=error.code, error=error.message, warnings=warnings or [])


def make_external_reference(today: date, prefix: str = EXTERNAL_REFERENCE_PREFIX) -> str:
    """YYYYMMDD-<8 hex>, optionally prefixed"""
    reference = f"{prefix}{today.strftime('%Y%m%d')}-{secrets.token_hex(4)}"
    return reference[-MAX_EXTERNAL_REFERENCE_LENGTH:]


def total_value(consultations: list[Consultation]) -> Decimal:
    total = sum((Decimal(str(c.service_value or 0)) for c in consultations), Decimal("0"))
    return total.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def to_consultation_line(consultation: Consultation) -> ConsultationLine:
    professional = consultation.professional
    service_type = consultation.service_type
    return ConsultationLine(
        id=consultation.id,
        scheduled_at=consultation.scheduled_at,
        service_name=consultation.service_name,
        service_value=consultation.service_value,
        professional_id=consultation.professional_id,
        professional_name=professional.name if professional else "",
        professional_tax_id=professional.tax_id if professional else None,
        professional_license=professional.professional_license if professional else None,
        professional_label=professional.professional_label if professional else None,
        professional_gender=professional.gender if professional else None,
        service_label=service_type.description if service_type else None,
    )


def billing_today() -> date:
    return datetime.now(ZoneInfo(BILLING_TIMEZONE)).date()


class BillingOrchestrator:
    def __init__(
        self,
        gateway: Optional[PaymentGatewayClient] = None,
        resolver: Optional[TenantCustomerResolver] = None,
        today: Callable[[], date] = billing_today,
    ):
        self.gateway = gateway or PaymentGatewayClient()
        self.resolver = resolver or TenantCustomerResolver(self.gateway)
        self.today = today

    async def charge_consultations(
        self,
        db: Session,
        consultation_ids: list[int],
        responsible_party_id: int,
        tenant_id: int,
        user: Optional[User],
    ) -> ChargeResult:
        if user is None or not user.is_admin:
            logger.warning(f"⚠️ Billing denied for user {getattr(user, 'id', None)}: admin role required")
            return ChargeResult.failure(UnauthorizedBillingError("Apenas administradores podem gerar cobranças"))

        ids = list(dict.fromkeys(consultation_ids or []))
        if not ids:
            return ChargeResult.failure(ConsultationSelectionError("Nenhuma consulta selecionada"))

        lock = BillingRepository.acquire_charge_lock(
            db, ids, user.id, datetime.utcnow(), CHARGE_LOCK_TTL_SECONDS
        )
        if lock is None:
            logger.warning(f"⚠️ Charge already in progress for consultations {sorted(ids)}")
            return ChargeResult.failure(
                ChargeInProgressError("Já existe uma cobrança em andamento para estas consultas")
            )

        lock_key = lock.lock_key
        try:
            return await self._charge(db, ids, responsible_party_id, tenant_id, user)
        except BillingError as e:
            db.rollback()
            logger.error(f"❌ Charge failed ({e.code}): {e.message}")
            return ChargeResult.failure(e)
        finally:
            self._release_lock(db, lock_key)

    def _release_lock(self, db: Session, lock_key: str) -> None:
        try:
            BillingRepository.release_charge_lock(db, lock_key)
        except Exception as e:
            db.rollback()
            logger.error(f"❌ Failed to release charge lock {lock_key[:12]}: {e}")

    def _load_selection(self, db: Session, ids: list[int], tenant_id: int) -> list[Consultation]:
        consultations = BillingRepository.get_consultations(db, ids)

        missing = set(ids) - {c.id for c in consultations}
        if missing:
            raise ConsultationSelectionError(
                f"Consultas não encontradas: {sorted(missing)}", code="consultation_not_found"
            )
        if any(c.billing_company_id != tenant_id for c in consultations):
            raise ConsultationSelectionError("Consultas pertencem a outra empresa de faturamento")
        if len({c.patient_id for c in consultations}) > 1:
            raise ConsultationSelectionError("Todas as consultas devem ser do mesmo paciente")

        charged = sorted(c.id for c in consultations if c.payment_reference)
        if charged:
            raise ConsultationSelectionError(
                f"Consultas já cobradas: {charged}", code="already_charged"
            )
        return consultations

    async def _charge(
        self, db: Session, ids: list[int], responsible_party_id: int, tenant_id: int, user: User
    ) -> ChargeResult:
        warnings: list[str] = []

        # Step 1: selection + tenant credentials
        consultations = self._load_selection(db, ids, tenant_id)
        credentials = credentials_for(BillingRepository.get_billing_company(db, tenant_id))

        responsible = BillingRepository.get_person(db, responsible_party_id)
        if not responsible:
            raise TenantResolutionError(
                f"Responsável {responsible_party_id} não encontrado", code="responsible_not_found"
            )

        # Step 2: gateway customer in the tenant's own account
        customer = await self.resolver.resolve_for(credentials, responsible)

        # Step 3: the clinic sends its own notifications
        try:
            notifications = await self.gateway.disable_notifications(credentials, customer.customer_id)
            if not notifications.ok:
                warnings.append(f"Não foi possível desativar as notificações do gateway: {notifications.error}")
        except Exception as e:
            warnings.append(f"Não foi possível desativar as notificações do gateway: {e}")
        if warnings:
            logger.warning(f"⚠️ {warnings[-1]}")

        # Step 4: charge content
        today = self.today()
        due_date = today + timedelta(days=DUE_DATE_OFFSET_DAYS)
        patient = consultations[0].patient
        description = generate_charge_description(
            [to_consultation_line(c) for c in consultations],
            PatientIdentity(name=patient.name if patient else "", tax_id=patient.tax_id if patient else None),
        )
        total = total_value(consultations)
        external_reference = make_external_reference(today)

        # Step 5: the charge itself
        payment = await self.gateway.create_payment(
            credentials,
            PaymentRequest(
                customer_id=customer.customer_id,
                value=total,
                due_date=format_iso_date(due_date),
                description=description,
                external_reference=external_reference,
                billing_type=DEFAULT_BILLING_TYPE,
            ),
        )
        if not payment.ok:
            raise ChargeCreationError(f"Falha ao criar cobrança no gateway: {payment.error}")

        payment_id = payment.id
        logger.info(f"✅ Charge {payment_id} created for consultations {ids} (tenant {tenant_id}, R$ {total})")

        # Step 6: link consultations - from here on the charge exists
        try:
            linked = BillingRepository.link_consultations(db, ids, payment_id, datetime.utcnow())
            if linked != len(ids):
                raise ConsultationLinkError(
                    f"Apenas {linked} de {len(ids)} consultas puderam ser vinculadas à cobrança {payment_id}"
                )
            db.commit()
        except Exception as e:
            db.rollback()
            error = e if isinstance(e, ConsultationLinkError) else ConsultationLinkError(
                f"Falha ao vincular consultas à cobrança {payment_id}: {e}"
            )
            logger.error(f"❌ {error.message} - manual reconciliation required")
            return ChargeResult(
                kind=PARTIAL,
                external_payment_id=payment_id,
                customer_id=customer.customer_id,
                error_code=error.code,
                error=error.message,
                warnings=warnings,
            )

        # Step 7: local ledger
        invoice = None
        try:
            invoice = BillingRepository.create_invoice(
                db,
                ids,
                external_payment_id=payment_id,
                external_reference=external_reference,
                total_value=float(total),
                description=description,
                billing_type=DEFAULT_BILLING_TYPE,
                billing_company_id=tenant_id,
                responsible_party_id=responsible.id,
                patient_id=patient.id if patient else None,
                external_customer_id=customer.customer_id,
                status="pending",
                due_date=due_date,
                gateway_payload=payment.raw,
                created_by=user.id,
            )
        except Exception as e:
            db.rollback()
            warnings.append(f"Cobrança {payment_id} criada, mas a fatura local não foi registrada: {e}")
            logger.error(f"❌ Invoice insert failed for charge {payment_id}: {e}")

        # Step 8: notify subscribers
        try:
            enqueue_event(
                db,
                INVOICE_CREATED,
                {
                    "invoice_id": invoice.id if invoice else None,
                    "external_payment_id": payment_id,
                    "total_value": float(total),
                    "due_date": format_iso_date(due_date),
                    "consultation_ids": ids,
                    "responsible_party_id": responsible.id,
                    "patient_id": patient.id if patient else None,
                    "billing_company_id": tenant_id,
                },
            )
        except Exception as e:
            db.rollback()
            warnings.append(f"Evento de webhook não enfileirado: {e}")
            logger.warning(f"⚠️ Failed to enqueue {INVOICE_CREATED} for charge {payment_id}: {e}")

        return ChargeResult(
            kind=SUCCESS,
            invoice=invoice,
            external_payment_id=payment_id,
            customer_id=customer.customer_id,
            warnings=warnings,
        )
