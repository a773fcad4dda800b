"""Invoice service - lifecycle operations on charges that already exist"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...config import (
    SERVICE_INVOICE_DEFAULT_DESCRIPTION,
    SERVICE_INVOICE_ISS_RATE,
    SERVICE_INVOICE_MUNICIPAL_CODE,
    SERVICE_INVOICE_MUNICIPAL_NAME,
    SERVICE_INVOICE_OBSERVATIONS,
)
from ...models import User
from ...models_invoice import Invoice
from ...shared.validators import format_iso_date
from ..webhooks.events import INVOICE_CANCELLED, INVOICE_PAID
from ..webhooks.queue import enqueue_event
from .credentials import credentials_for
from .description import PatientIdentity, generate_charge_description
from .errors import (
    GatewayOperationError,
    InvoiceNotFoundError,
    InvoiceOperationError,
    InvoicePermissionError,
    InvoiceStateError,
    TenantResolutionError,
)
from .gateway import CashReceipt, GatewayCredentials, PaymentGatewayClient, PaymentUpdate, ServiceInvoiceRequest
from .orchestrator import billing_today, to_consultation_line
from .repository import BillingRepository

logger = logging.getLogger(__name__)

# Gateway notification event -> local invoice status
GATEWAY_EVENT_STATUS = {
    "PAYMENT_RECEIVED": "paid",
    "PAYMENT_CONFIRMED": "paid",
    "PAYMENT_RECEIVED_IN_CASH": "paid",
    "PAYMENT_OVERDUE": "overdue",
    "PAYMENT_DELETED": "cancelled",
    "PAYMENT_REFUNDED": "refunded",
}

# Gateway notifications may arrive late or out of order; anything not listed is ignored
ALLOWED_GATEWAY_TRANSITIONS = {
    "pending": {"paid", "overdue", "cancelled", "refunded"},
    "overdue": {"paid", "cancelled", "refunded"},
    "paid": {"refunded"},
    "cancelled": set(),
    "refunded": set(),
}

OPEN_STATUSES = ("pending", "overdue")
NFE_SYNCING = "syncing"
NFE_ISSUED = "issued"
NFE_ERROR = "error"


class InvoiceService:
    """Service for invoice lifecycle operations"""

    def __init__(self, db: Session, gateway: Optional[PaymentGatewayClient] = None):
        self.db = db
        self.gateway = gateway or PaymentGatewayClient()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_admin(user: Optional[User]) -> None:
        if user is None or not user.is_admin:
            raise InvoicePermissionError("Apenas administradores podem alterar faturas")

    def _get_invoice(self, invoice_id: int) -> Invoice:
        invoice = BillingRepository.get_invoice(self.db, invoice_id)
        if not invoice:
            raise InvoiceNotFoundError("Fatura não encontrada")
        return invoice

    @staticmethod
    def _credentials(invoice: Invoice) -> GatewayCredentials:
        try:
            return credentials_for(invoice.billing_company)
        except TenantResolutionError as e:
            raise InvoiceOperationError(e.message) from e

    @staticmethod
    def _append_note(invoice: Invoice, note: str) -> None:
        stamp = datetime.utcnow().strftime("%d/%m/%Y %H:%M")
        entry = f"[{stamp}] {note}"
        invoice.notes = f"{invoice.notes}\n{entry}" if invoice.notes else entry

    def _emit(self, event_type: str, invoice: Invoice) -> None:
        """Queue a webhook event; a queue failure never undoes the operation"""
        try:
            enqueue_event(
                self.db,
                event_type,
                {
                    "invoice_id": invoice.id,
                    "external_payment_id": invoice.external_payment_id,
                    "status": invoice.status,
                    "total_value": invoice.total_value,
                    "billing_company_id": invoice.billing_company_id,
                    "consultation_ids": invoice.consultation_ids or [],
                },
            )
        except Exception as e:
            self.db.rollback()
            logger.warning(f"⚠️ Failed to enqueue {event_type} for invoice {invoice.id}: {e}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_invoice(self, invoice_id: int) -> Invoice:
        return self._get_invoice(invoice_id)

    def list_invoices(self, **filters) -> list[Invoice]:
        return BillingRepository.list_invoices(self.db, **filters)

    def invoice_metrics(self, billing_company_id: Optional[int] = None) -> dict:
        return BillingRepository.invoice_metrics(self.db, billing_today(), billing_company_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def cancel_invoice(self, invoice_id: int, user: User, reason: Optional[str] = None) -> Invoice:
        """Cancel at the gateway, then free the consultations for a new charge"""
        self._require_admin(user)
        invoice = self._get_invoice(invoice_id)

        if invoice.status == "paid":
            raise InvoiceStateError("Faturas pagas não podem ser canceladas")
        if invoice.status == "cancelled":
            raise InvoiceStateError("Fatura já está cancelada")

        result = await self.gateway.cancel_payment(self._credentials(invoice), invoice.external_payment_id)
        if not result.ok:
            raise GatewayOperationError(f"Falha ao cancelar cobrança no gateway: {result.error}")

        unlinked = BillingRepository.unlink_consultations(self.db, invoice)
        invoice.status = "cancelled"
        invoice.is_active = False
        invoice.updated_by = user.id
        self._append_note(invoice, f"Cancelada por {user.email}" + (f": {reason}" if reason else ""))
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"✅ Invoice {invoice.id} cancelled, {unlinked} consultation(s) released")
        self._emit(INVOICE_CANCELLED, invoice)
        return invoice

    async def update_invoice_charge(
        self,
        invoice_id: int,
        user: User,
        due_date: Optional[date] = None,
        description: Optional[str] = None,
        regenerate_description: bool = False,
    ) -> Invoice:
        """Change due date and/or description at the gateway, then mirror locally"""
        self._require_admin(user)
        invoice = self._get_invoice(invoice_id)

        if invoice.status not in OPEN_STATUSES:
            raise InvoiceStateError(f"Fatura com status '{invoice.status}' não pode ser alterada")

        if regenerate_description:
            description = self._regenerated_description(invoice)

        update = PaymentUpdate(
            due_date=format_iso_date(due_date) if due_date else None,
            description=description,
        )
        if error := update.validate():
            raise InvoiceOperationError(error)

        result = await self.gateway.update_payment(self._credentials(invoice), invoice.external_payment_id, update)
        if not result.ok:
            raise GatewayOperationError(f"Falha ao atualizar cobrança no gateway: {result.error}")

        if due_date:
            invoice.due_date = due_date
        if description is not None:
            invoice.description = description
        invoice.gateway_payload = result.raw
        invoice.updated_by = user.id
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"✅ Invoice {invoice.id} charge updated at the gateway")
        return invoice

    def _regenerated_description(self, invoice: Invoice) -> str:
        consultations = BillingRepository.get_consultations(self.db, invoice.consultation_ids or [])
        if not consultations:
            raise InvoiceStateError("Fatura sem consultas vinculadas para gerar a descrição")
        patient = invoice.patient or consultations[0].patient
        return generate_charge_description(
            [to_consultation_line(c) for c in consultations],
            PatientIdentity(name=patient.name if patient else "", tax_id=patient.tax_id if patient else None),
        )

    async def receive_in_cash(
        self,
        invoice_id: int,
        user: User,
        payment_date: Optional[date] = None,
        value: Optional[Decimal] = None,
    ) -> Invoice:
        """Record an in-person payment at the gateway and mark the invoice paid"""
        self._require_admin(user)
        invoice = self._get_invoice(invoice_id)

        if invoice.status not in OPEN_STATUSES:
            raise InvoiceStateError(f"Fatura com status '{invoice.status}' não pode receber pagamento")

        receipt = CashReceipt(
            payment_date=format_iso_date(payment_date or billing_today()),
            value=value if value is not None else Decimal(str(invoice.total_value)),
        )
        result = await self.gateway.confirm_cash_receipt(
            self._credentials(invoice), invoice.external_payment_id, receipt
        )
        if not result.ok:
            raise GatewayOperationError(f"Falha ao confirmar recebimento no gateway: {result.error}")

        invoice.status = "paid"
        invoice.paid_at = datetime.utcnow()
        invoice.gateway_payload = result.raw
        invoice.updated_by = user.id
        self._append_note(invoice, f"Recebimento em dinheiro registrado por {user.email}")
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"✅ Invoice {invoice.id} marked as paid (cash)")
        self._emit(INVOICE_PAID, invoice)
        return invoice

    async def issue_service_invoice(
        self, invoice_id: int, user: User, service_description: Optional[str] = None
    ) -> Invoice:
        """Schedule and authorize the NFe for a paid invoice"""
        self._require_admin(user)
        invoice = self._get_invoice(invoice_id)

        if invoice.status != "paid":
            raise InvoiceStateError("A nota fiscal só pode ser emitida para faturas pagas")
        if invoice.service_invoice_status in (NFE_SYNCING, NFE_ISSUED):
            raise InvoiceStateError("Nota fiscal já emitida ou em processamento")

        credentials = self._credentials(invoice)
        invoice.service_invoice_status = NFE_SYNCING
        invoice.service_invoice_error = None
        self.db.commit()

        request = ServiceInvoiceRequest(
            payment_id=invoice.external_payment_id,
            service_description=service_description or invoice.description or SERVICE_INVOICE_DEFAULT_DESCRIPTION,
            value=Decimal(str(invoice.total_value)),
            effective_date=format_iso_date(billing_today()),
            municipal_service_code=SERVICE_INVOICE_MUNICIPAL_CODE,
            municipal_service_name=SERVICE_INVOICE_MUNICIPAL_NAME,
            iss_rate=SERVICE_INVOICE_ISS_RATE,
            observations=SERVICE_INVOICE_OBSERVATIONS,
        )

        scheduled = await self.gateway.schedule_invoice(credentials, request)
        if not scheduled.ok:
            self._service_invoice_failed(invoice, f"Falha ao agendar nota fiscal: {scheduled.error}")

        invoice.service_invoice_id = scheduled.id
        self.db.commit()

        authorized = await self.gateway.authorize_invoice(credentials, scheduled.id)
        if not authorized.ok:
            self._service_invoice_failed(invoice, f"Falha ao autorizar nota fiscal: {authorized.error}")

        invoice.service_invoice_status = NFE_ISSUED
        invoice.service_invoice_link = authorized.data.pdfUrl
        invoice.updated_by = user.id
        self.db.commit()
        self.db.refresh(invoice)

        logger.info(f"✅ Service invoice {scheduled.id} issued for invoice {invoice.id}")
        return invoice

    def _service_invoice_failed(self, invoice: Invoice, message: str) -> None:
        invoice.service_invoice_status = NFE_ERROR
        invoice.service_invoice_error = message
        self.db.commit()
        logger.error(f"❌ Invoice {invoice.id}: {message}")
        raise GatewayOperationError(message)

    def apply_gateway_event(self, event: str, payment: dict) -> Optional[Invoice]:
        """
        Mirror a gateway status notification onto the local invoice.

        Unknown events and payments we never created are ignored.
        """
        new_status = GATEWAY_EVENT_STATUS.get(event)
        payment_id = (payment or {}).get("id")
        if not new_status or not payment_id:
            logger.info(f"🔍 Ignoring gateway event {event} (payment {payment_id})")
            return None

        invoice = BillingRepository.get_invoice_by_payment_id(self.db, payment_id)
        if not invoice:
            logger.info(f"🔍 Gateway event {event} for unknown payment {payment_id}, ignoring")
            return None

        if invoice.status == new_status:
            return invoice

        if new_status not in ALLOWED_GATEWAY_TRANSITIONS.get(invoice.status, set()):
            logger.warning(
                f"⚠️ Ignoring gateway event {event} for invoice {invoice.id}: "
                f"{invoice.status} -> {new_status} not allowed"
            )
            return invoice

        previous = invoice.status
        invoice.status = new_status
        invoice.gateway_payload = payment

        if new_status == "paid":
            invoice.paid_at = _parse_gateway_date(payment.get("paymentDate")) or datetime.utcnow()
        elif new_status == "cancelled":
            BillingRepository.unlink_consultations(self.db, invoice)
            invoice.is_active = False
            self._append_note(invoice, "Cobrança removida no gateway")

        self.db.commit()
        self.db.refresh(invoice)
        logger.info(f"✅ Invoice {invoice.id}: {previous} -> {new_status} ({event})")

        if new_status == "paid":
            self._emit(INVOICE_PAID, invoice)
        elif new_status == "cancelled":
            self._emit(INVOICE_CANCELLED, invoice)
        return invoice


def _parse_gateway_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return None
