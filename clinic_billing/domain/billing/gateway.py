"""
Payment gateway client (Asaas-style REST API)

Every call carries explicit per-tenant credentials and returns a tagged
result instead of raising: GatewaySuccess with a typed model, or
GatewayFailure with the gateway's own error message. The client never
retries on its own; callers decide what a failure means.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ...config import GATEWAY_BASE_URL, GATEWAY_TIMEOUT_SECONDS, GATEWAY_USER_AGENT
from ...shared.validators import is_iso_date, only_digits

logger = logging.getLogger(__name__)

NOTIFICATION_CHANNELS_OFF = {
    "enabled": False,
    "emailEnabledForProvider": False,
    "smsEnabledForProvider": False,
    "emailEnabledForCustomer": False,
    "smsEnabledForCustomer": False,
    "phoneCallEnabledForCustomer": False,
    "whatsappEnabledForCustomer": False,
}


@dataclass(frozen=True)
class GatewayCredentials:
    tenant_id: int
    api_key: str
    base_url: str = GATEWAY_BASE_URL


# ============================================================================
# RESPONSE MODELS
# ============================================================================


class GatewayCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: Optional[str] = None
    cpfCnpj: Optional[str] = None
    email: Optional[str] = None
    externalReference: Optional[str] = None


class GatewayPayment(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    customer: Optional[str] = None
    status: Optional[str] = None
    value: Optional[float] = None
    dueDate: Optional[str] = None
    billingType: Optional[str] = None
    description: Optional[str] = None
    externalReference: Optional[str] = None
    invoiceUrl: Optional[str] = None
    paymentDate: Optional[str] = None


class GatewayServiceInvoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    status: Optional[str] = None
    payment: Optional[str] = None
    number: Optional[str] = None
    pdfUrl: Optional[str] = None
    xmlUrl: Optional[str] = None


@dataclass
class GatewaySuccess:
    data: Any
    raw: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return True

    @property
    def id(self) -> Optional[str]:
        return getattr(self.data, "id", None)


@dataclass
class GatewayFailure:
    error: str
    status_code: Optional[int] = None
    raw: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return False


GatewayResult = Union[GatewaySuccess, GatewayFailure]


# ============================================================================
# REQUESTS
# ============================================================================


@dataclass
class CustomerRequest:
    name: str
    tax_id: str
    email: Optional[str] = None
    phone: Optional[str] = None
    postal_code: Optional[str] = None
    address_number: Optional[str] = None
    external_reference: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {
            "name": self.name,
            "cpfCnpj": only_digits(self.tax_id),
            "email": self.email,
            "mobilePhone": only_digits(self.phone) or None,
            "postalCode": only_digits(self.postal_code) or None,
            "addressNumber": self.address_number,
            "externalReference": self.external_reference,
        }
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class PaymentRequest:
    customer_id: str
    value: Decimal
    due_date: str  # YYYY-MM-DD
    description: str
    external_reference: Optional[str] = None
    billing_type: str = "PIX"

    def validate(self) -> Optional[str]:
        return _validate_value(self.value) or _validate_date("dueDate", self.due_date)

    def to_payload(self) -> dict:
        payload = {
            "customer": self.customer_id,
            "billingType": self.billing_type,
            "value": float(self.value),
            "dueDate": self.due_date,
            "description": self.description,
            "externalReference": self.external_reference,
        }
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class PaymentUpdate:
    value: Optional[Decimal] = None
    due_date: Optional[str] = None
    description: Optional[str] = None
    billing_type: Optional[str] = None

    def validate(self) -> Optional[str]:
        if self.value is None and self.due_date is None and self.description is None and self.billing_type is None:
            return "Nenhuma alteração informada"
        if self.value is not None and (error := _validate_value(self.value)):
            return error
        if self.due_date is not None:
            return _validate_date("dueDate", self.due_date)
        return None

    def to_payload(self) -> dict:
        payload = {
            "value": float(self.value) if self.value is not None else None,
            "dueDate": self.due_date,
            "description": self.description,
            "billingType": self.billing_type,
        }
        return {k: v for k, v in payload.items() if v is not None}


@dataclass
class ServiceInvoiceRequest:
    payment_id: str
    service_description: str
    value: Decimal
    effective_date: str  # YYYY-MM-DD
    municipal_service_code: str
    municipal_service_name: str
    iss_rate: float
    observations: str = ""
    deductions: float = 0
    retain_iss: bool = False
    update_payment: bool = False

    def validate(self) -> Optional[str]:
        return _validate_value(self.value) or _validate_date("effectiveDate", self.effective_date)

    def to_payload(self) -> dict:
        return {
            "payment": self.payment_id,
            "serviceDescription": self.service_description,
            "observations": self.observations,
            "value": float(self.value),
            "deductions": self.deductions,
            "effectiveDate": self.effective_date,
            "municipalServiceCode": self.municipal_service_code,
            "municipalServiceName": self.municipal_service_name,
            "updatePayment": self.update_payment,
            "taxes": {"retainIss": self.retain_iss, "iss": self.iss_rate},
        }


@dataclass
class CashReceipt:
    payment_date: str  # YYYY-MM-DD
    value: Decimal
    notify_customer: bool = False

    def validate(self) -> Optional[str]:
        return _validate_value(self.value) or _validate_date("paymentDate", self.payment_date)

    def to_payload(self) -> dict:
        return {
            "paymentDate": self.payment_date,
            "value": float(self.value),
            "notifyCustomer": self.notify_customer,
        }


def _validate_value(value) -> Optional[str]:
    try:
        if value is None or Decimal(str(value)) <= 0:
            return "Valor deve ser maior que zero"
    except ArithmeticError:
        return "Valor inválido"
    return None


def _validate_date(name: str, value: str) -> Optional[str]:
    if not is_iso_date(value):
        return f"{name} deve estar no formato YYYY-MM-DD"
    return None


# ============================================================================
# CLIENT
# ============================================================================


class PaymentGatewayClient:
    """Async client; one short-lived httpx.AsyncClient per call"""

    def __init__(
        self,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = GATEWAY_USER_AGENT,
    ):
        self.timeout = timeout
        self.transport = transport
        self.user_agent = user_agent

    def _headers(self, credentials: GatewayCredentials) -> dict:
        return {
            "access_token": credentials.api_key,
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
        }

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {"text": response.text[:500]}
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _error_message(status_code: int, body: dict, method: str, path: str) -> str:
        errors = body.get("errors") if isinstance(body, dict) else None
        if isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict) and first.get("description"):
                return first["description"]
        return f"Erro {status_code} ao chamar {method} {path}"

    async def _request(
        self,
        credentials: GatewayCredentials,
        method: str,
        path: str,
        model: Optional[type[BaseModel]] = None,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> GatewayResult:
        url = f"{credentials.base_url.rstrip('/')}{path}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method, url, json=json, params=params, headers=self._headers(credentials)
                )
        except httpx.TimeoutException:
            logger.error(f"❌ Gateway timeout: {method} {path} (tenant {credentials.tenant_id})")
            return GatewayFailure(error=f"Tempo limite excedido ao chamar {method} {path}")
        except httpx.HTTPError as e:
            logger.error(f"❌ Gateway transport error: {method} {path} (tenant {credentials.tenant_id}): {e}")
            return GatewayFailure(error=f"Falha de comunicação com o gateway: {e}")

        body = self._parse_body(response)

        if not response.is_success:
            message = self._error_message(response.status_code, body, method, path)
            logger.warning(
                f"⚠️ Gateway {method} {path} returned {response.status_code} "
                f"(tenant {credentials.tenant_id}): {message}"
            )
            return GatewayFailure(error=message, status_code=response.status_code, raw=body)

        if model is None:
            return GatewaySuccess(data=body, raw=body)

        try:
            return GatewaySuccess(data=model.model_validate(body), raw=body)
        except ValidationError as e:
            logger.error(f"❌ Unexpected gateway response for {method} {path}: {e}")
            return GatewayFailure(
                error=f"Resposta inesperada do gateway em {method} {path}",
                status_code=response.status_code,
                raw=body,
            )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def search_customer(self, credentials: GatewayCredentials, tax_id: str) -> GatewayResult:
        """Look a customer up by CPF/CNPJ. Success data is a GatewayCustomer or None."""
        result = await self._request(
            credentials, "GET", "/customers", params={"cpfCnpj": only_digits(tax_id), "limit": 1}
        )
        if not result.ok:
            return result

        items = result.raw.get("data") or []
        if not items:
            return GatewaySuccess(data=None, raw=result.raw)

        try:
            return GatewaySuccess(data=GatewayCustomer.model_validate(items[0]), raw=result.raw)
        except ValidationError:
            return GatewayFailure(error="Resposta inesperada do gateway em GET /customers", raw=result.raw)

    async def create_customer(self, credentials: GatewayCredentials, request: CustomerRequest) -> GatewayResult:
        if not only_digits(request.tax_id):
            return GatewayFailure(error="CPF/CNPJ é obrigatório")
        return await self._request(
            credentials, "POST", "/customers", model=GatewayCustomer, json=request.to_payload()
        )

    async def disable_notifications(self, credentials: GatewayCredentials, customer_id: str) -> GatewayResult:
        """Turn off every gateway-native notification channel for a customer"""
        body = {"customer": customer_id, "notifications": [dict(NOTIFICATION_CHANNELS_OFF)]}
        return await self._request(credentials, "PUT", "/notifications/batch", json=body)

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def create_payment(self, credentials: GatewayCredentials, request: PaymentRequest) -> GatewayResult:
        if error := request.validate():
            return GatewayFailure(error=error)
        return await self._request(
            credentials, "POST", "/payments", model=GatewayPayment, json=request.to_payload()
        )

    async def update_payment(
        self, credentials: GatewayCredentials, payment_id: str, update: PaymentUpdate
    ) -> GatewayResult:
        if error := update.validate():
            return GatewayFailure(error=error)
        return await self._request(
            credentials, "PUT", f"/payments/{payment_id}", model=GatewayPayment, json=update.to_payload()
        )

    async def cancel_payment(self, credentials: GatewayCredentials, payment_id: str) -> GatewayResult:
        return await self._request(credentials, "DELETE", f"/payments/{payment_id}")

    async def confirm_cash_receipt(
        self, credentials: GatewayCredentials, payment_id: str, receipt: CashReceipt
    ) -> GatewayResult:
        if error := receipt.validate():
            return GatewayFailure(error=error)
        return await self._request(
            credentials,
            "POST",
            f"/payments/{payment_id}/receiveInCash",
            model=GatewayPayment,
            json=receipt.to_payload(),
        )

    # ------------------------------------------------------------------
    # Service invoices (NFe)
    # ------------------------------------------------------------------

    async def schedule_invoice(
        self, credentials: GatewayCredentials, request: ServiceInvoiceRequest
    ) -> GatewayResult:
        if error := request.validate():
            return GatewayFailure(error=error)
        return await self._request(
            credentials, "POST", "/invoices", model=GatewayServiceInvoice, json=request.to_payload()
        )

    async def authorize_invoice(self, credentials: GatewayCredentials, invoice_id: str) -> GatewayResult:
        return await self._request(
            credentials, "POST", f"/invoices/{invoice_id}/authorize", model=GatewayServiceInvoice
        )
