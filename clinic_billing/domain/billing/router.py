"""Billing router - FastAPI endpoints for charges and invoices"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ... import config
from ...auth import get_current_user
from ...database import get_db
from ...models import User
from .errors import InvoiceOperationError
from .invoice_service import InvoiceService
from .orchestrator import BillingOrchestrator, ChargeResult
from .schemas import (
    CancelInvoiceRequest,
    CashReceiptRequest,
    ChargeRequest,
    ChargeResponse,
    GatewayEventRequest,
    InvoiceMetricsResponse,
    InvoiceResponse,
    InvoiceUpdateRequest,
    ServiceInvoiceIssueRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

# ChargeResult.error_code -> HTTP status for failed charges
FAILURE_STATUS_CODES = {
    "unauthorized": 403,
    "charge_in_progress": 409,
    "already_charged": 409,
    "consultation_not_found": 404,
    "tenant_not_found": 404,
    "responsible_not_found": 404,
    "invalid_selection": 422,
    "missing_tax_id": 422,
    "customer_resolution_failed": 502,
    "charge_creation_failed": 502,
}


def get_orchestrator() -> BillingOrchestrator:
    """Dependency injection for BillingOrchestrator"""
    return BillingOrchestrator()


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    """Dependency injection for InvoiceService"""
    return InvoiceService(db)


def charge_status_code(result: ChargeResult) -> int:
    if result.kind == "success":
        return 201
    if result.kind == "partial":
        return 207
    return FAILURE_STATUS_CODES.get(result.error_code, 400)


def _http_error(e: InvoiceOperationError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


# ============================================================================
# CHARGES
# ============================================================================


@router.post("/charges", response_model=ChargeResponse)
async def create_charge(
    body: ChargeRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: BillingOrchestrator = Depends(get_orchestrator),
):
    """Charge a set of consultations as a single gateway payment"""
    result = await orchestrator.charge_consultations(
        db, body.consultation_ids, body.responsible_party_id, body.tenant_id, user
    )

    response = ChargeResponse(
        kind=result.kind,
        invoice=InvoiceResponse.model_validate(result.invoice) if result.invoice else None,
        external_payment_id=result.external_payment_id,
        customer_id=result.customer_id,
        error_code=result.error_code,
        error=result.error,
        warnings=result.warnings,
    )
    return JSONResponse(status_code=charge_status_code(result), content=response.model_dump(mode="json"))


# ============================================================================
# INVOICES
# ============================================================================


@router.get("/invoices", response_model=list[InvoiceResponse])
async def list_invoices(
    tenant_id: Optional[int] = Query(None),
    patient_id: Optional[int] = Query(None),
    responsible_party_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    include_inactive: bool = Query(False),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """List invoices with optional filters"""
    return service.list_invoices(
        billing_company_id=tenant_id,
        patient_id=patient_id,
        responsible_party_id=responsible_party_id,
        status=status,
        include_inactive=include_inactive,
        skip=skip,
        limit=limit,
    )


@router.get("/invoices/metrics", response_model=InvoiceMetricsResponse)
async def get_invoice_metrics(
    tenant_id: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Counts and totals by status"""
    return service.invoice_metrics(tenant_id)


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: int,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return service.get_invoice(invoice_id)
    except InvoiceOperationError as e:
        raise _http_error(e) from e


@router.patch("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    body: InvoiceUpdateRequest,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Change due date and/or description of a pending charge"""
    try:
        return await service.update_invoice_charge(
            invoice_id,
            user,
            due_date=body.due_date,
            description=body.description,
            regenerate_description=body.regenerate_description,
        )
    except InvoiceOperationError as e:
        raise _http_error(e) from e


@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: int,
    body: CancelInvoiceRequest,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.cancel_invoice(invoice_id, user, reason=body.reason)
    except InvoiceOperationError as e:
        raise _http_error(e) from e


@router.post("/invoices/{invoice_id}/receive-in-cash", response_model=InvoiceResponse)
async def receive_in_cash(
    invoice_id: int,
    body: CashReceiptRequest,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    try:
        return await service.receive_in_cash(invoice_id, user, payment_date=body.payment_date, value=body.value)
    except InvoiceOperationError as e:
        raise _http_error(e) from e


@router.post("/invoices/{invoice_id}/service-invoice", response_model=InvoiceResponse)
async def issue_service_invoice(
    invoice_id: int,
    body: ServiceInvoiceIssueRequest,
    user: User = Depends(get_current_user),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Issue the NFe for a paid invoice"""
    try:
        return await service.issue_service_invoice(invoice_id, user, service_description=body.service_description)
    except InvoiceOperationError as e:
        raise _http_error(e) from e


# ============================================================================
# GATEWAY NOTIFICATIONS
# ============================================================================


def verify_gateway_token(token: Optional[str]) -> None:
    expected = config.GATEWAY_WEBHOOK_TOKEN
    if not expected:
        logger.error("❌ GATEWAY_WEBHOOK_TOKEN not configured - rejecting gateway notification")
        raise HTTPException(status_code=503, detail="Gateway notifications not configured")
    if not token or not hmac.compare_digest(token, expected):
        logger.warning("⚠️ Gateway notification with invalid token")
        raise HTTPException(status_code=401, detail="Invalid token")


@router.post("/gateway-events")
async def receive_gateway_event(
    body: GatewayEventRequest,
    asaas_access_token: Optional[str] = Header(None, alias="asaas-access-token"),
    service: InvoiceService = Depends(get_invoice_service),
):
    """Payment status notifications sent by the gateway"""
    verify_gateway_token(asaas_access_token)
    invoice = service.apply_gateway_event(body.event, body.payment)
    return {"received": True, "invoice_id": invoice.id if invoice else None}
