"""Billing error taxonomy"""

from typing import Optional

FATAL = "fatal"
PARTIAL = "partial"


class BillingError(Exception):
    """Base class: every billing failure carries a stable code and a kind"""

    code = "billing_error"
    kind = FATAL

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class UnauthorizedBillingError(BillingError):
    code = "unauthorized"


class ChargeInProgressError(BillingError):
    code = "charge_in_progress"


class TenantResolutionError(BillingError):
    code = "tenant_not_found"


class ConsultationSelectionError(BillingError):
    """Missing, foreign, mixed-patient or already charged consultations"""

    code = "invalid_selection"


class MissingTaxIdError(BillingError):
    code = "missing_tax_id"


class CustomerResolutionError(BillingError):
    code = "customer_resolution_failed"


class ChargeCreationError(BillingError):
    code = "charge_creation_failed"


class ConsultationLinkError(BillingError):
    """The external charge exists but consultations could not be linked"""

    code = "consultation_link_failed"
    kind = PARTIAL


class InvoiceOperationError(Exception):
    """Raised by invoice lifecycle operations, mapped to HTTP status by the router"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvoiceNotFoundError(InvoiceOperationError):
    status_code = 404


class InvoiceStateError(InvoiceOperationError):
    status_code = 409


class InvoicePermissionError(InvoiceOperationError):
    status_code = 403


class GatewayOperationError(InvoiceOperationError):
    status_code = 502
