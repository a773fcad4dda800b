"""Outbound webhook event types"""

USER_CREATED = "user_created"
PATIENT_CREATED = "patient_created"
APPOINTMENT_CREATED = "appointment_created"
EVOLUTION_CREATED = "evolution_created"
BUDGET_GENERATED = "orcamento_gerado"
CERTIFICATE_GENERATED = "certificado_gerado"
MEDICAL_NOTE_GENERATED = "atestado_gerado"
REGISTRATION_ERROR = "registration_error"

INVOICE_CREATED = "invoice_created"
INVOICE_PAID = "invoice_paid"
INVOICE_CANCELLED = "invoice_cancelled"

# Emitted when another event exhausts its delivery attempts
WEBHOOK_FAILED = "webhook_failed"
# Only sent through the test-send endpoint, never subscribable
WEBHOOK_TEST = "webhook_test"

SUBSCRIBABLE_EVENT_TYPES = (
    USER_CREATED,
    PATIENT_CREATED,
    APPOINTMENT_CREATED,
    EVOLUTION_CREATED,
    BUDGET_GENERATED,
    CERTIFICATE_GENERATED,
    MEDICAL_NOTE_GENERATED,
    REGISTRATION_ERROR,
    INVOICE_CREATED,
    INVOICE_PAID,
    INVOICE_CANCELLED,
    WEBHOOK_FAILED,
)
