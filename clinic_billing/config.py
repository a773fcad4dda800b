import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_billing.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Payment gateway (Asaas-style API). Each billing company carries its own token;
# the key below only encrypts those tokens at rest.
# Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
GATEWAY_ENCRYPTION_KEY = os.getenv("GATEWAY_ENCRYPTION_KEY")
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "https://api.asaas.com/v3")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "15"))
GATEWAY_USER_AGENT = os.getenv("GATEWAY_USER_AGENT", "ClinicBilling/1.0")
# Shared token the gateway sends back on status notifications
GATEWAY_WEBHOOK_TOKEN = os.getenv("GATEWAY_WEBHOOK_TOKEN")

# Billing rules
BILLING_TIMEZONE = os.getenv("BILLING_TIMEZONE", "America/Sao_Paulo")
DUE_DATE_OFFSET_DAYS = int(os.getenv("DUE_DATE_OFFSET_DAYS", "2"))
DEFAULT_BILLING_TYPE = os.getenv("DEFAULT_BILLING_TYPE", "PIX")
EXTERNAL_REFERENCE_PREFIX = os.getenv("EXTERNAL_REFERENCE_PREFIX", "")
CHARGE_LOCK_TTL_SECONDS = int(os.getenv("CHARGE_LOCK_TTL_SECONDS", "300"))
DEFAULT_PROFESSIONAL_LABEL = os.getenv("DEFAULT_PROFESSIONAL_LABEL", "fisioterapeuta")

# Service invoice (NFe) issuance
SERVICE_INVOICE_MUNICIPAL_CODE = os.getenv("SERVICE_INVOICE_MUNICIPAL_CODE", "0701")
SERVICE_INVOICE_MUNICIPAL_NAME = os.getenv("SERVICE_INVOICE_MUNICIPAL_NAME", "Fisioterapia")
SERVICE_INVOICE_ISS_RATE = float(os.getenv("SERVICE_INVOICE_ISS_RATE", "5.0"))
SERVICE_INVOICE_OBSERVATIONS = os.getenv("SERVICE_INVOICE_OBSERVATIONS", "Emissão automática")
SERVICE_INVOICE_DEFAULT_DESCRIPTION = os.getenv(
    "SERVICE_INVOICE_DEFAULT_DESCRIPTION", "Serviços de fisioterapia"
)

# Outbound webhooks
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "5"))
WEBHOOK_MAX_ATTEMPTS = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "3"))
WEBHOOK_RETRY_BASE_SECONDS = int(os.getenv("WEBHOOK_RETRY_BASE_SECONDS", "60"))
WEBHOOK_RETRY_MAX_SECONDS = int(os.getenv("WEBHOOK_RETRY_MAX_SECONDS", "3600"))
WEBHOOK_CLAIM_TIMEOUT_SECONDS = int(os.getenv("WEBHOOK_CLAIM_TIMEOUT_SECONDS", "300"))
WEBHOOK_DRAIN_BATCH_SIZE = int(os.getenv("WEBHOOK_DRAIN_BATCH_SIZE", "50"))
WEBHOOK_RESPONSE_PREVIEW_CHARS = int(os.getenv("WEBHOOK_RESPONSE_PREVIEW_CHARS", "500"))
WEBHOOK_POLL_INTERVAL_SECONDS = int(os.getenv("WEBHOOK_POLL_INTERVAL_SECONDS", "60"))
WEBHOOK_USER_AGENT = os.getenv("WEBHOOK_USER_AGENT", "ClinicBilling-Webhooks/1.0")
