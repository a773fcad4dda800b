"""Per-tenant gateway token storage (Fernet-encrypted at rest)"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ...config import GATEWAY_BASE_URL, GATEWAY_ENCRYPTION_KEY
from ...models import BillingCompany
from ...shared.validators import mask_sensitive_data
from .errors import TenantResolutionError
from .gateway import GatewayCredentials

logger = logging.getLogger(__name__)


def _fernet() -> Optional[Fernet]:
    if not GATEWAY_ENCRYPTION_KEY:
        return None
    return Fernet(GATEWAY_ENCRYPTION_KEY)


def encrypt_token(token: str) -> str:
    """Encrypt a gateway API token before storing it"""
    fernet = _fernet()
    if not fernet:
        logger.warning("⚠️ GATEWAY_ENCRYPTION_KEY not set - storing gateway token unencrypted")
        return token
    return fernet.encrypt(token.encode()).decode()


def decrypt_token(encrypted: str) -> str:
    """
    Decrypt a stored gateway API token.

    Raises:
        TenantResolutionError: If the token cannot be decrypted with the configured key
    """
    fernet = _fernet()
    if not fernet:
        return encrypted
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        raise TenantResolutionError("Credenciais do gateway inválidas para esta empresa") from None


def credentials_for(company: Optional[BillingCompany]) -> GatewayCredentials:
    """
    Build gateway credentials for a billing company (tenant).

    Raises:
        TenantResolutionError: Unknown/inactive company or missing token
    """
    if company is None or not company.is_active:
        raise TenantResolutionError("Empresa de faturamento não encontrada")
    if not company.gateway_api_token:
        raise TenantResolutionError(f"Empresa {company.id} sem token do gateway configurado")

    api_key = decrypt_token(company.gateway_api_token)
    logger.debug(f"🔑 Gateway credentials loaded for tenant {company.id} ({mask_sensitive_data(api_key)})")

    return GatewayCredentials(
        tenant_id=company.id,
        api_key=api_key,
        base_url=company.gateway_base_url or GATEWAY_BASE_URL,
    )
