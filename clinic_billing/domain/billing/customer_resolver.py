"""
Tenant customer resolver

Finds or creates the payment-gateway customer for a responsible party inside
one tenant's own gateway account. The gateway is the only store of the
mapping: we always search by tax id first, so the same person is never
created twice within a tenant.
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ...models import Person
from ...shared.validators import normalize_tax_id
from .credentials import credentials_for
from .errors import CustomerResolutionError, MissingTaxIdError, TenantResolutionError
from .gateway import CustomerRequest, GatewayCredentials, PaymentGatewayClient
from .repository import BillingRepository

logger = logging.getLogger(__name__)


@dataclass
class ResolvedCustomer:
    customer_id: str
    created: bool = False


def build_customer_request(person: Person, tax_id: str) -> CustomerRequest:
    address_number = " ".join(
        part for part in (person.address_number, person.address_complement) if part
    ).strip()
    return CustomerRequest(
        name=person.name,
        tax_id=tax_id,
        email=person.email or None,
        phone=person.phone or None,
        postal_code=person.postal_code or None,
        address_number=address_number or None,
        external_reference=str(person.id),
    )


class TenantCustomerResolver:
    def __init__(self, gateway: PaymentGatewayClient):
        self.gateway = gateway

    async def resolve(self, db: Session, tenant_id: int, responsible_party_id: int) -> ResolvedCustomer:
        """Load tenant and responsible party, then resolve in the tenant's account"""
        credentials = credentials_for(BillingRepository.get_billing_company(db, tenant_id))

        person = BillingRepository.get_person(db, responsible_party_id)
        if not person:
            raise TenantResolutionError(f"Responsável {responsible_party_id} não encontrado")

        return await self.resolve_for(credentials, person)

    async def resolve_for(self, credentials: GatewayCredentials, person: Person) -> ResolvedCustomer:
        """
        Raises:
            MissingTaxIdError: The person has no CPF/CNPJ
            CustomerResolutionError: Search or creation failed at the gateway
        """
        tax_id = normalize_tax_id(person.tax_id)
        if not tax_id:
            raise MissingTaxIdError(f"Responsável {person.name} não possui CPF/CNPJ cadastrado")

        search = await self.gateway.search_customer(credentials, tax_id)
        if not search.ok:
            raise CustomerResolutionError(f"Falha ao buscar cliente no gateway: {search.error}")

        if search.data is not None:
            logger.info(f"🔍 Found gateway customer {search.data.id} (tenant {credentials.tenant_id})")
            return ResolvedCustomer(customer_id=search.data.id, created=False)

        created = await self.gateway.create_customer(credentials, build_customer_request(person, tax_id))
        if not created.ok:
            raise CustomerResolutionError(f"Falha ao criar cliente no gateway: {created.error}")

        logger.info(f"✅ Created gateway customer {created.id} (tenant {credentials.tenant_id})")
        return ResolvedCustomer(customer_id=created.id, created=True)
