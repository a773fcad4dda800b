"""
Shared pytest fixtures for all tests.

Provides an in-memory database session, a fake payment gateway served
through httpx.MockTransport, seeded clinic data and an API test client.
"""

import json
import os
from datetime import date, datetime
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure test environment before the package reads its configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from clinic_billing import models, models_invoice, models_webhook  # noqa: E402, F401
from clinic_billing.database import Base, get_db  # noqa: E402
from clinic_billing.models import BillingCompany, Consultation, Person, ServiceType, User  # noqa: E402

GATEWAY_URL = "https://gateway.test/v3"
TODAY = date(2025, 2, 10)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """Fresh session per test on a private in-memory database"""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


# ============================================================================
# FAKE PAYMENT GATEWAY
# ============================================================================


def gateway_error(status: int, description: str) -> httpx.Response:
    return httpx.Response(status, json={"errors": [{"code": "invalid_action", "description": description}]})


class FakeGateway:
    """
    Minimal in-memory Asaas-style API. Customers are stored per access token,
    so every tenant sees only its own account.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.customers: dict[tuple, dict] = {}
        self.failures: dict[tuple, tuple] = {}
        self.payment_count = 0

    def fail_on(self, method: str, path: str, status: int = 400, description: str = "Operação inválida"):
        self.failures[(method, path)] = (status, description)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and self._path(r) == path]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/v3")

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content) if request.content else {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path(request)
        token = request.headers.get("access_token")

        if (request.method, path) in self.failures:
            return gateway_error(*self.failures[(request.method, path)])

        if request.method == "GET" and path == "/customers":
            found = self.customers.get((token, request.url.params.get("cpfCnpj")))
            data = [found] if found else []
            return httpx.Response(200, json={"object": "list", "totalCount": len(data), "data": data})

        if request.method == "POST" and path == "/customers":
            body = self.body(request)
            customer = {"object": "customer", "id": f"cus_{len(self.customers) + 1:06d}", **body}
            self.customers[(token, body["cpfCnpj"])] = customer
            return httpx.Response(200, json=customer)

        if request.method == "PUT" and path == "/notifications/batch":
            return httpx.Response(200, json={"notifications": self.body(request)["notifications"]})

        if request.method == "POST" and path == "/payments":
            self.payment_count += 1
            payment = {"object": "payment", "id": f"pay_{self.payment_count:06d}", "status": "PENDING"}
            payment.update(self.body(request))
            return httpx.Response(200, json=payment)

        if path.startswith("/payments/"):
            payment_id = path.split("/")[2]
            if request.method == "PUT":
                return httpx.Response(200, json={"id": payment_id, "status": "PENDING", **self.body(request)})
            if request.method == "DELETE":
                return httpx.Response(200, json={"deleted": True, "id": payment_id})
            if request.method == "POST" and path.endswith("/receiveInCash"):
                return httpx.Response(200, json={"id": payment_id, "status": "RECEIVED_IN_CASH"})

        if request.method == "POST" and path == "/invoices":
            body = self.body(request)
            return httpx.Response(200, json={"id": "inv_000001", "status": "SCHEDULED", "payment": body["payment"]})

        if request.method == "POST" and path.endswith("/authorize"):
            invoice_id = path.split("/")[2]
            return httpx.Response(
                200,
                json={
                    "id": invoice_id,
                    "status": "AUTHORIZED",
                    "pdfUrl": f"https://gateway.test/nfe/{invoice_id}.pdf",
                },
            )

        return gateway_error(404, "Recurso não encontrado")


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def gateway_client(gateway):
    from clinic_billing.domain.billing.gateway import PaymentGatewayClient

    return PaymentGatewayClient(transport=httpx.MockTransport(gateway.handler))


@pytest.fixture
def credentials():
    from clinic_billing.domain.billing.gateway import GatewayCredentials

    return GatewayCredentials(tenant_id=1, api_key="tenant-token", base_url=GATEWAY_URL)


# ============================================================================
# SEED DATA
# ============================================================================


@pytest.fixture
def clinic(db):
    """
    Two tenants, two professionals, patient Maria (her own responsible party)
    and three unbilled consultations:
      Ana   - sessão   100,00  03/02/2025
      Bruno - avaliação 200,00 04/02/2025
      Ana   - sessão   100,00  05/02/2025
    """
    admin = User(email="admin@clinica.test", full_name="Admin", role="admin")
    secretary = User(email="secretaria@clinica.test", full_name="Secretária", role="secretary")

    tenant = BillingCompany(legal_name="Clínica Movimento Ltda", gateway_api_token="tenant-token", gateway_base_url=GATEWAY_URL)
    other_tenant = BillingCompany(legal_name="Outra Clínica Ltda", gateway_api_token="other-token", gateway_base_url=GATEWAY_URL)

    maria = Person(
        name="Maria Silva",
        tax_id="987.654.321-00",
        email="maria@example.com",
        phone="(41) 99999-8888",
        postal_code="80000-000",
        address_number="123",
        address_complement="apto 4",
    )
    joao = Person(name="João Pereira", tax_id="555.444.333-22")
    ana = Person(
        name="Ana Souza",
        tax_id="123.456.789-09",
        professional_license="CREFITO-8 1234-F",
        gender="F",
    )
    bruno = Person(name="Bruno Lima", tax_id="111.222.333-44", gender="M")

    session_type = ServiceType(name="Sessão de Fisioterapia", description="sessão de fisioterapia")
    evaluation_type = ServiceType(name="Avaliação", description="avaliação fisioterapêutica")

    db.add_all([admin, secretary, tenant, other_tenant, maria, joao, ana, bruno, session_type, evaluation_type])
    db.commit()

    def consultation(professional, service_type, value, when, patient=maria, company=tenant):
        return Consultation(
            scheduled_at=when,
            service_type_id=service_type.id,
            service_name=service_type.name,
            service_value=value,
            professional_id=professional.id,
            patient_id=patient.id,
            billing_company_id=company.id,
        )

    first = consultation(ana, session_type, 100, datetime(2025, 2, 3, 9, 0))
    second = consultation(bruno, evaluation_type, 200, datetime(2025, 2, 4, 14, 0))
    third = consultation(ana, session_type, 100, datetime(2025, 2, 5, 9, 0))
    db.add_all([first, second, third])
    db.commit()

    return SimpleNamespace(
        admin=admin,
        secretary=secretary,
        tenant=tenant,
        other_tenant=other_tenant,
        maria=maria,
        joao=joao,
        ana=ana,
        bruno=bruno,
        session_type=session_type,
        evaluation_type=evaluation_type,
        consultations=[first, second, third],
        consultation_ids=[first.id, second.id, third.id],
        add_consultation=lambda *args, **kwargs: _persist(db, consultation(*args, **kwargs)),
    )


def _persist(db, obj):
    db.add(obj)
    db.commit()
    return obj


@pytest.fixture
def orchestrator(gateway_client):
    from clinic_billing.domain.billing.orchestrator import BillingOrchestrator

    return BillingOrchestrator(gateway=gateway_client, today=lambda: TODAY)


@pytest.fixture
def invoice(db, clinic):
    """A pending invoice already linked to the three seeded consultations"""
    from clinic_billing.models_invoice import Invoice

    record = Invoice(
        external_payment_id="pay_000042",
        internal_number="FAT-000042",
        total_value=400.0,
        description="Cobrança de teste",
        billing_company_id=clinic.tenant.id,
        responsible_party_id=clinic.maria.id,
        patient_id=clinic.maria.id,
        status="pending",
        due_date=date(2025, 2, 12),
        consultation_ids=clinic.consultation_ids,
    )
    db.add(record)
    db.commit()

    for c in clinic.consultations:
        c.payment_reference = record.external_payment_id
        c.invoice_id = record.id
    db.commit()
    db.refresh(record)
    return record


# ============================================================================
# API CLIENT
# ============================================================================


@pytest.fixture
def subscriber_requests():
    return []


@pytest.fixture
def subscriber_transport(subscriber_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        subscriber_requests.append(request)
        return httpx.Response(200, text="ok")

    return httpx.MockTransport(handler)


@pytest.fixture
def client(db, gateway_client, subscriber_transport):
    from clinic_billing.domain.billing.invoice_service import InvoiceService
    from clinic_billing.domain.billing.orchestrator import BillingOrchestrator
    from clinic_billing.domain.billing.router import get_invoice_service, get_orchestrator
    from clinic_billing.domain.webhooks.dispatcher import WebhookDispatcher
    from clinic_billing.domain.webhooks.router import get_dispatcher
    from clinic_billing.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: BillingOrchestrator(gateway=gateway_client, today=lambda: TODAY)
    app.dependency_overrides[get_invoice_service] = lambda: InvoiceService(db, gateway=gateway_client)
    app.dependency_overrides[get_dispatcher] = lambda: WebhookDispatcher(transport=subscriber_transport)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer header for a seeded user"""
    from clinic_billing.auth import create_access_token

    def build(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return build
