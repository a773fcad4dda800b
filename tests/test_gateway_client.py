"""
Tests for the payment gateway client.

Requests go through httpx.MockTransport; nothing leaves the process.
"""

from decimal import Decimal

import httpx
import pytest

from clinic_billing.domain.billing.gateway import (
    CashReceipt,
    CustomerRequest,
    GatewayCustomer,
    GatewayPayment,
    PaymentGatewayClient,
    PaymentRequest,
    PaymentUpdate,
    ServiceInvoiceRequest,
)


def payment_request(**overrides) -> PaymentRequest:
    fields = {
        "customer_id": "cus_000001",
        "value": Decimal("400.00"),
        "due_date": "2025-02-12",
        "description": "2 sessões de fisioterapia",
        "external_reference": "20250210-abcd1234",
    }
    fields.update(overrides)
    return PaymentRequest(**fields)


class TestRequests:
    async def test_sends_tenant_token_and_user_agent(self, gateway, gateway_client, credentials):
        await gateway_client.search_customer(credentials, "987.654.321-00")

        request = gateway.requests[0]
        assert request.headers["access_token"] == "tenant-token"
        assert request.headers["User-Agent"] == "ClinicBilling/1.0"
        assert str(request.url).startswith("https://gateway.test/v3/customers")

    async def test_search_sends_digits_only(self, gateway, gateway_client, credentials):
        await gateway_client.search_customer(credentials, "987.654.321-00")

        assert gateway.requests[0].url.params["cpfCnpj"] == "98765432100"

    async def test_search_without_hit_returns_empty_success(self, gateway_client, credentials):
        result = await gateway_client.search_customer(credentials, "98765432100")

        assert result.ok
        assert result.data is None

    async def test_create_customer_payload(self, gateway, gateway_client, credentials):
        result = await gateway_client.create_customer(
            credentials,
            CustomerRequest(
                name="Maria Silva",
                tax_id="987.654.321-00",
                email="maria@example.com",
                phone="(41) 99999-8888",
                postal_code="80000-000",
                address_number="123 apto 4",
                external_reference="7",
            ),
        )

        assert result.ok
        assert isinstance(result.data, GatewayCustomer)
        assert result.id == "cus_000001"
        assert gateway.body(gateway.requests[0]) == {
            "name": "Maria Silva",
            "cpfCnpj": "98765432100",
            "email": "maria@example.com",
            "mobilePhone": "41999998888",
            "postalCode": "80000000",
            "addressNumber": "123 apto 4",
            "externalReference": "7",
        }

    async def test_create_customer_requires_tax_id(self, gateway, gateway_client, credentials):
        result = await gateway_client.create_customer(credentials, CustomerRequest(name="Sem CPF", tax_id=""))

        assert not result.ok
        assert gateway.requests == []

    async def test_create_payment(self, gateway, gateway_client, credentials):
        result = await gateway_client.create_payment(credentials, payment_request())

        assert result.ok
        assert isinstance(result.data, GatewayPayment)
        assert result.id == "pay_000001"
        body = gateway.body(gateway.requests[0])
        assert body["value"] == 400.0
        assert body["billingType"] == "PIX"
        assert body["dueDate"] == "2025-02-12"

    async def test_disable_notifications_turns_every_channel_off(self, gateway, gateway_client, credentials):
        result = await gateway_client.disable_notifications(credentials, "cus_000001")

        assert result.ok
        body = gateway.body(gateway.calls("PUT", "/notifications/batch")[0])
        assert body["customer"] == "cus_000001"
        channels = body["notifications"][0]
        assert channels["enabled"] is False
        assert not any(channels.values())

    async def test_cancel_payment_uses_delete(self, gateway, gateway_client, credentials):
        result = await gateway_client.cancel_payment(credentials, "pay_000042")

        assert result.ok
        assert result.data["deleted"] is True
        assert len(gateway.calls("DELETE", "/payments/pay_000042")) == 1

    async def test_confirm_cash_receipt(self, gateway, gateway_client, credentials):
        result = await gateway_client.confirm_cash_receipt(
            credentials, "pay_000042", CashReceipt(payment_date="2025-02-11", value=Decimal("400"))
        )

        assert result.ok
        assert result.data.status == "RECEIVED_IN_CASH"
        assert gateway.body(gateway.requests[0]) == {
            "paymentDate": "2025-02-11",
            "value": 400.0,
            "notifyCustomer": False,
        }

    async def test_schedule_invoice_payload(self, gateway, gateway_client, credentials):
        result = await gateway_client.schedule_invoice(
            credentials,
            ServiceInvoiceRequest(
                payment_id="pay_000042",
                service_description="Sessões de fisioterapia",
                value=Decimal("400"),
                effective_date="2025-02-11",
                municipal_service_code="04.08",
                municipal_service_name="Fisioterapia",
                iss_rate=2.0,
            ),
        )

        assert result.ok
        body = gateway.body(gateway.requests[0])
        assert body["payment"] == "pay_000042"
        assert body["municipalServiceCode"] == "04.08"
        assert body["taxes"] == {"retainIss": False, "iss": 2.0}

    async def test_authorize_invoice(self, gateway_client, credentials):
        result = await gateway_client.authorize_invoice(credentials, "inv_000001")

        assert result.ok
        assert result.data.pdfUrl == "https://gateway.test/nfe/inv_000001.pdf"


class TestValidation:
    @pytest.mark.parametrize(
        "overrides",
        [{"value": Decimal("0")}, {"value": Decimal("-10")}, {"due_date": "12/02/2025"}],
    )
    async def test_invalid_payment_is_rejected_before_sending(self, gateway, gateway_client, credentials, overrides):
        result = await gateway_client.create_payment(credentials, payment_request(**overrides))

        assert not result.ok
        assert gateway.requests == []

    async def test_empty_update_is_rejected(self, gateway, gateway_client, credentials):
        result = await gateway_client.update_payment(credentials, "pay_000042", PaymentUpdate())

        assert not result.ok
        assert result.error == "Nenhuma alteração informada"
        assert gateway.requests == []

    async def test_update_sends_only_given_fields(self, gateway, gateway_client, credentials):
        result = await gateway_client.update_payment(
            credentials, "pay_000042", PaymentUpdate(due_date="2025-03-01")
        )

        assert result.ok
        assert gateway.body(gateway.requests[0]) == {"dueDate": "2025-03-01"}


class TestFailures:
    async def test_gateway_error_description_is_surfaced(self, gateway, gateway_client, credentials):
        gateway.fail_on("POST", "/payments", 400, "O cliente informado está inativo")

        result = await gateway_client.create_payment(credentials, payment_request())

        assert not result.ok
        assert result.status_code == 400
        assert result.error == "O cliente informado está inativo"

    async def test_error_without_description_falls_back_to_status(self, credentials):
        client = PaymentGatewayClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))

        result = await client.create_payment(credentials, payment_request())

        assert not result.ok
        assert result.status_code == 500
        assert result.error == "Erro 500 ao chamar POST /payments"

    async def test_timeout_becomes_failure(self, credentials):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = PaymentGatewayClient(transport=httpx.MockTransport(handler))

        result = await client.search_customer(credentials, "98765432100")

        assert not result.ok
        assert result.status_code is None
        assert result.error == "Tempo limite excedido ao chamar GET /customers"

    async def test_connection_error_becomes_failure(self, credentials):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = PaymentGatewayClient(transport=httpx.MockTransport(handler))

        result = await client.cancel_payment(credentials, "pay_000042")

        assert not result.ok
        assert result.error.startswith("Falha de comunicação com o gateway")

    async def test_unexpected_success_body_becomes_failure(self, credentials):
        client = PaymentGatewayClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"status": "PENDING"}))
        )

        result = await client.create_payment(credentials, payment_request())

        assert not result.ok
        assert result.error == "Resposta inesperada do gateway em POST /payments"

