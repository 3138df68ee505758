"""
API tests over an ASGI transport with the gateway replaced by a double.
"""
import json
from decimal import Decimal
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pix_donations.api.dependencies import (
    get_db_session_factory,
    get_notification_hub,
    get_pix_client,
)
from pix_donations.api.main import app
from pix_donations.core.models import Charge
from pix_donations.core.notifications import DONATION_PAID_EVENT, NotificationHub
from pix_donations.core.store import DonationStore
from pix_donations.errors import ExternalError


@pytest_asyncio.fixture
async def client(
    session_factory: Any, gateway: AsyncMock, hub: NotificationHub
) -> AsyncGenerator[AsyncClient, Any]:
    """Create test HTTP client."""
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_pix_client] = lambda: gateway
    app.dependency_overrides[get_notification_hub] = lambda: hub
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class TestChargeEndpoint:
    """POST /donations/charge"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_charge(
        self, client: AsyncClient, gateway: AsyncMock, store: DonationStore, sample_charge: Charge
    ) -> None:
        gateway.create_charge.return_value = sample_charge

        response = await client.post(
            "/donations/charge", json={"donorTaxId": "123.456.789-01", "amount": "50.00"}
        )

        assert response.status_code == 201
        body = response.json()
        assert body["donorName"] == "Jane Doe"
        assert body["donorRegistryRef"] == "CIM-1234"
        assert Decimal(str(body["amount"])) == Decimal("50.00")
        assert body["txId"] == "abc123"
        assert body["qrCode"] == sample_charge.qr_code
        assert body["copyPaste"] == sample_charge.copy_paste
        assert (await store.scan()).total_results == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_numeric_amount_is_accepted(
        self, client: AsyncClient, gateway: AsyncMock, sample_charge: Charge
    ) -> None:
        gateway.create_charge.return_value = sample_charge

        response = await client.post(
            "/donations/charge", json={"donorTaxId": "12345678901", "amount": 50}
        )

        assert response.status_code == 201
        assert gateway.create_charge.call_args.kwargs["amount"] == Decimal("50.00")

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"donorTaxId": "99999999999", "amount": "50.00"},
            {"donorTaxId": "123", "amount": "50.00"},
            {"donorTaxId": "12345678901", "amount": "-1"},
            {"amount": "50.00"},
        ],
    )
    async def test_rejected_input_is_conflict(
        self, client: AsyncClient, gateway: AsyncMock, payload: dict
    ) -> None:
        response = await client.post("/donations/charge", json=payload)

        assert response.status_code == 409
        assert "message" in response.json()["detail"]
        gateway.create_charge.assert_not_called()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_failure_is_bad_gateway(
        self, client: AsyncClient, gateway: AsyncMock
    ) -> None:
        gateway.create_charge.side_effect = ExternalError("Gateway error", tx_id="abc123")

        response = await client.post(
            "/donations/charge", json={"donorTaxId": "12345678901", "amount": "50.00"}
        )

        assert response.status_code == 502
        assert response.json()["detail"] == {
            "message": "Gateway error",
            "code": "ExternalError",
            "txId": "abc123",
        }


class TestWebhookEndpoints:
    """POST /api/webhook and /api/webhook/pix"""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_base_endpoint(self, client: AsyncClient) -> None:
        response = await client.post("/api/webhook")
        assert response.status_code == 200

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_end_to_end_payment(
        self,
        client: AsyncClient,
        gateway: AsyncMock,
        store: DonationStore,
        hub: NotificationHub,
        sample_charge: Charge,
        confirmed_details: dict,
    ) -> None:
        """Charge, confirming webhook, one stored PAID donation and one push."""
        gateway.create_charge.return_value = sample_charge
        charge = await client.post(
            "/donations/charge", json={"donorTaxId": "12345678901", "amount": "50.00"}
        )
        tx_id = charge.json()["txId"]
        assert tx_id == "abc123"
        assert await store.find_by_tx_id(tx_id) is None

        subscription = hub.subscribe(tx_id)
        gateway.get_charge_details.return_value = confirmed_details
        payload = {
            "pix": [
                {
                    "txid": "abc123",
                    "status": "CONCLUIDA",
                    "valor": {"original": "50.00"},
                    "devedor": {"cpf": "12345678901", "nome": "Jane Doe"},
                }
            ]
        }

        response = await client.post("/api/webhook/pix", json=payload)

        assert response.status_code == 200
        assert response.text == "Pix notifications received and processed successfully."
        stored = await store.find_by_tx_id(tx_id)
        assert stored.status == "PAID"
        assert stored.amount == Decimal("50.00")
        assert stored.donor_name == "Jane Doe"

        message = subscription.queue.get_nowait()
        assert message["event"] == DONATION_PAID_EVENT
        assert json.loads(message["data"])["valor"] == 50.0

        # redelivery is a no-op
        replay = await client.post("/api/webhook/pix", json=payload)
        assert replay.status_code == 200
        assert subscription.queue.empty()
        assert (await store.scan()).total_results == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_removed_charge_without_record(
        self,
        client: AsyncClient,
        gateway: AsyncMock,
        store: DonationStore,
        hub: NotificationHub,
        make_details: Any,
    ) -> None:
        gateway.get_charge_details.return_value = make_details(
            status="REMOVIDA_PELO_USUARIO_RECEBEDOR"
        )
        subscription = hub.subscribe("abc123")

        response = await client.post(
            "/api/webhook/pix",
            json={"pix": [{"txid": "abc123", "status": "REMOVIDA_PELO_USUARIO_RECEBEDOR"}]},
        )

        assert response.status_code == 200
        assert await store.find_by_tx_id("abc123") is None
        assert subscription.queue.empty()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_item_failure_still_returns_200(
        self, client: AsyncClient, gateway: AsyncMock
    ) -> None:
        gateway.get_charge_details.side_effect = ExternalError("Gateway error")

        response = await client.post("/api/webhook/pix", json={"pix": [{"txid": "abc123"}]})

        assert response.status_code == 200
        assert response.text == "No valid Pix notification was processed, or all of them failed."

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_json_still_returns_200(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/webhook/pix",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200


class TestMonitoringEndpoints:
    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_root_and_security_headers(self, client: AsyncClient) -> None:
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "operational"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Request-ID" in response.headers

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_readiness(self, client: AsyncClient, gateway: AsyncMock) -> None:
        gateway.check_credentials.return_value = True

        response = await client.get("/health/ready")

        assert response.status_code == 200
        checks = response.json()["checks"]
        assert checks["database"]["status"] == "healthy"
        assert checks["pix_gateway"]["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_readiness_fails_without_gateway(
        self, client: AsyncClient, gateway: AsyncMock
    ) -> None:
        gateway.check_credentials.side_effect = ExternalError("invalid_client")

        response = await client.get("/health/ready")

        assert response.status_code == 503

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient) -> None:
        response = await client.get("/metrics")
        assert response.status_code == 200
        assert "pix_webhook_items_total" in response.text


class TestLifespan:
    """Startup and shutdown wiring."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_registers_webhook_on_startup(self, mocker: Any, gateway: AsyncMock) -> None:
        from pix_donations.api import main

        init_db = mocker.patch.object(main, "init_db", AsyncMock())
        close_db = mocker.patch.object(main, "close_db", AsyncMock())
        mocker.patch.object(
            app.state.settings, "pix_webhook_url", "https://donations.example.org/api/webhook"
        )
        mocker.patch.object(app.state, "pix_client", gateway)

        async with main.lifespan(app):
            init_db.assert_awaited_once()
            gateway.register_webhook.assert_awaited_once_with(
                "https://donations.example.org/api/webhook"
            )

        gateway.close.assert_awaited_once()
        close_db.assert_awaited_once()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_webhook_registration_failure_does_not_block_startup(
        self, mocker: Any, gateway: AsyncMock
    ) -> None:
        from pix_donations.api import main

        mocker.patch.object(main, "init_db", AsyncMock())
        mocker.patch.object(main, "close_db", AsyncMock())
        mocker.patch.object(
            app.state.settings, "pix_webhook_url", "https://donations.example.org/api/webhook"
        )
        mocker.patch.object(app.state, "pix_client", gateway)
        gateway.register_webhook.side_effect = ExternalError("invalid_webhook_url")

        async with main.lifespan(app):
            pass

        gateway.close.assert_awaited_once()
