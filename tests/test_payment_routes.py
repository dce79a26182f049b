"""HTTP route tests: orders, payments, webhooks, error mapping."""

import json

import pytest
from fastapi.testclient import TestClient

from app.dependencies import get_orchestrator
from app.main import app
from app.models.schemas import OrderStatus
from app.services.order_service import OrderService
from app.services.payment_orchestrator import PaymentOrchestrator
from app.services.product_service import ProductService
from app.services.providers import build_adapters
from app.services.store_config import StoreConfigResolver
from app.services.store_service import StoreService

MP_DEVICE = "DEV-1"


@pytest.fixture
def client(provider_stub):
    orchestrator = PaymentOrchestrator(StoreConfigResolver(), build_adapters(provider_stub.transport))
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def store():
    stores = StoreService()
    s = stores.create_store("loja", "Loja")
    stores.save_payment_config(
        s.id,
        mp_access_token="APP_USR-test",
        mp_point_enabled=True,
        mp_point_device_id=MP_DEVICE,
    )
    return s


@pytest.fixture
def products(store):
    catalog = ProductService()
    return [
        catalog.create_product(store.id, "Café", "5.99"),
        catalog.create_product(store.id, "Leite", "8.99"),
    ]


@pytest.fixture
def order_id(client, store, products):
    resp = client.post("/api/orders", json={
        "store_id": store.id,
        "items": [
            {"product_id": products[0].id, "quantity": 2},
            {"product_id": products[1].id, "quantity": 1},
        ],
    })
    return resp.json()["order"]["id"]


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestOrderRoutes:

    def test_create_order(self, client, store, products):
        resp = client.post("/api/orders", json={
            "store_id": store.id,
            "items": [
                {"product_id": products[0].id, "quantity": 2},
                {"product_id": products[1].id, "quantity": 1},
            ],
        })
        assert resp.status_code == 201
        data = resp.json()
        assert data["code"] == 1
        assert data["order"]["total"] == "20.97"
        assert data["order"]["status"] == "PENDING"

    def test_missing_product_is_404(self, client, store):
        resp = client.post("/api/orders", json={
            "store_id": store.id, "items": [{"product_id": "ghost", "quantity": 1}],
        })
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

    def test_bad_quantity_is_400(self, client, store, products):
        resp = client.post("/api/orders", json={
            "store_id": store.id, "items": [{"product_id": products[0].id, "quantity": 0}],
        })
        assert resp.status_code == 400
        assert resp.json() == {"code": -1, "error": "validation", "msg": "quantity must be a positive integer"}

    def test_malformed_body_is_400(self, client):
        resp = client.post("/api/orders", json={"items": "nope"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation"

    def test_get_order(self, client, order_id):
        resp = client.get(f"/api/orders/{order_id}")
        assert resp.status_code == 200
        assert len(resp.json()["order"]["items"]) == 2

    def test_get_unknown_order(self, client):
        assert client.get("/api/orders/ghost").status_code == 404


class TestOnlinePaymentRoutes:

    def test_pix(self, client, order_id, provider_stub):
        provider_stub.add("POST", "/v1/payments", {
            "id": 555, "status": "pending",
            "point_of_interaction": {"transaction_data": {"qr_code": "000201", "qr_code_base64": "aGk="}},
        })
        resp = client.post("/api/payments/create-preference", json={"order_id": order_id, "payment_method": "PIX"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["qr_code_text"] == "000201"
        assert data["redirect_url"] is None

    def test_credit_card(self, client, order_id, provider_stub):
        provider_stub.add("POST", "/checkout/preferences", {"id": "pref-1", "init_point": "https://mp/checkout"})
        resp = client.post("/api/payments/create-preference", json={
            "order_id": order_id, "payment_method": "CREDIT_CARD",
        })
        data = resp.json()
        assert data["redirect_url"] == "https://mp/checkout"
        assert data["qr_code_text"] is None

    def test_duplicate_attempt_is_conflict(self, client, order_id, provider_stub):
        provider_stub.add("POST", "/checkout/preferences", {"id": "pref-1", "init_point": "https://mp/checkout"})
        client.post("/api/payments/create-preference", json={"order_id": order_id})
        resp = client.post("/api/payments/create-preference", json={"order_id": order_id})
        assert resp.status_code == 400
        assert resp.json()["error"] == "conflict"

    def test_declined(self, client, order_id, provider_stub):
        provider_stub.add("POST", "/v1/payments", {"id": 1, "status": "rejected"})
        resp = client.post("/api/payments/create-preference", json={"order_id": order_id, "payment_method": "PIX"})
        assert resp.json()["error"] == "declined"

    def test_provider_down_is_502(self, client, order_id, provider_stub):
        provider_stub.add("POST", "/checkout/preferences", {"message": "down"}, status=500)
        resp = client.post("/api/payments/create-preference", json={"order_id": order_id})
        assert resp.status_code == 502
        assert resp.json()["error"] == "communication"

    def test_unknown_payment_method_is_400(self, client, order_id):
        resp = client.post("/api/payments/create-preference", json={"order_id": order_id, "payment_method": "BOLETO"})
        assert resp.status_code == 400


class TestTerminalRoutes:

    def _create(self, client, order_id, provider_stub):
        provider_stub.add(
            "POST", f"/point/integration-api/devices/{MP_DEVICE}/payment-intents",
            {"id": "intent-1", "state": "OPEN"},
        )
        return client.post("/api/payments/point/create", json={"order_id": order_id})

    def test_create(self, client, order_id, provider_stub):
        resp = self._create(client, order_id, provider_stub)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["payment_intent_id"] == "intent-1"

    def test_disabled_provider_is_conflict(self, client, order_id, provider_stub):
        resp = client.post("/api/payments/point/create", json={"order_id": order_id, "provider": "PAGBANK"})
        assert resp.status_code == 400
        assert resp.json()["msg"] == "terminal not enabled for this provider"
        assert provider_stub.requests == []

    def test_status_settles_order(self, client, store, order_id, provider_stub):
        self._create(client, order_id, provider_stub)
        provider_stub.add("GET", "/point/integration-api/payment-intents/intent-1", {"id": "intent-1", "state": "FINISHED"})
        resp = client.get(f"/api/payments/point/status/intent-1?store_id={store.id}")
        data = resp.json()
        assert data["status"] == "FINISHED"
        assert data["order_status"] == "PAID"
        assert data["fallback"] is False

    def test_status_requires_store(self, client):
        assert client.get("/api/payments/point/status/intent-1").status_code == 400

    def test_cancel(self, client, store, order_id, provider_stub):
        self._create(client, order_id, provider_stub)
        provider_stub.add("DELETE", f"/point/integration-api/devices/{MP_DEVICE}/payment-intents/intent-1", {})
        resp = client.delete(f"/api/payments/point/cancel/intent-1?store_id={store.id}")
        assert resp.json()["order_status"] == "CANCELLED"

    def test_cancel_settled_order_is_conflict(self, client, store, order_id, provider_stub):
        self._create(client, order_id, provider_stub)
        provider_stub.add("GET", "/point/integration-api/payment-intents/intent-1", {"id": "intent-1", "state": "FINISHED"})
        client.get(f"/api/payments/point/status/intent-1?store_id={store.id}")

        resp = client.delete(f"/api/payments/point/cancel/intent-1?store_id={store.id}")
        assert resp.status_code == 400
        assert resp.json() == {"code": -1, "error": "conflict", "msg": "order is already PAID"}
        assert provider_stub.calls("DELETE", f"/point/integration-api/devices/{MP_DEVICE}/payment-intents/intent-1") == []


class TestWebhookRoutes:

    def test_mercadopago_webhook_settles(self, client, store, order_id, provider_stub):
        provider_stub.add("POST", "/checkout/preferences", {"id": "pref-1", "init_point": "https://mp/checkout"})
        client.post("/api/payments/create-preference", json={"order_id": order_id})
        provider_stub.add("GET", "/v1/payments/777", {"id": 777, "status": "approved", "external_reference": order_id})

        resp = client.post(
            f"/api/payments/webhook/mercadopago?store_id={store.id}",
            content=json.dumps({"type": "payment", "data": {"id": "777"}}),
        )
        assert resp.status_code == 200
        assert resp.text == "OK"
        assert OrderService().get_order(order_id).status == OrderStatus.PAID

        status = client.get(f"/api/payments/status/{order_id}").json()
        assert status["status"] == "PAID"
        assert status["payment_id"] == "777"

    @pytest.mark.parametrize("path", ["/api/payments/webhook/mercadopago", "/api/payments/webhook/pagbank"])
    def test_garbage_still_acknowledged(self, client, path):
        resp = client.post(path, content=b"\x00not json")
        assert resp.status_code == 200
        assert resp.text == "OK"


class TestDiscoveryRoutes:

    def test_options(self, client, store):
        data = client.get(f"/api/payments/options/{store.id}").json()
        assert data["online"] == ["MERCADOPAGO"]
        assert data["terminal"] == ["MERCADOPAGO"]
        assert "APP_USR-test" not in json.dumps(data)

    def test_options_unknown_store(self, client):
        assert client.get("/api/payments/options/ghost").status_code == 404

    def test_devices(self, client, store, provider_stub):
        provider_stub.add("GET", "/point/integration-api/devices", {"devices": [{"id": MP_DEVICE, "operating_mode": "PDV"}]})
        data = client.get(f"/api/payments/devices/{store.id}").json()
        assert data["devices"] == [{"id": MP_DEVICE, "operating_mode": "PDV"}]

    def test_order_status_unknown(self, client):
        assert client.get("/api/payments/status/ghost").status_code == 404
