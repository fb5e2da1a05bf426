"""HTTP layer: routing, status codes for service errors and JSON shapes."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from storefront.api import create_app
from storefront.data.database import get_db
from storefront.data.models import AddressModel
from storefront.services.cache_bus import CacheInvalidationBus

from tests.conftest import CUSTOMER, OTHER_CUSTOMER


@pytest.fixture
def client(session_factory):
    app = create_app()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as client:
        yield client


@pytest.fixture
def product_id(client):
    response = client.post("/products/", json={"name": "Acacia honey", "price": "39.90", "stock": 5})
    assert response.status_code == 201
    return response.json()["id"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestProducts:
    def test_create_and_get(self, client, product_id):
        body = client.get(f"/products/{product_id}").json()
        assert body["name"] == "Acacia honey"
        # Decimal idzie jako string
        assert body["price"] == "39.90"

    def test_missing_product_is_404(self, client):
        response = client.get("/products/missing")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PRODUCT_NOT_FOUND"

    def test_invalid_price_is_400(self, client):
        response = client.post("/products/", json={"name": "Free", "price": "0"})
        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "price"

    def test_stock_adjustment(self, client, product_id):
        response = client.post(f"/products/{product_id}/stock", json={"delta": -2})
        assert response.json() == {"product_id": product_id, "stock": 3}
        assert client.post(f"/products/{product_id}/stock", json={"delta": -9}).status_code == 409

    def test_listing(self, client, product_id):
        body = client.get("/products/", params={"in_stock": True, "limit": 5}).json()
        assert [p["id"] for p in body["data"]] == [product_id]
        assert body["pagination"]["total"] == 1


class TestCartsAndCheckout:
    def _add_address(self, session_factory, customer_id=CUSTOMER):
        db = session_factory()
        try:
            address = AddressModel(customer_id=customer_id, line1="Miodowa 1", city="Krakow")
            db.add(address)
            db.commit()
            return address.id
        finally:
            db.close()

    def test_add_item_and_checkout(self, client, session_factory, product_id):
        address_id = self._add_address(session_factory)
        cart = client.post(f"/carts/{CUSTOMER}/items", json={"product_id": product_id, "quantity": 2}).json()
        assert cart["total_amount"] == "79.80"

        response = client.post(
            "/checkout/",
            json={
                "cart_id": cart["id"],
                "customer_id": CUSTOMER,
                "shipping_address_id": address_id,
                "payment_method": "credit_card",
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["order"]["status"] == "PENDING"
        assert body["payment_url"] == f"/payment/{body['order_id']}"
        assert client.get(f"/orders/{body['order_id']}").status_code == 200
        assert client.get(f"/carts/{CUSTOMER}").json()["items"] == []

    def test_foreign_cart_item_is_403(self, client, product_id):
        cart = client.post(f"/carts/{CUSTOMER}/items", json={"product_id": product_id}).json()
        item_id = cart["items"][0]["id"]

        response = client.patch(f"/carts/{OTHER_CUSTOMER}/items/{item_id}", json={"quantity": 3})

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "UNAUTHORIZED_CART_ACCESS"

    def test_empty_cart_checkout_is_400(self, client, session_factory):
        address_id = self._add_address(session_factory)
        cart = client.get(f"/carts/{CUSTOMER}").json()
        response = client.post(
            "/checkout/validate",
            json={
                "cart_id": cart["id"],
                "customer_id": CUSTOMER,
                "shipping_address_id": address_id,
                "payment_method": "paypal",
            },
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "CART_EMPTY"

    def test_clear_cart(self, client, product_id):
        client.post(f"/carts/{CUSTOMER}/items", json={"product_id": product_id})
        assert client.delete(f"/carts/{CUSTOMER}/items").json() == {"customer_id": CUSTOMER, "removed": 1}


class TestOrders:
    def test_unknown_order_is_404(self, client):
        assert client.get("/orders/missing").status_code == 404

    def test_stats_on_empty_store(self, client):
        body = client.get("/orders/stats").json()
        assert body["total_orders"] == 0
        assert body["total_revenue"] == "0.00"


class TestLifespan:
    def test_cache_bus_runs_with_the_app(self):
        bus = MagicMock(spec=CacheInvalidationBus)

        with TestClient(create_app(bus=bus)) as client:
            assert client.get("/health").status_code == 200
            bus.start.assert_called_once()
            bus.stop.assert_not_called()

        bus.stop.assert_called_once()
        assert {c.args[0].name for c in bus.attach.call_args_list} == {"catalog", "cart", "orders"}

    def test_app_without_bus_starts(self):
        with TestClient(create_app()) as client:
            assert client.get("/health").json() == {"status": "ok"}
