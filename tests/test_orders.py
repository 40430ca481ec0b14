import json

import pytest
from bson import ObjectId
from conftest import API, missing_id

from errors import ValidationError
from orders import order_total, snapshot_lines

ADDRESS = {"street": "1 Main St", "city": "Springfield", "state": "IL", "zipCode": "62701", "country": "US"}


def _checkout_body(**overrides):
    body = {"shippingAddress": dict(ADDRESS), "paymentMethod": "card"}
    body.update(overrides)
    return body


def _fill_cart(client, user, product, quantity=1):
    response = client.post(
        f"{API}/cart/add",
        json={"productId": str(product["_id"]), "quantity": quantity, "colour": "red", "size": "md"},
        headers=user["headers"],
    )
    assert response.status_code == 200


def _checkout(client, user, **overrides):
    return client.post(f"{API}/orders/checkout", json=_checkout_body(**overrides), headers=user["headers"])


class TestSnapshot:
    def test_lines_copy_current_price(self):
        pid = ObjectId()
        products = {pid: {"_id": pid, "name": "Tee", "price": 12.5, "in_stock": True, "total_stock": 3, "images": ["a"]}}
        items = [{"product": pid, "quantity": 2, "colour": "red", "size": "md"}]
        order_items, line_items = snapshot_lines(items, products)
        assert order_items[0]["price"] == 12.5
        assert line_items[0].unit_amount == 1250
        assert order_total(order_items) == 25.0

    def test_short_stock_fails_batch(self):
        pid = ObjectId()
        products = {pid: {"_id": pid, "name": "Tee", "price": 1.0, "in_stock": True, "total_stock": 1}}
        with pytest.raises(ValidationError):
            snapshot_lines([{"product": pid, "quantity": 2, "colour": "red", "size": "md"}], products)

    def test_missing_product_fails_batch(self):
        with pytest.raises(ValidationError):
            snapshot_lines([{"product": ObjectId(), "quantity": 1, "colour": "red", "size": "md"}], {})


class TestCheckout:
    def test_empty_cart_rejected(self, client, user, gateway):
        response = _checkout(client, user)
        assert response.status_code == 400
        assert response.json()["message"] == "Cart is empty"
        assert gateway.created == []

    def test_insufficient_stock_aborts(self, client, user, make_product, gateway, db):
        product = make_product(total_stock=5)
        _fill_cart(client, user, product, quantity=3)
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"total_stock": 2}})
        response = _checkout(client, user)
        assert response.status_code == 400
        assert db["order"].count_documents({}) == 0
        assert gateway.created == []

    def test_creates_pending_order_with_price_snapshot(self, client, user, make_product, gateway, db):
        product = make_product(price=15.0)
        _fill_cart(client, user, product, quantity=2)
        response = _checkout(client, user)
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["sessionId"] == "cs_test_1"
        assert data["sessionUrl"] == "https://checkout.test/cs_test_1"
        order = data["order"]
        assert order["status"] == "pending"
        assert order["paymentStatus"] == "pending"
        assert order["totalAmount"] == 30.0
        assert order["items"][0]["price"] == 15.0
        assert order["shippingAddress"]["zipCode"] == "62701"

        db["product"].update_one({"_id": product["_id"]}, {"$set": {"price": 99.0}})
        stored = db["order"].find_one({"_id": ObjectId(order["id"])})
        assert stored["items"][0]["price"] == 15.0
        assert stored["payment_session_id"] == "cs_test_1"

    def test_session_carries_order_metadata(self, client, user, make_product, gateway):
        _fill_cart(client, user, make_product())
        order = _checkout(client, user).json()["data"]["order"]
        created = gateway.created[0]
        assert created["metadata"] == {"orderId": order["id"], "userId": str(user["_id"]), "paymentMethod": "card"}
        assert created["success_url"].endswith("/api/v1/orders/success?session_id={CHECKOUT_SESSION_ID}")
        assert created["cancel_url"].endswith("/api/v1/orders/cancel")

    def test_checkout_leaves_stock_and_cart_alone(self, client, user, make_product, db):
        product = make_product(total_stock=5)
        _fill_cart(client, user, product, quantity=2)
        _checkout(client, user)
        assert db["product"].find_one({"_id": product["_id"]})["total_stock"] == 5
        assert len(db["cart"].find_one({"user": user["_id"]})["items"]) == 1

    def test_incomplete_address_rejected(self, client, user, make_product):
        _fill_cart(client, user, make_product())
        response = _checkout(client, user, shippingAddress=dict(ADDRESS, city=" "))
        assert response.status_code == 400

    def test_gateway_not_configured(self, settings, db, media_host, user, make_product):
        from fastapi.testclient import TestClient

        from main import create_app

        app = create_app(settings, db=db, payment_gateway=None, media_host=media_host)
        with TestClient(app) as client:
            _fill_cart(client, user, make_product())
            response = _checkout(client, user)
        assert response.status_code == 500
        assert response.json()["message"] == "Payment gateway is not configured"


class TestPaymentConfirmation:
    def _paid_order(self, client, user, make_product, gateway, quantity=2):
        product = make_product(total_stock=5, sold_count=1)
        _fill_cart(client, user, product, quantity=quantity)
        data = _checkout(client, user).json()["data"]
        gateway.mark_paid(data["sessionId"])
        return product, data

    def test_success_completes_order(self, client, user, make_product, gateway, db):
        product, data = self._paid_order(client, user, make_product, gateway)
        response = client.get(f"{API}/orders/success", params={"session_id": data["sessionId"]})
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Payment completed successfully"
        assert body["data"]["paid"] is True
        assert body["data"]["orderId"] == data["order"]["id"]

        order = db["order"].find_one({"_id": ObjectId(data["order"]["id"])})
        assert order["payment_status"] == "completed"
        assert order["status"] == "processing"
        assert order["paid_at"] is not None
        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["total_stock"] == 3
        assert stored["sold_count"] == 3
        assert db["cart"].find_one({"user": user["_id"]})["items"] == []

    def test_repeated_confirmation_moves_stock_once(self, client, user, make_product, gateway, db):
        product, data = self._paid_order(client, user, make_product, gateway)
        for _ in range(3):
            response = client.get(f"{API}/orders/success", params={"session_id": data["sessionId"]})
            assert response.json()["data"]["paid"] is True
        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["total_stock"] == 3
        assert stored["sold_count"] == 3

    def test_two_paid_checkouts_for_last_unit(self, client, user, other_user, make_product, gateway, db):
        product = make_product(total_stock=1, sold_count=0, slug="last-one")
        sessions = []
        for buyer in (user, other_user):
            _fill_cart(client, buyer, product, quantity=1)
            sessions.append(_checkout(client, buyer).json()["data"]["sessionId"])
        for session_id in sessions:
            gateway.mark_paid(session_id)
            response = client.get(f"{API}/orders/success", params={"session_id": session_id})
            assert response.json()["data"]["paid"] is True

        stored = db["product"].find_one({"_id": product["_id"]})
        assert stored["total_stock"] == -1
        assert stored["sold_count"] == 2

        listing = client.get(f"{API}/products")
        assert listing.status_code == 200
        assert listing.json()["data"]["products"][0]["totalStock"] == -1
        assert client.get(f"{API}/products/slug/last-one").status_code == 200
        assert client.get(f"{API}/products/{product['_id']}").status_code == 200

    def test_unpaid_session(self, client, user, make_product, db):
        _fill_cart(client, user, make_product())
        data = _checkout(client, user).json()["data"]
        response = client.get(f"{API}/orders/success", params={"session_id": data["sessionId"]})
        body = response.json()
        assert response.status_code == 200
        assert body["message"] == "Payment not completed"
        assert body["data"]["paid"] is False
        assert body["data"]["orderId"] == data["order"]["id"]
        assert db["order"].find_one({"_id": ObjectId(data["order"]["id"])})["payment_status"] == "pending"

    def test_session_id_required(self, client):
        response = client.get(f"{API}/orders/success")
        assert response.status_code == 400
        assert response.json()["message"] == "Session ID is required"

    def test_unknown_session(self, client):
        response = client.get(f"{API}/orders/success", params={"session_id": "cs_nope"})
        assert response.status_code == 500
        assert response.json()["message"] == "Payment provider error"

    def test_cancel_acknowledges(self, client):
        response = client.get(f"{API}/orders/cancel", params={"session_id": "cs_test_9"})
        assert response.status_code == 200
        assert response.json()["data"] == {"sessionId": "cs_test_9"}


class TestWebhook:
    def _post(self, client, payload, signature="valid-signature"):
        return client.post(
            f"{API}/orders/webhook",
            content=json.dumps(payload),
            headers={"Stripe-Signature": signature, "Content-Type": "application/json"},
        )

    def test_completed_event_confirms_order(self, client, user, make_product, gateway, db):
        product = make_product(total_stock=4)
        _fill_cart(client, user, product, quantity=1)
        data = _checkout(client, user).json()["data"]
        gateway.mark_paid(data["sessionId"])

        response = self._post(client, {"type": "checkout.session.completed", "session_id": data["sessionId"]})
        assert response.status_code == 200
        assert response.json()["data"]["orderId"] == data["order"]["id"]
        assert db["product"].find_one({"_id": product["_id"]})["total_stock"] == 3

        # the browser redirect arriving afterwards must not decrement again
        client.get(f"{API}/orders/success", params={"session_id": data["sessionId"]})
        assert db["product"].find_one({"_id": product["_id"]})["total_stock"] == 3

    def test_other_events_are_acknowledged(self, client):
        response = self._post(client, {"type": "payment_intent.created"})
        assert response.status_code == 200
        assert response.json()["data"] == {"received": True, "type": "payment_intent.created", "orderId": None}

    def test_paid_session_without_order_is_acknowledged(self, client, user, make_product, gateway, db):
        _fill_cart(client, user, make_product())
        data = _checkout(client, user).json()["data"]
        gateway.mark_paid(data["sessionId"])
        db["order"].delete_many({})

        response = self._post(client, {"type": "checkout.session.completed", "session_id": data["sessionId"]})
        assert response.status_code == 200
        assert response.json()["data"] == {"received": True, "type": "checkout.session.completed", "orderId": None}

    def test_bad_signature_rejected(self, client):
        response = self._post(client, {"type": "checkout.session.completed"}, signature="forged")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid webhook signature"


class TestOrderQueries:
    def test_my_orders_only_lists_own(self, client, user, other_user, make_product):
        _fill_cart(client, user, make_product())
        _checkout(client, user)
        _fill_cart(client, other_user, make_product())
        _checkout(client, other_user)

        orders = client.get(f"{API}/orders/my-orders", headers=user["headers"]).json()["data"]["orders"]
        assert len(orders) == 1
        assert orders[0]["user"] == str(user["_id"])
        assert orders[0]["items"][0]["product"]["name"].startswith("Product")

    def test_my_order_by_id(self, client, user, other_user, make_product):
        _fill_cart(client, user, make_product())
        order = _checkout(client, user).json()["data"]["order"]
        assert client.get(f"{API}/orders/my-orders/{order['id']}", headers=user["headers"]).status_code == 200
        assert client.get(f"{API}/orders/my-orders/{order['id']}", headers=other_user["headers"]).status_code == 404

    def test_admin_lists_with_status_filter(self, client, user, admin, make_product, gateway):
        _fill_cart(client, user, make_product())
        first = _checkout(client, user).json()["data"]
        _checkout(client, user)
        gateway.mark_paid(first["sessionId"])
        client.get(f"{API}/orders/success", params={"session_id": first["sessionId"]})

        data = client.get(f"{API}/orders", headers=admin["headers"]).json()["data"]
        assert data["pagination"]["total"] == 2
        assert data["orders"][0]["user"]["email"] == user["email"]

        data = client.get(f"{API}/orders", params={"status": "processing"}, headers=admin["headers"]).json()["data"]
        assert [o["id"] for o in data["orders"]] == [first["order"]["id"]]

    def test_admin_list_requires_admin(self, client, user):
        assert client.get(f"{API}/orders", headers=user["headers"]).status_code == 403

    def test_update_status(self, client, user, admin, make_product):
        _fill_cart(client, user, make_product())
        order = _checkout(client, user).json()["data"]["order"]
        response = client.put(f"{API}/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin["headers"])
        assert response.status_code == 200
        assert response.json()["data"]["order"]["status"] == "shipped"

    def test_invalid_status_rejected(self, client, user, admin, make_product):
        _fill_cart(client, user, make_product())
        order = _checkout(client, user).json()["data"]["order"]
        response = client.put(f"{API}/orders/{order['id']}/status", json={"status": "lost"}, headers=admin["headers"])
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "status"

    def test_update_status_missing_order(self, client, admin):
        response = client.put(f"{API}/orders/{missing_id()}/status", json={"status": "shipped"}, headers=admin["headers"])
        assert response.status_code == 404
