"""Tests for the FastAPI API."""

import pytest
from fastapi.testclient import TestClient

import catalog
import config
import database
from main import app, get_db


class TestHealthAndErrors:
    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_unknown_route(self, api_client):
        response = api_client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": {"kind": "not_found", "message": "Not Found - /api/nothing-here"},
        }

    def test_validation_error_shape(self, api_client):
        response = api_client.post("/api/auth/register", json={"email": "not-an-email"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["kind"] == "invalid_request"
        assert body["error"]["message"].startswith("Invalid input data")

    def test_database_not_configured(self, monkeypatch):
        monkeypatch.setattr(database, "db", None)
        response = TestClient(app).get("/api/products")
        assert response.status_code == 500
        assert response.json()["error"] == {"kind": "internal", "message": "Database not configured"}

    @pytest.fixture
    def failing_listing(self, db, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("cursor exploded")

        monkeypatch.setattr(catalog, "list_products", broken)
        app.dependency_overrides[get_db] = lambda: db
        yield TestClient(app, raise_server_exceptions=False)
        app.dependency_overrides.clear()

    def test_unhandled_error_hides_detail(self, failing_listing, monkeypatch):
        monkeypatch.setattr(config, "APP_ENV", "production")
        response = failing_listing.get("/api/products")
        assert response.status_code == 500
        assert response.json() == {"success": False, "error": {"kind": "internal", "message": "Server Error"}}

    def test_unhandled_error_detail_in_development(self, failing_listing, monkeypatch):
        monkeypatch.setattr(config, "APP_ENV", "development")
        error = failing_listing.get("/api/products").json()["error"]
        assert error["message"] == "Server Error"
        assert "cursor exploded" in error["detail"]


class TestAuthRoutes:
    def test_register_login_me(self, api_client):
        response = api_client.post("/api/auth/register", json={
            "first_name": "Linus",
            "last_name": "Seller",
            "email": "linus@marketplace.io",
            "password": "kernel42",
            "role": "seller",
        })
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "seller"
        assert "password_hash" not in response.json()["user"]

        response = api_client.post("/api/auth/login", json={"email": "linus@marketplace.io", "password": "kernel42"})
        assert response.status_code == 200
        token = response.json()["token"]

        response = api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "linus@marketplace.io"

    def test_wrong_password(self, api_client, buyer):
        response = api_client.post("/api/auth/login", json={"email": buyer["email"], "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json()["error"]["kind"] == "unauthorized"

    def test_missing_token(self, api_client):
        response = api_client.get("/api/orders")
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Not authorized to access this route"

    def test_bad_token(self, api_client):
        response = api_client.get("/api/orders", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_suspended_user_rejected(self, api_client, make_user, auth_headers):
        user = make_user("buyer", account_status="suspended")
        response = api_client.get("/api/auth/me", headers=auth_headers(user))
        assert response.status_code == 403

    def test_role_guard(self, api_client, buyer, auth_headers):
        response = api_client.post(
            "/api/products",
            json={"title": "Lamp", "description": "Desk lamp", "price": 30, "stock": 4},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "forbidden"


class TestOrderRoutes:
    def test_checkout_and_fulfilment(self, api_client, db, buyer, seller, make_product, order_request, auth_headers):
        product = make_product(price=20, stock=5)

        response = api_client.post("/api/orders", json=order_request((product, 2)), headers=auth_headers(buyer))
        assert response.status_code == 201
        order = response.json()["data"]
        assert order["total_amount"] == 52.0
        assert order["order_number"].startswith("ORD")

        response = api_client.get(f"/api/orders/{order['id']}", headers=auth_headers(seller))
        assert response.status_code == 200

        response = api_client.get("/api/orders/seller/mine", headers=auth_headers(seller))
        assert response.status_code == 200
        assert response.json()["total"] == 1

        response = api_client.put(
            f"/api/orders/{order['id']}/status",
            json={"status": "processing", "note": "Packing"},
            headers=auth_headers(seller),
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "processing"

        response = api_client.put(f"/api/orders/{order['id']}/cancel", json={}, headers=auth_headers(buyer))
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Order cannot be cancelled at this stage"

        response = api_client.put(
            f"/api/orders/{order['id']}/status", json={"status": "pending"}, headers=auth_headers(seller)
        )
        assert response.status_code == 400
        assert response.json()["error"]["kind"] == "invalid_request"

    def test_insufficient_stock(self, api_client, db, buyer, make_product, order_request, auth_headers):
        product = make_product(price=20, stock=1)

        response = api_client.post("/api/orders", json=order_request((product, 2)), headers=auth_headers(buyer))

        assert response.status_code == 400
        assert response.json()["error"] == {"kind": "invalid_request", "message": "Insufficient stock for product: Widget"}
        assert db["order"].count_documents({}) == 0

    def test_buyer_cancel(self, api_client, db, buyer, make_product, order_request, auth_headers):
        product = make_product(stock=5)
        order = api_client.post("/api/orders", json=order_request((product, 3)), headers=auth_headers(buyer)).json()["data"]

        response = api_client.put(
            f"/api/orders/{order['id']}/cancel", json={"reason": "Ordered twice"}, headers=auth_headers(buyer)
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert db["product"].find_one({"_id": product["_id"]})["stock"] == 5

    def test_admin_listing(self, api_client, buyer, admin, make_product, order_request, auth_headers):
        api_client.post("/api/orders", json=order_request((make_product(), 1)), headers=auth_headers(buyer))

        assert api_client.get("/api/orders/admin/all", headers=auth_headers(buyer)).status_code == 403
        response = api_client.get("/api/orders/admin/all?status=pending", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_unknown_order(self, api_client, buyer, auth_headers):
        response = api_client.get("/api/orders/not-an-id", headers=auth_headers(buyer))
        assert response.status_code == 404
        assert response.json()["error"]["kind"] == "not_found"


class TestCouponRoutes:
    def test_validate(self, api_client, buyer, make_coupon, auth_headers):
        make_coupon("TENOFF", max_discount_amount=5)

        response = api_client.post(
            "/api/coupons/validate", json={"code": "tenoff", "order_amount": 100}, headers=auth_headers(buyer)
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["discount"] == 5
        assert data["final_amount"] == 95

    def test_create_and_list(self, api_client, seller, auth_headers):
        response = api_client.post("/api/coupons", json={
            "code": "fall10",
            "description": "Fall sale",
            "discount_type": "percentage",
            "discount_value": 10,
            "start_date": "2026-09-01T00:00:00Z",
            "expiry_date": "2026-12-01T00:00:00Z",
        }, headers=auth_headers(seller))
        assert response.status_code == 201
        assert response.json()["data"]["code"] == "FALL10"

        response = api_client.get("/api/coupons", headers=auth_headers(seller))
        assert response.json()["total"] == 1


class TestReviewRoutes:
    def test_moderated_review_updates_rating(self, api_client, db, buyer, admin, make_product, auth_headers):
        product = make_product()

        response = api_client.post(
            "/api/reviews",
            json={"product_id": str(product["_id"]), "rating": 4, "comment": "Does the job"},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 201
        review_id = response.json()["data"]["id"]

        pending = api_client.get("/api/reviews/admin/pending", headers=auth_headers(admin))
        assert pending.json()["count"] == 1

        response = api_client.put(
            f"/api/reviews/{review_id}/moderate", json={"status": "approved"}, headers=auth_headers(admin)
        )
        assert response.status_code == 200

        listing = api_client.get(f"/api/reviews/product/{product['_id']}").json()
        assert listing["total"] == 1
        stored = db["product"].find_one({"_id": product["_id"]})
        assert (stored["rating"], stored["review_count"]) == (4.0, 1)

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_bounds(self, api_client, buyer, make_product, auth_headers, rating):
        response = api_client.post(
            "/api/reviews",
            json={"product_id": str(make_product()["_id"]), "rating": rating, "comment": "?"},
            headers=auth_headers(buyer),
        )
        assert response.status_code == 400


class TestAccountRoutes:
    def test_cart_roundtrip(self, api_client, buyer, make_product, auth_headers):
        product = make_product(price=12.5, stock=5)
        headers = auth_headers(buyer)

        response = api_client.post("/api/users/cart", json={"product_id": str(product["_id"]), "quantity": 2}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["subtotal"] == 25.0

        response = api_client.delete("/api/users/cart", headers=headers)
        assert response.status_code == 200
        assert api_client.get("/api/users/cart", headers=headers).json()["data"]["item_count"] == 0

    def test_notifications_after_order(self, api_client, buyer, make_product, order_request, auth_headers):
        api_client.post("/api/orders", json=order_request((make_product(), 1)), headers=auth_headers(buyer))

        response = api_client.get("/api/notifications", headers=auth_headers(buyer))
        assert response.status_code == 200
        assert response.json()["unread_count"] == 1

        response = api_client.put("/api/notifications/read-all", headers=auth_headers(buyer))
        assert response.status_code == 200
        assert api_client.get("/api/notifications", headers=auth_headers(buyer)).json()["unread_count"] == 0

    def test_update_address(self, api_client, buyer, address, auth_headers):
        headers = auth_headers(buyer)
        api_client.post("/api/users/addresses", json=address, headers=headers)

        response = api_client.put("/api/users/addresses/0", json={"city": "Capital City"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"][0]["city"] == "Capital City"

        response = api_client.put("/api/users/addresses/3", json={"city": "Nowhere"}, headers=headers)
        assert response.status_code == 404


class TestSellerProductRoutes:
    def test_my_products_include_every_status(self, api_client, seller, buyer, make_product, auth_headers):
        make_product(title="Live")
        make_product(title="Refused", status="rejected")

        response = api_client.get("/api/products/seller/mine", headers=auth_headers(seller))
        assert response.status_code == 200
        assert {p["title"] for p in response.json()["data"]} == {"Live", "Refused"}

        response = api_client.get("/api/products/seller/mine", params={"status": "rejected"}, headers=auth_headers(seller))
        assert [p["title"] for p in response.json()["data"]] == ["Refused"]
        assert api_client.get("/api/products/seller/mine", headers=auth_headers(buyer)).status_code == 403

    def test_sellers_cannot_set_rejected(self, api_client, seller, make_product, auth_headers):
        product = make_product()
        response = api_client.put(f"/api/products/{product['_id']}", json={"status": "rejected"}, headers=auth_headers(seller))
        assert response.status_code == 400


class TestAdminRoutes:
    def test_suspended_user_is_locked_out(self, api_client, buyer, admin, auth_headers):
        buyer_headers = auth_headers(buyer)
        assert api_client.get("/api/auth/me", headers=buyer_headers).status_code == 200

        response = api_client.put(f"/api/admin/users/{buyer['_id']}/status", json={"status": "suspended"}, headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["data"]["account_status"] == "suspended"
        assert "password_hash" not in response.json()["data"]

        response = api_client.get("/api/auth/me", headers=buyer_headers)
        assert response.status_code == 403
        assert response.json()["error"]["kind"] == "forbidden"

    def test_status_vocabulary(self, api_client, buyer, admin, auth_headers):
        response = api_client.put(f"/api/admin/users/{buyer['_id']}/status", json={"status": "banned"}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_list_and_delete_users(self, api_client, buyer, seller, admin, auth_headers):
        headers = auth_headers(admin)

        response = api_client.get("/api/admin/users", params={"role": "buyer"}, headers=headers)
        assert response.status_code == 200
        assert [u["id"] for u in response.json()["data"]] == [str(buyer["_id"])]

        assert api_client.delete(f"/api/admin/users/{buyer['_id']}", headers=headers).status_code == 200
        assert api_client.delete(f"/api/admin/users/{admin['_id']}", headers=headers).status_code == 403
        assert api_client.get("/api/admin/users", headers=auth_headers(seller)).status_code == 403

    def test_moderate_product(self, api_client, admin, make_product, auth_headers):
        product = make_product(title="Knockoff")
        headers = auth_headers(admin)

        response = api_client.put(f"/api/admin/products/{product['_id']}/moderate", json={"status": "rejected"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "rejected"
        assert api_client.get("/api/products").json()["total"] == 0

        response = api_client.get("/api/admin/products", params={"status": "rejected"}, headers=headers)
        assert [p["title"] for p in response.json()["data"]] == ["Knockoff"]

        response = api_client.put(f"/api/admin/products/{product['_id']}/moderate", json={"status": "inactive"}, headers=headers)
        assert response.status_code == 400


class TestMessageRoutes:
    def test_conversation_flow(self, api_client, buyer, seller, make_product, auth_headers):
        product = make_product()
        buyer_headers = auth_headers(buyer)
        seller_headers = auth_headers(seller)

        response = api_client.post(
            "/api/messages/conversations",
            json={"participant_id": str(seller["_id"]), "product_id": str(product["_id"])},
            headers=buyer_headers,
        )
        assert response.status_code == 200
        conversation_id = response.json()["data"]["id"]

        response = api_client.post(f"/api/messages/{conversation_id}", json={"content": "Does it come in blue?"}, headers=buyer_headers)
        assert response.status_code == 201
        message_id = response.json()["data"]["id"]

        inbox = api_client.get("/api/messages/conversations", headers=seller_headers).json()["data"]
        assert [c["id"] for c in inbox] == [conversation_id]
        assert inbox[0]["unread_count"] == 1

        history = api_client.get(f"/api/messages/{conversation_id}", headers=seller_headers).json()
        assert [m["content"] for m in history["data"]] == ["Does it come in blue?"]

        assert api_client.put(f"/api/messages/{conversation_id}/read", headers=seller_headers).status_code == 200
        inbox = api_client.get("/api/messages/conversations", headers=seller_headers).json()["data"]
        assert inbox[0]["unread_count"] == 0

        assert api_client.delete(f"/api/messages/{message_id}", headers=seller_headers).status_code == 403
        assert api_client.delete(f"/api/messages/{message_id}", headers=buyer_headers).status_code == 200

    def test_outsider_and_empty_message(self, api_client, buyer, seller, make_user, auth_headers):
        response = api_client.post("/api/messages/conversations", json={"participant_id": str(seller["_id"])}, headers=auth_headers(buyer))
        conversation_id = response.json()["data"]["id"]

        outsider = auth_headers(make_user("buyer"))
        assert api_client.get(f"/api/messages/{conversation_id}", headers=outsider).status_code == 403

        response = api_client.post(f"/api/messages/{conversation_id}", json={"content": ""}, headers=auth_headers(buyer))
        assert response.status_code == 400
