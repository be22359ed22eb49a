"""Pytest fixtures for marketplace tests."""

from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from accounts import create_token, pwd_context
from database import create_document, ensure_indexes, utcnow
from schemas import Product, User
from stores import to_object_id

PASSWORD = "secret123"
PASSWORD_HASH = pwd_context.hash(PASSWORD)

ADDRESS = {
    "full_name": "Ada Buyer",
    "phone": "+1-555-0100",
    "address_line1": "1 Market Street",
    "city": "Springfield",
    "state": "IL",
    "postal_code": "62701",
    "country": "US",
}


@pytest.fixture
def db():
    """A fresh in-memory Mongo database with the production indexes."""
    client = mongomock.MongoClient()
    database = client["marketplace_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def make_user(db):
    """Insert a user and return the stored document."""
    counter = {"n": 0}

    def factory(role="buyer", email=None, account_status="active", **fields):
        counter["n"] += 1
        user = User(
            first_name=role.title(),
            last_name=str(counter["n"]),
            email=email or f"{role}{counter['n']}@marketplace.io",
            password_hash=PASSWORD_HASH,
            role=role,
            account_status=account_status,
            **fields,
        )
        user_id = create_document(db, "user", user)
        return db["user"].find_one({"_id": to_object_id(user_id)})

    return factory


@pytest.fixture
def buyer(make_user):
    return make_user("buyer")


@pytest.fixture
def seller(make_user):
    return make_user("seller", shop_name="Widget Works")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_product(db, seller):
    """Insert a product owned by ``seller`` unless another owner is given."""

    def factory(price=20.0, stock=5, title="Widget", owner=None, **fields):
        owner = owner or seller
        product = Product(
            title=title,
            description=f"{title} description",
            price=price,
            stock=stock,
            seller_id=str(owner["_id"]),
            **fields,
        )
        product_id = create_document(db, "product", product)
        return db["product"].find_one({"_id": to_object_id(product_id)})

    return factory


@pytest.fixture
def make_coupon(db, seller):
    """Insert a coupon valid from yesterday until next week."""

    def factory(code="SAVE10", **fields):
        now = utcnow()
        doc = {
            "code": code,
            "description": f"{code} promotion",
            "discount_type": "percentage",
            "discount_value": 10,
            "min_purchase_amount": 0,
            "max_discount_amount": None,
            "start_date": now - timedelta(days=1),
            "expiry_date": now + timedelta(days=7),
            "usage_limit": None,
            "used_count": 0,
            "user_usage_limit": 1,
            "used_by": {},
            "applicable_categories": [],
            "applicable_products": [],
            "excluded_products": [],
            "is_active": True,
            "created_by": str(seller["_id"]),
        }
        doc.update(fields)
        create_document(db, "coupon", doc)
        return db["coupon"].find_one({"code": code})

    return factory


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def order_request():
    """Build the body of an order creation request from (product, quantity) pairs."""

    def build(*lines, **fields):
        body = {
            "items": [{"product_id": str(product["_id"]), "quantity": quantity} for product, quantity in lines],
            "shipping_address": dict(ADDRESS),
            "payment_method": "credit_card",
        }
        body.update(fields)
        return body

    return build


@pytest.fixture
def auth_headers():
    def headers(user):
        return {"Authorization": f"Bearer {create_token(user)}"}

    return headers


@pytest.fixture
def api_client(db):
    """Test client whose requests hit the in-memory database."""
    from main import app, get_db

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()
