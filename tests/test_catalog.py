"""Tests for products and categories."""

import pytest

import catalog
from errors import ConflictError, ForbiddenError, InvalidRequestError, NotFoundError


class TestProducts:
    def test_create_requires_seller(self, db, buyer, seller):
        data = {"title": "Lamp", "description": "Desk lamp", "price": 30, "stock": 4}
        with pytest.raises(ForbiddenError):
            catalog.create_product(db, buyer, data)

        product = catalog.create_product(db, seller, data)
        assert product["seller_id"] == str(seller["_id"])
        assert product["status"] == "active"

    def test_create_checks_category(self, db, seller):
        data = {"title": "Lamp", "description": "Desk lamp", "price": 30, "category_id": "65f000000000000000000000"}
        with pytest.raises(NotFoundError, match="Category"):
            catalog.create_product(db, seller, data)

    def test_listing_filters(self, db, make_product):
        make_product(title="Red Kettle", price=25)
        make_product(title="Blue Kettle", price=45)
        make_product(title="Toaster", price=60)
        make_product(title="Hidden Kettle", price=10, status="inactive")

        kettles = catalog.list_products(db, search="kettle", sort="price_asc")
        assert [p["title"] for p in kettles["items"]] == ["Red Kettle", "Blue Kettle"]

        mid_range = catalog.list_products(db, min_price=30, max_price=60, sort="price_desc")
        assert [p["title"] for p in mid_range["items"]] == ["Toaster", "Blue Kettle"]

        paged = catalog.list_products(db, page=2, limit=2, sort="price_asc")
        assert paged["total"] == 3
        assert [p["title"] for p in paged["items"]] == ["Toaster"]

    def test_search_is_literal(self, db, make_product):
        make_product(title="C++ Primer")
        make_product(title="Cpp Notes")
        assert [p["title"] for p in catalog.list_products(db, search="c++")["items"]] == ["C++ Primer"]

    def test_get_counts_views(self, db, make_product):
        product = make_product()
        catalog.get_product(db, str(product["_id"]))
        assert catalog.get_product(db, str(product["_id"]))["views"] == 2

    def test_stock_drives_status(self, db, seller, make_product):
        product = make_product(stock=3)
        product_id = str(product["_id"])

        assert catalog.update_product(db, product_id, seller, {"stock": 0})["status"] == "out-of-stock"
        assert catalog.update_product(db, product_id, seller, {"stock": 8})["status"] == "active"
        assert catalog.update_product(db, product_id, seller, {"status": "inactive"})["status"] == "inactive"

    def test_owner_or_admin(self, db, admin, make_user, make_product):
        product = make_product()
        with pytest.raises(ForbiddenError):
            catalog.update_product(db, str(product["_id"]), make_user("seller"), {"price": 1})
        assert catalog.update_product(db, str(product["_id"]), admin, {"price": 1})["price"] == 1

        catalog.delete_product(db, str(product["_id"]), admin)
        with pytest.raises(NotFoundError):
            catalog.get_product(db, str(product["_id"]))


    def test_seller_sees_every_status(self, db, seller, make_user, make_product):
        make_product(title="Live")
        make_product(title="Shelved", status="inactive")
        make_product(title="Refused", status="rejected")
        make_product(title="Elsewhere", owner=make_user("seller"))

        mine = catalog.list_seller_products(db, seller)
        assert mine["total"] == 3
        assert {p["title"] for p in mine["items"]} == {"Live", "Shelved", "Refused"}
        rejected = catalog.list_seller_products(db, seller, status="rejected")
        assert [p["title"] for p in rejected["items"]] == ["Refused"]


class TestModeration:
    def test_reject_hides_product(self, db, admin, make_product):
        product = make_product(title="Knockoff")

        rejected = catalog.moderate_product(db, str(product["_id"]), "rejected", admin)

        assert rejected["status"] == "rejected"
        assert catalog.list_products(db)["total"] == 0
        assert catalog.list_all_products(db, status="rejected")["total"] == 1

    def test_approve_without_stock_is_out_of_stock(self, db, admin, make_product):
        product = make_product(stock=0, status="rejected")
        assert catalog.moderate_product(db, str(product["_id"]), "active", admin)["status"] == "out-of-stock"

    def test_unknown_status(self, db, admin, make_product):
        product = make_product()
        with pytest.raises(InvalidRequestError):
            catalog.moderate_product(db, str(product["_id"]), "inactive", admin)
        with pytest.raises(NotFoundError):
            catalog.moderate_product(db, "65f000000000000000000000", "active", admin)

    def test_seller_cannot_relist_rejected(self, db, seller, admin, make_product):
        product = make_product(status="rejected")
        product_id = str(product["_id"])

        with pytest.raises(ForbiddenError, match="admin"):
            catalog.update_product(db, product_id, seller, {"status": "active"})
        assert catalog.update_product(db, product_id, seller, {"price": 12})["status"] == "rejected"
        assert catalog.update_product(db, product_id, admin, {"status": "active"})["status"] == "active"

    def test_admin_listing_search(self, db, make_product):
        make_product(title="Brass Lamp")
        make_product(title="Oak Table", status="inactive")
        assert [p["title"] for p in catalog.list_all_products(db, search="oak")["items"]] == ["Oak Table"]

class TestCategories:
    def test_slug_and_duplicates(self, db):
        category = catalog.create_category(db, {"name": "Home & Garden"})
        assert category["slug"] == "home--garden"
        with pytest.raises(ConflictError):
            catalog.create_category(db, {"name": "Home & Garden"})

    def test_products_by_category(self, db, make_product):
        category = catalog.create_category(db, {"name": "Kitchen", "slug": "kitchen"})
        make_product(title="Kettle", category_id=str(category["_id"]))
        make_product(title="Hammer")

        result = catalog.list_products(db, category=str(category["_id"]))
        assert [p["title"] for p in result["items"]] == ["Kettle"]
        assert [c["slug"] for c in catalog.list_categories(db)] == ["kitchen"]
