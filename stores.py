"""
Store interfaces over the MongoDB collections the order engine touches.

Stock changes go through single-document conditional updates so that
validation and decrement cannot be split by another request.
"""
import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import utcnow
from errors import NotFoundError

logger = logging.getLogger(__name__)


def to_object_id(value: str, entity: str = "Resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        raise NotFoundError(f"{entity} not found with id of {value}")
    return ObjectId(value)


def find_or_404(db: Database, collection: str, doc_id: str, entity: str) -> Dict[str, Any]:
    doc = db[collection].find_one({"_id": to_object_id(doc_id, entity)})
    if not doc:
        raise NotFoundError(f"{entity} not found")
    return doc


class CatalogStore:
    def __init__(self, db: Database):
        self.products = db["product"]

    def find_by_id(self, product_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(product_id):
            return None
        return self.products.find_one({"_id": ObjectId(product_id)})

    def find_active_by_id(self, product_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(product_id):
            return None
        return self.products.find_one({"_id": ObjectId(product_id), "status": "active"})

    def update_stock_and_sales(self, product_id: str, delta_stock: int, delta_sales: int) -> Optional[Dict[str, Any]]:
        """Unconditional increment; used to give stock back."""
        return self.products.find_one_and_update(
            {"_id": ObjectId(product_id)},
            {"$inc": {"stock": delta_stock, "sales": delta_sales}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def reserve(self, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        """Decrement stock by ``quantity`` only if that much is still available.

        Returns the updated product, or None when the guard failed.
        """
        product = self.products.find_one_and_update(
            {"_id": ObjectId(product_id), "status": "active", "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity, "sales": quantity}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if product is not None and product["stock"] == 0:
            self.products.update_one(
                {"_id": product["_id"], "stock": 0, "status": "active"},
                {"$set": {"status": "out-of-stock"}},
            )
        return product

    def release(self, product_id: str, quantity: int) -> Optional[Dict[str, Any]]:
        product = self.update_stock_and_sales(product_id, quantity, -quantity)
        if product is not None and product["stock"] > 0:
            self.products.update_one(
                {"_id": product["_id"], "status": "out-of-stock", "stock": {"$gt": 0}},
                {"$set": {"status": "active"}},
            )
        return product


class AccountStore:
    def __init__(self, db: Database):
        self.users = db["user"]

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(user_id):
            return None
        return self.users.find_one({"_id": ObjectId(user_id)})

    def clear_cart(self, user_id: str):
        self.users.update_one({"_id": ObjectId(user_id)}, {"$set": {"cart": [], "updated_at": utcnow()}})


class OrderStore:
    def __init__(self, db: Database):
        self.orders = db["order"]

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(payload)
        now = utcnow()
        doc["created_at"] = now
        doc["updated_at"] = now
        result = self.orders.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def find_by_id(self, order_id: str) -> Optional[Dict[str, Any]]:
        if not ObjectId.is_valid(order_id):
            return None
        return self.orders.find_one({"_id": ObjectId(order_id)})

    def append_status_history(
        self,
        order_id: str,
        entry: Dict[str, Any],
        expected_status: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Push a history entry and set ``status`` to the entry's status.

        With ``expected_status`` the write only applies while the order is
        still in that status; None is returned when it was not.
        """
        query: Dict[str, Any] = {"_id": ObjectId(order_id)}
        if expected_status is not None:
            query["status"] = expected_status
        updates = {"status": entry["status"], "updated_at": utcnow()}
        updates.update(fields or {})
        return self.orders.find_one_and_update(
            query,
            {"$set": updates, "$push": {"status_history": entry}},
            return_document=ReturnDocument.AFTER,
        )

    def discard(self, order_id: ObjectId):
        """Remove an order that was never acknowledged to its buyer."""
        self.orders.delete_one({"_id": order_id})


class CounterStore:
    def __init__(self, db: Database):
        self.counters = db["counter"]

    def next_value(self, name: str) -> int:
        doc = self.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["seq"])
