"""
Coupon discounts

The calculator itself is pure (``calculate_discount``/``is_valid``/...);
``validate_coupon`` resolves a code against the database for a buyer and a
cart, and ``redeem``/``unredeem`` move the usage counters atomically.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import as_utc, create_document, utcnow
from errors import ConflictError, ForbiddenError, InvalidRequestError
from schemas import Coupon
from stores import find_or_404, to_object_id

logger = logging.getLogger(__name__)


def calculate_discount(coupon: Dict[str, Any], order_amount: float) -> float:
    if order_amount < coupon.get("min_purchase_amount", 0):
        return 0
    if coupon["discount_type"] == "percentage":
        discount = order_amount * coupon["discount_value"] / 100
        ceiling = coupon.get("max_discount_amount")
        if ceiling is not None and discount > ceiling:
            discount = ceiling
    else:
        discount = coupon["discount_value"]
    return min(discount, order_amount)


def is_valid(coupon: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    limit = coupon.get("usage_limit")
    return (
        coupon.get("is_active", False)
        and as_utc(coupon["start_date"]) <= now <= as_utc(coupon["expiry_date"])
        and (limit is None or coupon.get("used_count", 0) < limit)
    )


def can_user_use(coupon: Dict[str, Any], user_id: str) -> bool:
    usage = (coupon.get("used_by") or {}).get(user_id)
    if not usage:
        return True
    return usage.get("usage_count", 0) < coupon.get("user_usage_limit", 1)


def check_applicability(coupon: Dict[str, Any], products: Iterable[Dict[str, Any]]):
    """Raise unless the cart products satisfy the coupon's product/category lists."""
    products = list(products)
    product_ids = {str(p["_id"]) for p in products}
    category_ids = {p.get("category_id") for p in products if p.get("category_id")}

    excluded = set(coupon.get("excluded_products") or [])
    if excluded & product_ids:
        raise InvalidRequestError("Some products in your cart are excluded from this coupon")

    allowed_products = set(coupon.get("applicable_products") or [])
    allowed_categories = set(coupon.get("applicable_categories") or [])
    if allowed_products or allowed_categories:
        if not (allowed_products & product_ids or allowed_categories & category_ids):
            raise InvalidRequestError("This coupon is not applicable to the products in your cart")


def find_by_code(db: Database, code: str) -> Optional[Dict[str, Any]]:
    return db["coupon"].find_one({"code": code.strip().upper()})


def quote(db: Database, code: str, user_id: str, order_amount: float, products: List[Dict[str, Any]]):
    """Resolve ``code`` for this buyer and cart; returns ``(coupon, discount)``."""
    coupon = find_by_code(db, code)
    if not coupon:
        raise InvalidRequestError("Invalid coupon code")
    if not is_valid(coupon):
        raise InvalidRequestError("This coupon is expired or inactive")
    if not can_user_use(coupon, user_id):
        raise InvalidRequestError("You have exceeded the usage limit for this coupon")
    if order_amount < coupon.get("min_purchase_amount", 0):
        raise InvalidRequestError(f"Minimum purchase amount of ${coupon['min_purchase_amount']} required")
    check_applicability(coupon, products)
    return coupon, calculate_discount(coupon, order_amount)


def validate_coupon(db: Database, code: str, user_id: str, order_amount: float, product_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    products = []
    if product_ids:
        oids = [to_object_id(pid, "Product") for pid in product_ids]
        products = list(db["product"].find({"_id": {"$in": oids}}))
    coupon, discount = quote(db, code, user_id, order_amount, products)
    return {
        "coupon_id": str(coupon["_id"]),
        "code": coupon["code"],
        "discount": discount,
        "final_amount": order_amount - discount,
    }


def redeem(db: Database, coupon: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """Count one use of ``coupon`` by ``user_id`` if both limits still allow it."""
    now = utcnow()
    usage_key = f"used_by.{user_id}"
    query: Dict[str, Any] = {
        "_id": coupon["_id"],
        "is_active": True,
        "$or": [
            {usage_key: {"$exists": False}},
            {f"{usage_key}.usage_count": {"$lt": coupon.get("user_usage_limit", 1)}},
        ],
    }
    if coupon.get("usage_limit") is not None:
        query["used_count"] = {"$lt": coupon["usage_limit"]}
    update = {
        "$inc": {"used_count": 1, f"{usage_key}.usage_count": 1},
        "$set": {f"{usage_key}.last_used": now, "updated_at": now},
    }
    updated = db["coupon"].find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    if updated is None:
        raise ConflictError(f"Coupon {coupon['code']} is no longer available")
    return updated


def unredeem(db: Database, coupon: Dict[str, Any], user_id: str):
    usage_key = f"used_by.{user_id}"
    db["coupon"].update_one(
        {"_id": coupon["_id"], f"{usage_key}.usage_count": {"$gt": 0}},
        {"$inc": {"used_count": -1, f"{usage_key}.usage_count": -1}, "$set": {"updated_at": utcnow()}},
    )


# Management

def _check_owner(coupon: Dict[str, Any], user: Dict[str, Any], action: str):
    if user.get("role") == "seller" and coupon["created_by"] != str(user["_id"]):
        raise ForbiddenError(f"Not authorized to {action} this coupon")


def _check_window(start_date: datetime, expiry_date: datetime):
    if as_utc(expiry_date) < as_utc(start_date):
        raise InvalidRequestError("Expiry date must be after start date")


def create_coupon(db: Database, user: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(data)
    data["code"] = data["code"].strip().upper()
    _check_window(data["start_date"], data["expiry_date"])
    if find_by_code(db, data["code"]):
        raise ConflictError("Coupon code already exists")
    coupon = Coupon(**data, created_by=str(user["_id"]))
    try:
        coupon_id = create_document(db, "coupon", coupon)
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists")
    logger.info("Coupon %s created by %s", coupon.code, user["_id"])
    return db["coupon"].find_one({"_id": to_object_id(coupon_id)})


def list_coupons(db: Database, user: Dict[str, Any], is_active: Optional[bool] = None, page: int = 1, limit: int = 10) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if user.get("role") != "admin":
        query["created_by"] = str(user["_id"])
    if is_active is not None:
        query["is_active"] = is_active
    skip = (max(page, 1) - 1) * limit
    items = list(db["coupon"].find(query).sort("created_at", DESCENDING).skip(skip).limit(limit))
    return {"items": items, "total": db["coupon"].count_documents(query)}


def get_coupon(db: Database, coupon_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    _check_owner(coupon, user, "access")
    return coupon


def update_coupon(db: Database, coupon_id: str, user: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    _check_owner(coupon, user, "update")
    if not updates:
        raise InvalidRequestError("No updates provided")
    if "code" in updates:
        updates["code"] = updates["code"].strip().upper()
    _check_window(updates.get("start_date", coupon["start_date"]), updates.get("expiry_date", coupon["expiry_date"]))
    updates["updated_at"] = utcnow()
    try:
        return db["coupon"].find_one_and_update(
            {"_id": coupon["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError("Coupon code already exists")


def delete_coupon(db: Database, coupon_id: str, user: Dict[str, Any]):
    coupon = find_or_404(db, "coupon", coupon_id, "Coupon")
    _check_owner(coupon, user, "delete")
    db["coupon"].delete_one({"_id": coupon["_id"]})
