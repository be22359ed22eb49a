"""Product and category catalog."""
import logging
import re
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, utcnow
from errors import ConflictError, ForbiddenError, InvalidRequestError
from schemas import Category as CategorySchema, Product as ProductSchema
from stores import find_or_404, to_object_id

logger = logging.getLogger(__name__)

MODERATION_STATUSES = ("active", "rejected")

PRODUCT_SORTS = {
    "newest": [("created_at", DESCENDING)],
    "price_asc": [("price", ASCENDING)],
    "price_desc": [("price", DESCENDING)],
    "rating_desc": [("rating", DESCENDING)],
    "popular": [("sales", DESCENDING)],
}


def slugify(name: str) -> str:
    return re.sub(r"[^\w-]+", "", name.strip().lower().replace(" ", "-"))


def _search_clause(search: str) -> list:
    pattern = re.escape(search)
    return [
        {"title": {"$regex": pattern, "$options": "i"}},
        {"description": {"$regex": pattern, "$options": "i"}},
        {"tags": {"$regex": pattern, "$options": "i"}},
    ]


def _page(db: Database, query: Dict[str, Any], sort, page: int, limit: int) -> Dict[str, Any]:
    page = max(page, 1)
    items = list(db["product"].find(query).sort(sort).skip((page - 1) * limit).limit(limit))
    return {"items": items, "total": db["product"].count_documents(query), "page": page, "limit": limit}


def list_products(
    db: Database,
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    seller_id: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 25,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {"status": "active"}
    if category:
        query["category_id"] = category
    if seller_id:
        query["seller_id"] = seller_id
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = float(min_price)
        if max_price is not None:
            price_cond["$lte"] = float(max_price)
        query["price"] = price_cond
    if search:
        query["$or"] = _search_clause(search)
    return _page(db, query, PRODUCT_SORTS.get(sort or "newest", PRODUCT_SORTS["newest"]), page, limit)


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = find_or_404(db, "product", product_id, "Product")
    db["product"].update_one({"_id": product["_id"]}, {"$inc": {"views": 1}})
    product["views"] = product.get("views", 0) + 1
    return product


def create_product(db: Database, user: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
    if user.get("role") not in ("seller", "admin"):
        raise ForbiddenError("Not authorized to create products")
    if data.get("category_id"):
        find_or_404(db, "category", data["category_id"], "Category")
    product = ProductSchema(**data, seller_id=str(user["_id"]))
    product_id = create_document(db, "product", product)
    logger.info("Product %s created by %s", product_id, user["_id"])
    return db["product"].find_one({"_id": to_object_id(product_id)})


def _owned(db: Database, product_id: str, user: Dict[str, Any], action: str) -> Dict[str, Any]:
    product = find_or_404(db, "product", product_id, "Product")
    if product["seller_id"] != str(user["_id"]) and user.get("role") != "admin":
        raise ForbiddenError(f"Not authorized to {action} this product")
    return product


def update_product(db: Database, product_id: str, user: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    product = _owned(db, product_id, user, "update")
    if not updates:
        raise InvalidRequestError("No updates provided")
    if product.get("status") == "rejected" and "status" in updates and user.get("role") != "admin":
        raise ForbiddenError("Rejected products can only be re-listed by an admin")
    status = updates.get("status", product.get("status"))
    stock = updates.get("stock", product.get("stock", 0))
    if status == "active" and stock == 0:
        updates["status"] = "out-of-stock"
    elif status == "out-of-stock" and stock > 0 and "status" not in updates:
        updates["status"] = "active"
    updates["updated_at"] = utcnow()
    return db["product"].find_one_and_update(
        {"_id": product["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )


def delete_product(db: Database, product_id: str, user: Dict[str, Any]):
    product = _owned(db, product_id, user, "delete")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted by %s", product_id, user["_id"])


def list_seller_products(db: Database, user: Dict[str, Any], status: Optional[str] = None, page: int = 1, limit: int = 25) -> Dict[str, Any]:
    """Every product the seller owns, whatever its status."""
    query: Dict[str, Any] = {"seller_id": str(user["_id"])}
    if status:
        query["status"] = status
    return _page(db, query, PRODUCT_SORTS["newest"], page, limit)


def list_all_products(db: Database, status: Optional[str] = None, search: Optional[str] = None, page: int = 1, limit: int = 25) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    if search:
        query["$or"] = _search_clause(search)
    return _page(db, query, PRODUCT_SORTS["newest"], page, limit)


def moderate_product(db: Database, product_id: str, status: str, admin: Dict[str, Any]) -> Dict[str, Any]:
    """Approve (``active``) or reject a listing.

    An approved listing with no stock left goes straight to ``out-of-stock``.
    """
    if status not in MODERATION_STATUSES:
        raise InvalidRequestError("Invalid status")
    product = find_or_404(db, "product", product_id, "Product")
    if status == "active" and product.get("stock", 0) == 0:
        status = "out-of-stock"
    updated = db["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Product %s moderated to %s by %s", product_id, status, admin["_id"])
    return updated


def list_categories(db: Database):
    return get_documents(db, "category", {"is_active": True}, sort=[("name", ASCENDING)])


def create_category(db: Database, data: Dict[str, Any]) -> Dict[str, Any]:
    slug = data.get("slug") or slugify(data["name"])
    if db["category"].find_one({"$or": [{"name": data["name"]}, {"slug": slug}]}):
        raise ConflictError("Category already exists")
    category = CategorySchema(name=data["name"], slug=slug, description=data.get("description"))
    try:
        category_id = create_document(db, "category", category)
    except DuplicateKeyError:
        raise ConflictError("Category already exists")
    return db["category"].find_one({"_id": to_object_id(category_id)})
