"""
Product reviews

A product's ``rating`` and ``review_count`` are denormalized from its
approved reviews. Every write below recomputes them before returning, so a
read after any review write sees the current aggregate.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, utcnow
from errors import ForbiddenError, InvalidRequestError
from schemas import Review
from stores import find_or_404, to_object_id

logger = logging.getLogger(__name__)

REVIEW_SORTS = {
    "newest": [("created_at", DESCENDING)],
    "rating-high": [("rating", DESCENDING), ("created_at", DESCENDING)],
    "rating-low": [("rating", ASCENDING), ("created_at", DESCENDING)],
}


def _one_decimal(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def recompute_rating(db: Database, product_id: str) -> Dict[str, Any]:
    stats = list(db["review"].aggregate([
        {"$match": {"product_id": product_id, "status": "approved"}},
        {"$group": {"_id": "$product_id", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    if stats:
        rating, count = _one_decimal(stats[0]["avg"]), stats[0]["count"]
    else:
        rating, count = 0, 0
    db["product"].update_one(
        {"_id": to_object_id(product_id, "Product")},
        {"$set": {"rating": rating, "review_count": count}},
    )
    return {"rating": rating, "review_count": count}


def add_review(db: Database, user: Dict[str, Any], product_id: str, rating: int, comment: str, title: Optional[str] = None) -> Dict[str, Any]:
    find_or_404(db, "product", product_id, "Product")
    user_id = str(user["_id"])
    if db["review"].find_one({"product_id": product_id, "user_id": user_id}):
        raise InvalidRequestError("You have already reviewed this product")

    purchased = db["order"].find_one({
        "buyer_id": user_id,
        "items.product_id": product_id,
        "status": "delivered",
    })
    review = Review(
        product_id=product_id,
        user_id=user_id,
        rating=rating,
        title=title,
        comment=comment,
        verified_purchase=purchased is not None,
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise InvalidRequestError("You have already reviewed this product")
    recompute_rating(db, product_id)
    return db["review"].find_one({"_id": to_object_id(review_id)})


def update_review(db: Database, review_id: str, user: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    review = find_or_404(db, "review", review_id, "Review")
    if review["user_id"] != str(user["_id"]):
        raise ForbiddenError("Not authorized to update this review")
    updates = {k: v for k, v in updates.items() if k in ("rating", "title", "comment") and v is not None}
    if not updates:
        raise InvalidRequestError("No updates provided")
    updates["updated_at"] = utcnow()
    updated = db["review"].find_one_and_update(
        {"_id": review["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    recompute_rating(db, review["product_id"])
    return updated


def delete_review(db: Database, review_id: str, user: Dict[str, Any]):
    review = find_or_404(db, "review", review_id, "Review")
    if review["user_id"] != str(user["_id"]) and user.get("role") != "admin":
        raise ForbiddenError("Not authorized to delete this review")
    db["review"].delete_one({"_id": review["_id"]})
    recompute_rating(db, review["product_id"])


def moderate_review(db: Database, review_id: str, status: str) -> Dict[str, Any]:
    if status not in ("approved", "rejected"):
        raise InvalidRequestError("Invalid status value")
    review = find_or_404(db, "review", review_id, "Review")
    updated = db["review"].find_one_and_update(
        {"_id": review["_id"]},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    recompute_rating(db, review["product_id"])
    logger.info("Review %s %s", review_id, status)
    return updated


def toggle_helpful(db: Database, review_id: str, user: Dict[str, Any]) -> int:
    review = find_or_404(db, "review", review_id, "Review")
    user_id = str(user["_id"])
    op = "$pull" if user_id in review.get("helpful", []) else "$addToSet"
    updated = db["review"].find_one_and_update(
        {"_id": review["_id"]}, {op: {"helpful": user_id}}, return_document=ReturnDocument.AFTER
    )
    return len(updated.get("helpful", []))


def list_product_reviews(
    db: Database,
    product_id: str,
    rating: Optional[int] = None,
    verified: bool = False,
    sort: str = "newest",
    page: int = 1,
    limit: int = 10,
) -> Dict[str, Any]:
    find_or_404(db, "product", product_id, "Product")
    query: Dict[str, Any] = {"product_id": product_id, "status": "approved"}
    if rating:
        query["rating"] = rating
    if verified:
        query["verified_purchase"] = True
    skip = (max(page, 1) - 1) * limit
    items = list(db["review"].find(query).sort(REVIEW_SORTS.get(sort, REVIEW_SORTS["newest"])).skip(skip).limit(limit))
    distribution = db["review"].aggregate([
        {"$match": {"product_id": product_id, "status": "approved"}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ])
    return {
        "items": items,
        "total": db["review"].count_documents(query),
        "rating_stats": {str(row["_id"]): row["count"] for row in distribution},
    }


def list_user_reviews(db: Database, user: Dict[str, Any]):
    return get_documents(db, "review", {"user_id": str(user["_id"])}, sort=[("created_at", DESCENDING)])


def list_pending_reviews(db: Database):
    return get_documents(db, "review", {"status": "pending"}, sort=[("created_at", DESCENDING)])
