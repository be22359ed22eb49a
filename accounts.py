"""
Accounts: registration/login, profile, cart, wishlist, addresses and account administration.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, utcnow
from errors import ForbiddenError, InvalidRequestError, NotFoundError, UnauthorizedError
from schemas import Address, User as UserSchema
from stores import AccountStore, CatalogStore, to_object_id

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# Auth helpers
def create_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "role": user.get("role", "buyer"),
        "exp": datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise UnauthorizedError("Invalid token. Please log in again.")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in user.items() if k != "password_hash"}
    if "_id" in data:
        data["id"] = str(data.pop("_id"))
    return data


def register(db: Database, data: Dict[str, Any]):
    email = data["email"].lower()
    if db["user"].find_one({"email": email}):
        raise InvalidRequestError("User already exists")
    user = UserSchema(
        first_name=data["first_name"],
        last_name=data["last_name"],
        email=email,
        password_hash=pwd_context.hash(data["password"]),
        phone=data.get("phone"),
        role=data.get("role") or "buyer",
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise InvalidRequestError("User already exists")
    created = db["user"].find_one({"_id": to_object_id(user_id)})
    logger.info("Registered %s account %s", created["role"], user_id)
    return created, create_token(created)


def login(db: Database, email: str, password: str):
    user = db["user"].find_one({"email": email.lower()})
    if not user or not pwd_context.verify(password, user.get("password_hash", "")):
        raise UnauthorizedError("Invalid credentials")
    if user.get("account_status", "active") != "active":
        raise ForbiddenError(f"Account is {user['account_status']}. Please contact support.")
    now = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return user, create_token(user)


def update_profile(db: Database, user: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    allowed = ["first_name", "last_name", "phone"]
    if user.get("role") == "seller":
        allowed += ["shop_name", "shop_description"]
    changes = {k: v for k, v in updates.items() if k in allowed and v}
    if changes:
        changes["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    return db["user"].find_one({"_id": user["_id"]})


def change_password(db: Database, user: Dict[str, Any], current_password: str, new_password: str):
    if not pwd_context.verify(current_password, user.get("password_hash", "")):
        raise InvalidRequestError("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": pwd_context.hash(new_password), "updated_at": utcnow()}},
    )


# Cart

def _sellable(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    product = CatalogStore(db).find_by_id(product_id)
    if not product:
        raise NotFoundError("Product not found")
    if product.get("status") != "active":
        raise InvalidRequestError("Product is not available")
    if quantity > product.get("stock", 0):
        raise InvalidRequestError("Insufficient stock for the requested quantity")
    return product


def _save_cart(db: Database, user: Dict[str, Any], cart: List[Dict[str, Any]]):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"cart": cart, "updated_at": utcnow()}})


def add_to_cart(db: Database, user: Dict[str, Any], product_id: str, quantity: int = 1) -> Dict[str, Any]:
    if quantity < 1:
        raise InvalidRequestError("Quantity must be at least 1")
    cart = list(user.get("cart", []))
    existing = next((entry for entry in cart if entry["product_id"] == product_id), None)
    wanted = quantity + (existing["quantity"] if existing else 0)
    _sellable(db, product_id, wanted)
    if existing:
        existing["quantity"] = wanted
    else:
        cart.append({"product_id": product_id, "quantity": quantity, "added_at": utcnow()})
    _save_cart(db, user, cart)
    return get_cart(db, user["_id"])


def update_cart_item(db: Database, user: Dict[str, Any], product_id: str, quantity: int) -> Dict[str, Any]:
    if quantity < 1:
        raise InvalidRequestError("Quantity must be at least 1")
    cart = list(user.get("cart", []))
    entry = next((e for e in cart if e["product_id"] == product_id), None)
    if entry is None:
        raise NotFoundError("Product not in cart")
    _sellable(db, product_id, quantity)
    entry["quantity"] = quantity
    _save_cart(db, user, cart)
    return get_cart(db, user["_id"])


def remove_from_cart(db: Database, user: Dict[str, Any], product_id: str) -> Dict[str, Any]:
    cart = [e for e in user.get("cart", []) if e["product_id"] != product_id]
    _save_cart(db, user, cart)
    return get_cart(db, user["_id"])


def clear_cart(db: Database, user: Dict[str, Any]):
    AccountStore(db).clear_cart(str(user["_id"]))


def get_cart(db: Database, user_id) -> Dict[str, Any]:
    """Cart lines whose product is still on sale, with subtotal and item count."""
    user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    catalog = CatalogStore(db)
    items = []
    subtotal = 0.0
    for entry in user.get("cart", []):
        product = catalog.find_active_by_id(entry["product_id"])
        if not product:
            continue
        subtotal += product["price"] * entry["quantity"]
        items.append({
            "product_id": entry["product_id"],
            "quantity": entry["quantity"],
            "title": product["title"],
            "price": product["price"],
            "stock": product.get("stock", 0),
            "image": (product.get("images") or [None])[0],
        })
    return {
        "cart_items": items,
        "subtotal": round(subtotal, 2),
        "item_count": sum(i["quantity"] for i in items),
    }


# Wishlist

def add_to_wishlist(db: Database, user: Dict[str, Any], product_id: str) -> List[Dict[str, Any]]:
    if not CatalogStore(db).find_by_id(product_id):
        raise NotFoundError("Product not found")
    if product_id in user.get("wishlist", []):
        raise InvalidRequestError("Product already in wishlist")
    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": product_id}})
    return get_wishlist(db, user["_id"])


def remove_from_wishlist(db: Database, user: Dict[str, Any], product_id: str) -> List[Dict[str, Any]]:
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"wishlist": product_id}})
    return get_wishlist(db, user["_id"])


def get_wishlist(db: Database, user_id) -> List[Dict[str, Any]]:
    user = db["user"].find_one({"_id": to_object_id(user_id, "User")})
    ids = [to_object_id(pid, "Product") for pid in user.get("wishlist", [])]
    products = db["product"].find({"_id": {"$in": ids}}, {"title": 1, "price": 1, "images": 1, "status": 1})
    return list(products)


# Addresses

def add_address(db: Database, user: Dict[str, Any], address: Address) -> List[Dict[str, Any]]:
    addresses = list(user.get("addresses", []))
    new = address.model_dump()
    if not addresses or new.get("is_default"):
        for existing in addresses:
            existing["is_default"] = False
        new["is_default"] = True
    addresses.append(new)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
    return addresses


def remove_address(db: Database, user: Dict[str, Any], index: int) -> List[Dict[str, Any]]:
    addresses = list(user.get("addresses", []))
    if index < 0 or index >= len(addresses):
        raise NotFoundError("Address not found")
    removed = addresses.pop(index)
    if removed.get("is_default") and addresses:
        addresses[0]["is_default"] = True
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
    return addresses


def update_address(db: Database, user: Dict[str, Any], index: int, updates: Dict[str, Any]) -> List[Dict[str, Any]]:
    addresses = list(user.get("addresses", []))
    if index < 0 or index >= len(addresses):
        raise NotFoundError("Address not found")
    merged = Address(**{**addresses[index], **updates}).model_dump()
    if merged["is_default"]:
        for existing in addresses:
            existing["is_default"] = False
    elif addresses[index].get("is_default"):
        # there is always one default address
        merged["is_default"] = True
    addresses[index] = merged
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses, "updated_at": utcnow()}})
    return addresses


# Administration

ACCOUNT_STATUSES = ("active", "suspended", "deactivated")


def list_users(
    db: Database,
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if status:
        query["account_status"] = status
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {field: {"$regex": pattern, "$options": "i"}}
            for field in ("first_name", "last_name", "email", "shop_name")
        ]
    page = max(page, 1)
    cursor = db["user"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return {
        "items": [public_user(u) for u in cursor],
        "total": db["user"].count_documents(query),
        "page": page,
        "limit": limit,
    }


def _manageable(db: Database, user_id: str, action: str) -> Dict[str, Any]:
    user = AccountStore(db).find_by_id(user_id)
    if not user:
        raise NotFoundError("User not found")
    if user.get("role") == "admin":
        raise ForbiddenError(f"Cannot {action} admin accounts")
    return user


def update_account_status(db: Database, user_id: str, status: str, admin: Dict[str, Any]) -> Dict[str, Any]:
    """Suspend, deactivate or reactivate a buyer or seller account."""
    if status not in ACCOUNT_STATUSES:
        raise InvalidRequestError("Invalid account status")
    user = _manageable(db, user_id, "modify")
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"account_status": status, "updated_at": utcnow()}})
    logger.info("Account %s set to %s by %s", user_id, status, admin["_id"])
    user["account_status"] = status
    return user


def delete_user(db: Database, user_id: str, admin: Dict[str, Any]):
    user = _manageable(db, user_id, "delete")
    db["user"].delete_one({"_id": user["_id"]})
    logger.info("Account %s deleted by %s", user_id, admin["_id"])
