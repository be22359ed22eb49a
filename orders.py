"""
Order engine

Creating an order runs in two phases. ``price_order`` only reads: it
validates every requested line against the catalog, snapshots prices and
computes the totals. ``place_order`` then reserves stock line by line with
conditional decrements, redeems the coupon, allocates the order number,
persists the order and clears the cart. A failure anywhere in the second
phase undoes whatever already happened, so a persisted order always has its
stock reserved and an aborted one leaves stock untouched.

Status changes follow ``TRANSITIONS`` and are applied as a compare-and-set
on the current status.
"""
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

import pymongo
from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from coupons import quote, redeem, unredeem
from database import utcnow
from errors import (
    ConflictError,
    ForbiddenError,
    InsufficientStockError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    OrderTimeoutError,
)
from notifications import notify
from schemas import ORDER_STATUSES, Order
from stores import AccountStore, CatalogStore, CounterStore, OrderStore

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": (),
    "cancelled": (),
}

BUYER_CANCELLABLE = ("pending",)

STATUS_NOTIFICATIONS = {
    "processing": "order_confirmed",
    "shipped": "order_shipped",
    "delivered": "order_delivered",
    "cancelled": "order_cancelled",
}


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, ())


CENT = Decimal("0.01")


def _cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_totals(subtotal, discount=0) -> Dict[str, float]:
    """Price breakdown of an order.

    The parts are rounded to cents half-up in ``Decimal``; ``total_amount`` is
    then summed from the stored float parts so that
    ``total_amount == subtotal + tax + shipping_cost - discount`` holds exactly.
    """
    subtotal = _cents(subtotal)
    tax = _cents(subtotal * Decimal(str(config.TAX_RATE)))
    if subtotal >= Decimal(str(config.FREE_SHIPPING_THRESHOLD)):
        shipping_cost = Decimal("0")
    else:
        shipping_cost = _cents(config.FLAT_SHIPPING_COST)
    totals = {
        "subtotal": float(subtotal),
        "tax": float(tax),
        "shipping_cost": float(shipping_cost),
        "discount": float(_cents(discount)),
    }
    totals["total_amount"] = totals["subtotal"] + totals["tax"] + totals["shipping_cost"] - totals["discount"]
    return totals


def format_order_number(when: datetime, sequence: int) -> str:
    return f"ORD{when.strftime('%y%m')}{sequence:06d}"


@dataclass
class OrderDraft:
    """A validated, priced order that has not touched the database yet."""

    buyer_id: str
    items: List[Dict[str, Any]]
    totals: Dict[str, float]
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    payment_method: str
    products: List[Dict[str, Any]] = field(default_factory=list)
    coupon: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class OrderService:
    def __init__(self, db: Database, timeout: Optional[float] = None):
        self.db = db
        self.timeout = config.ORDER_TIMEOUT_SECONDS if timeout is None else timeout
        self.catalog = CatalogStore(db)
        self.accounts = AccountStore(db)
        self.orders = OrderStore(db)
        self.counters = CounterStore(db)

    # Creation

    def create_order(self, buyer: Dict[str, Any], request: Dict[str, Any]) -> Dict[str, Any]:
        deadline = time.monotonic() + self.timeout
        with self._deadline(deadline):
            draft = self.price_order(buyer, request, deadline)
        order = self.place_order(draft, deadline)
        self._announce(order, draft)
        return order

    def price_order(self, buyer: Dict[str, Any], request: Dict[str, Any], deadline: Optional[float] = None) -> OrderDraft:
        lines = request.get("items") or []
        if not lines:
            raise InvalidRequestError("Order must contain at least one item")

        items = []
        products = {}
        requested: Dict[str, int] = {}
        subtotal = Decimal("0")
        for line in lines:
            if deadline is not None and time.monotonic() > deadline:
                raise OrderTimeoutError()
            product_id = line["product_id"]
            quantity = int(line["quantity"])
            if quantity < 1:
                raise InvalidRequestError("Quantity must be at least 1")
            product = products.get(product_id) or self.catalog.find_by_id(product_id)
            if not product:
                raise NotFoundError(f"Product not found: {product_id}")
            if product.get("status") != "active":
                raise InvalidRequestError(f"Product {product['title']} is not available for sale")
            requested[product_id] = requested.get(product_id, 0) + quantity
            if requested[product_id] > product.get("stock", 0):
                raise InsufficientStockError(product_id, product["title"], requested[product_id], product.get("stock", 0))
            products[product_id] = product

            images = product.get("images") or []
            items.append({
                "product_id": product_id,
                "title": product["title"],
                "image": images[0] if images else "",
                "quantity": quantity,
                "price": product["price"],
                "variant": line.get("variant"),
            })
            subtotal += Decimal(str(product["price"])) * quantity

        coupon = None
        discount = 0.0
        if request.get("coupon_code"):
            coupon, discount = quote(
                self.db, request["coupon_code"], str(buyer["_id"]), float(_cents(subtotal)), list(products.values())
            )

        shipping_address = request["shipping_address"]
        return OrderDraft(
            buyer_id=str(buyer["_id"]),
            items=items,
            totals=compute_totals(subtotal, discount),
            shipping_address=shipping_address,
            billing_address=request.get("billing_address") or shipping_address,
            payment_method=request["payment_method"],
            products=list(products.values()),
            coupon=coupon,
            notes=request.get("notes"),
        )

    def place_order(self, draft: OrderDraft, deadline: Optional[float] = None) -> Dict[str, Any]:
        if deadline is None:
            deadline = time.monotonic() + self.timeout
        reserved: List[Dict[str, Any]] = []
        redeemed = False
        order = None
        try:
            with self._deadline(deadline):
                for item in draft.items:
                    if self.catalog.reserve(item["product_id"], item["quantity"]) is None:
                        raise ConflictError(f"Insufficient stock for product: {item['title']} (taken by another order)")
                    reserved.append(item)
                if draft.coupon:
                    redeem(self.db, draft.coupon, draft.buyer_id)
                    redeemed = True
                order = self.orders.create(self._build_payload(draft))
                self.accounts.clear_cart(draft.buyer_id)
        except Exception:
            self._roll_back(draft, reserved, redeemed, order)
            raise
        logger.info(
            "Order %s created for buyer %s: %d line(s), total %.2f",
            order["order_number"], draft.buyer_id, len(draft.items), order["total_amount"],
        )
        return order

    def _build_payload(self, draft: OrderDraft) -> Dict[str, Any]:
        now = utcnow()
        sequence = self.counters.next_value(f"order-{now.strftime('%y%m')}")
        order = Order(
            order_number=format_order_number(now, sequence),
            buyer_id=draft.buyer_id,
            items=draft.items,
            shipping_address=draft.shipping_address,
            billing_address=draft.billing_address,
            payment_method=draft.payment_method,
            coupon_code=draft.coupon["code"] if draft.coupon else None,
            notes=draft.notes,
            status="pending",
            status_history=[{"status": "pending", "date": now, "note": "Order created"}],
            **draft.totals,
        )
        return order.model_dump()

    def _roll_back(self, draft: OrderDraft, reserved: List[Dict[str, Any]], redeemed: bool, order: Optional[Dict[str, Any]]):
        logger.warning(
            "Rolling back order for buyer %s: releasing %d reserved line(s)", draft.buyer_id, len(reserved)
        )
        if order is not None:
            self.orders.discard(order["_id"])
        if redeemed:
            unredeem(self.db, draft.coupon, draft.buyer_id)
        for item in reversed(reserved):
            self.catalog.release(item["product_id"], item["quantity"])

    @contextmanager
    def _deadline(self, deadline: float):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise OrderTimeoutError()
        try:
            with pymongo.timeout(remaining):
                yield
        except PyMongoError as exc:
            if exc.timeout:
                raise OrderTimeoutError() from exc
            raise

    def _notify(self, recipient_id: str, type: str, title: str, message: str, order_id: str):
        """Notifications go out after the order write has committed; a failure
        here is logged and does not fail the request."""
        try:
            notify(self.db, recipient_id, type, title, message, order_id)
        except PyMongoError:
            logger.exception("Could not notify %s about order %s", recipient_id, order_id)

    def _announce(self, order: Dict[str, Any], draft: OrderDraft):
        order_id = str(order["_id"])
        self._notify(
            draft.buyer_id, "order_placed", "Order placed",
            f"Your order {order['order_number']} has been placed.", order_id,
        )
        sellers = {p["seller_id"] for p in draft.products if p.get("seller_id")}
        for seller_id in sorted(sellers):
            self._notify(
                seller_id, "order_placed", "New order",
                f"Order {order['order_number']} contains your products.", order_id,
            )

    # Status changes

    def update_status(
        self,
        order_id: str,
        user: Dict[str, Any],
        status: str,
        note: Optional[str] = None,
        tracking_number: Optional[str] = None,
        carrier: Optional[str] = None,
    ) -> Dict[str, Any]:
        order = self._find(order_id)
        if user.get("role") != "admin" and not self._is_seller_of(order, user):
            raise ForbiddenError("Not authorized to update this order")
        if status not in ORDER_STATUSES:
            raise InvalidRequestError("Invalid order status")
        if not can_transition(order["status"], status):
            raise InvalidTransitionError(order["status"], status)

        now = utcnow()
        fields: Dict[str, Any] = {}
        if tracking_number:
            fields["tracking_number"] = tracking_number
        if carrier:
            fields["carrier"] = carrier
        if status == "delivered":
            fields["delivered_at"] = now
        if status == "cancelled":
            fields["cancelled_at"] = now
            fields["cancel_reason"] = note or ""

        updated = self.orders.append_status_history(
            order_id, {"status": status, "date": now, "note": note or ""},
            expected_status=order["status"], fields=fields,
        )
        if updated is None:
            raise ConflictError("Order status changed concurrently; reload the order and retry")
        if status == "cancelled":
            self._restock(updated)
        logger.info("Order %s moved %s -> %s by %s", updated["order_number"], order["status"], status, user["_id"])
        self._notify(
            updated["buyer_id"], STATUS_NOTIFICATIONS[status], f"Order {status}",
            f"Your order {updated['order_number']} is now {status}.", order_id,
        )
        return updated

    def cancel_order(self, order_id: str, user: Dict[str, Any], reason: Optional[str] = None) -> Dict[str, Any]:
        order = self._find(order_id)
        if order["buyer_id"] != str(user["_id"]):
            raise ForbiddenError("Not authorized to cancel this order")
        if order["status"] not in BUYER_CANCELLABLE:
            raise InvalidRequestError("Order cannot be cancelled at this stage")

        now = utcnow()
        updated = self.orders.append_status_history(
            order_id,
            {"status": "cancelled", "date": now, "note": reason or "Order cancelled by buyer"},
            expected_status=order["status"],
            fields={"cancelled_at": now, "cancel_reason": reason or ""},
        )
        if updated is None:
            raise InvalidRequestError("Order cannot be cancelled at this stage")
        self._restock(updated)
        logger.info("Order %s cancelled by buyer %s", updated["order_number"], user["_id"])
        self._notify(
            updated["buyer_id"], "order_cancelled", "Order cancelled",
            f"Your order {updated['order_number']} has been cancelled.", order_id,
        )
        return updated

    def _restock(self, order: Dict[str, Any]):
        for item in order["items"]:
            if self.catalog.release(item["product_id"], item["quantity"]) is None:
                logger.warning("Product %s from order %s no longer exists; not restocked", item["product_id"], order["order_number"])

    # Reads

    def _find(self, order_id: str) -> Dict[str, Any]:
        order = self.orders.find_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def _is_seller_of(self, order: Dict[str, Any], user: Dict[str, Any]) -> bool:
        product_ids = [ObjectId(item["product_id"]) for item in order["items"] if ObjectId.is_valid(item["product_id"])]
        return self.db["product"].count_documents({"_id": {"$in": product_ids}, "seller_id": str(user["_id"])}) > 0

    def get_order(self, order_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        order = self._find(order_id)
        if order["buyer_id"] == str(user["_id"]) or user.get("role") == "admin":
            return order
        if user.get("role") == "seller" and self._is_seller_of(order, user):
            return order
        raise ForbiddenError("Not authorized to view this order")

    def _page(self, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
        page = max(page, 1)
        cursor = self.db["order"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
        return {
            "items": list(cursor),
            "total": self.db["order"].count_documents(query),
            "page": page,
            "limit": limit,
        }

    def list_buyer_orders(self, user: Dict[str, Any], page: int = 1, limit: int = 10) -> Dict[str, Any]:
        return self._page({"buyer_id": str(user["_id"])}, page, limit)

    def list_seller_orders(self, user: Dict[str, Any], page: int = 1, limit: int = 10) -> Dict[str, Any]:
        product_ids = [str(p["_id"]) for p in self.db["product"].find({"seller_id": str(user["_id"])}, {"_id": 1})]
        return self._page({"items.product_id": {"$in": product_ids}}, page, limit)

    def list_all_orders(
        self,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if start_date or end_date:
            query["created_at"] = {}
            if start_date:
                query["created_at"]["$gte"] = start_date
            if end_date:
                query["created_at"]["$lte"] = end_date
        return self._page(query, page, limit)
