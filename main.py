import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import catalog
import config
import coupons
import database
import messages
import notifications
import reviews
from errors import ForbiddenError, MarketplaceError, UnauthorizedError
from orders import OrderService
from schemas import AccountStatus, Address, DiscountType, ListingStatus, MessageType, PaymentMethod, ProductStatus
from stores import AccountStore

logger = logging.getLogger(__name__)

# App init
app = FastAPI(title="Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Utils
def serialize_doc(doc: Dict[str, Any]):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    # Convert datetime
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def serialize_docs(docs):
    return [serialize_doc(d) for d in docs]


def error_body(kind: str, message: str, detail: Optional[str] = None):
    error = {"kind": kind, "message": message}
    if detail and config.is_development():
        error["detail"] = detail
    return {"success": False, "error": error}


# Error handlers
@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.kind, exc.message))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
    return JSONResponse(
        status_code=400,
        content=error_body("invalid_request", f"Invalid input data: {', '.join(problems)}"),
    )


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError) -> JSONResponse:
    return JSONResponse(status_code=409, content=error_body("conflict", "Duplicate field value entered"))


HTTP_KINDS = {400: "invalid_request", 401: "unauthorized", 403: "forbidden", 404: "not_found", 405: "invalid_request", 409: "conflict"}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = HTTP_KINDS.get(exc.status_code, "internal")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404 and message == "Not Found":
        message = f"Not Found - {request.url.path}"
    return JSONResponse(status_code=exc.status_code, content=error_body(kind, message))


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("internal", "Server Error", repr(exc)))


# Dependencies
def get_db() -> Database:
    if database.db is None:
        raise MarketplaceError("Database not configured")
    return database.db


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Not authorized to access this route")
    token = authorization.replace("Bearer ", "").strip()
    payload = accounts.decode_token(token)
    user_id = payload.get("sub")
    user = AccountStore(db).find_by_id(user_id) if user_id else None
    if not user:
        raise UnauthorizedError("No user found with this id")
    if user.get("account_status", "active") != "active":
        raise ForbiddenError(f"Account is {user['account_status']}. Please contact support.")
    return user


def require_roles(*roles: str):
    def dependency(user=Depends(get_current_user)):
        if user.get("role") not in roles:
            raise ForbiddenError(f"User role '{user.get('role')}' is not authorized to access this route")
        return user
    return dependency


require_admin = require_roles("admin")
require_seller = require_roles("seller", "admin")


def get_order_service(db: Database = Depends(get_db)) -> OrderService:
    return OrderService(db)


# Request models
class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    role: Literal["buyer", "seller"] = "buyer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    shop_name: Optional[str] = None
    shop_description: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class CartAddRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class CategoryCreateRequest(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None


class ProductCreateRequest(BaseModel):
    title: str
    description: str
    price: float = Field(..., ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: List[str] = []
    stock: int = Field(0, ge=0)
    status: ListingStatus = "active"
    brand: Optional[str] = None
    tags: List[str] = []


class ProductUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: Optional[List[str]] = None
    stock: Optional[int] = Field(None, ge=0)
    status: Optional[ListingStatus] = None
    brand: Optional[str] = None
    tags: Optional[List[str]] = None


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    variant: Optional[Dict[str, str]] = None


class OrderCreateRequest(BaseModel):
    items: List[OrderItemRequest]
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None
    notes: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: str
    note: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class CouponCreateRequest(BaseModel):
    code: str = Field(..., min_length=1)
    description: str
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_purchase_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    start_date: datetime
    expiry_date: datetime
    usage_limit: Optional[int] = Field(None, ge=0)
    user_usage_limit: int = Field(1, ge=1)
    applicable_categories: List[str] = []
    applicable_products: List[str] = []
    excluded_products: List[str] = []
    is_active: bool = True


class CouponUpdateRequest(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_purchase_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    usage_limit: Optional[int] = Field(None, ge=0)
    user_usage_limit: Optional[int] = Field(None, ge=1)
    applicable_categories: Optional[List[str]] = None
    applicable_products: Optional[List[str]] = None
    excluded_products: Optional[List[str]] = None
    is_active: Optional[bool] = None


class CouponValidateRequest(BaseModel):
    code: str
    order_amount: float = Field(..., ge=0)
    products: List[str] = []


class ReviewCreateRequest(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., max_length=1000)


class ReviewUpdateRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: Optional[str] = Field(None, max_length=1000)


class ModerateReviewRequest(BaseModel):
    status: str


class AddressUpdateRequest(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


class AccountStatusRequest(BaseModel):
    status: AccountStatus


class ModerateProductRequest(BaseModel):
    status: Literal["active", "rejected"]


class ConversationRequest(BaseModel):
    participant_id: str
    product_id: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    message_type: MessageType = "text"
    attachments: List[str] = []


# Routes
@app.get("/health")
def health():
    return {"success": True, "status": "ok", "database": database.db is not None}


# Auth
@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest, db: Database = Depends(get_db)):
    user, token = accounts.register(db, req.model_dump())
    return {"success": True, "token": token, "user": accounts.public_user(user)}


@app.post("/api/auth/login")
def login(req: LoginRequest, db: Database = Depends(get_db)):
    user, token = accounts.login(db, req.email, req.password)
    return {"success": True, "token": token, "user": accounts.public_user(user)}


@app.get("/api/auth/me")
def me(user=Depends(get_current_user)):
    return {"success": True, "data": accounts.public_user(user)}


# Users
@app.put("/api/users/profile")
def update_profile(req: ProfileUpdateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    updated = accounts.update_profile(db, user, req.model_dump(exclude_none=True))
    return {"success": True, "message": "Profile updated successfully", "data": accounts.public_user(updated)}


@app.put("/api/users/change-password")
def change_password(req: ChangePasswordRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    accounts.change_password(db, user, req.current_password, req.new_password)
    return {"success": True, "message": "Password changed successfully"}


@app.get("/api/users/cart")
def get_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": accounts.get_cart(db, user["_id"])}


@app.post("/api/users/cart")
def add_to_cart(req: CartAddRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = accounts.add_to_cart(db, user, req.product_id, req.quantity)
    return {"success": True, "message": "Product added to cart", "data": cart}


@app.put("/api/users/cart/{product_id}")
def update_cart_item(product_id: str, req: CartUpdateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = accounts.update_cart_item(db, user, product_id, req.quantity)
    return {"success": True, "message": "Cart item updated successfully", "data": cart}


@app.delete("/api/users/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart = accounts.remove_from_cart(db, user, product_id)
    return {"success": True, "message": "Product removed from cart", "data": cart}


@app.delete("/api/users/cart")
def clear_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    accounts.clear_cart(db, user)
    return {"success": True, "message": "Cart cleared successfully"}


@app.get("/api/users/wishlist")
def get_wishlist(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": serialize_docs(accounts.get_wishlist(db, user["_id"]))}


@app.post("/api/users/wishlist/{product_id}")
def add_to_wishlist(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist = accounts.add_to_wishlist(db, user, product_id)
    return {"success": True, "message": "Product added to wishlist", "data": serialize_docs(wishlist)}


@app.delete("/api/users/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist = accounts.remove_from_wishlist(db, user, product_id)
    return {"success": True, "message": "Product removed from wishlist", "data": serialize_docs(wishlist)}


@app.post("/api/users/addresses", status_code=201)
def add_address(req: Address, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "message": "Address added successfully", "data": accounts.add_address(db, user, req)}


@app.put("/api/users/addresses/{index}")
def update_address(index: int, req: AddressUpdateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    addresses = accounts.update_address(db, user, index, req.model_dump(exclude_none=True))
    return {"success": True, "message": "Address updated successfully", "data": addresses}


@app.delete("/api/users/addresses/{index}")
def delete_address(index: int, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "message": "Address deleted successfully", "data": accounts.remove_address(db, user, index)}


# Categories
@app.get("/api/categories")
def list_categories(db: Database = Depends(get_db)):
    return {"success": True, "data": serialize_docs(catalog.list_categories(db))}


@app.post("/api/categories", status_code=201)
def create_category(req: CategoryCreateRequest, admin=Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "data": serialize_doc(catalog.create_category(db, req.model_dump()))}


# Products
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    seller: Optional[str] = None,
    sort: Optional[str] = Query(None, description="newest|price_asc|price_desc|rating_desc|popular"),
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    db: Database = Depends(get_db),
):
    result = catalog.list_products(db, category, search, min_price, max_price, seller, sort, page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "page": result["page"],
        "data": serialize_docs(result["items"]),
    }


@app.get("/api/products/seller/mine")
def my_products(
    status: Optional[ProductStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    seller=Depends(require_seller),
    db: Database = Depends(get_db),
):
    result = catalog.list_seller_products(db, seller, status, page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "page": result["page"],
        "data": serialize_docs(result["items"]),
    }


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, "data": serialize_doc(catalog.get_product(db, product_id))}


@app.post("/api/products", status_code=201)
def create_product(req: ProductCreateRequest, seller=Depends(require_seller), db: Database = Depends(get_db)):
    product = catalog.create_product(db, seller, req.model_dump())
    return {"success": True, "message": "Product created successfully", "data": serialize_doc(product)}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, req: ProductUpdateRequest, seller=Depends(require_seller), db: Database = Depends(get_db)):
    product = catalog.update_product(db, product_id, seller, req.model_dump(exclude_none=True))
    return {"success": True, "message": "Product updated successfully", "data": serialize_doc(product)}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, seller=Depends(require_seller), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id, seller)
    return {"success": True, "message": "Product deleted successfully"}


# Orders
@app.post("/api/orders", status_code=201)
def create_order(req: OrderCreateRequest, user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    order = service.create_order(user, req.model_dump())
    return {"success": True, "message": "Order created successfully", "data": serialize_doc(order)}


@app.get("/api/orders")
def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user=Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    result = service.list_buyer_orders(user, page, limit)
    return {"success": True, "count": len(result["items"]), "total": result["total"], "data": serialize_docs(result["items"])}


@app.get("/api/orders/seller/mine")
def seller_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    seller=Depends(require_seller),
    service: OrderService = Depends(get_order_service),
):
    result = service.list_seller_orders(seller, page, limit)
    return {"success": True, "count": len(result["items"]), "total": result["total"], "data": serialize_docs(result["items"])}


@app.get("/api/orders/admin/all")
def all_orders(
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin=Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    result = service.list_all_orders(status, start_date, end_date, page, limit)
    return {"success": True, "count": len(result["items"]), "total": result["total"], "data": serialize_docs(result["items"])}


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return {"success": True, "data": serialize_doc(service.get_order(order_id, user))}


@app.put("/api/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    req: OrderStatusRequest,
    seller=Depends(require_seller),
    service: OrderService = Depends(get_order_service),
):
    order = service.update_status(order_id, seller, req.status, req.note, req.tracking_number, req.carrier)
    return {"success": True, "message": "Order status updated successfully", "data": serialize_doc(order)}


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    req: Optional[CancelOrderRequest] = None,
    user=Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    order = service.cancel_order(order_id, user, req.reason if req else None)
    return {"success": True, "message": "Order cancelled successfully", "data": serialize_doc(order)}


# Coupons
@app.post("/api/coupons/validate")
def validate_coupon(req: CouponValidateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = coupons.validate_coupon(db, req.code, str(user["_id"]), req.order_amount, req.products)
    return {"success": True, "data": result}


@app.post("/api/coupons", status_code=201)
def create_coupon(req: CouponCreateRequest, seller=Depends(require_seller), db: Database = Depends(get_db)):
    coupon = coupons.create_coupon(db, seller, req.model_dump())
    return {"success": True, "message": "Coupon created successfully", "data": serialize_doc(coupon)}


@app.get("/api/coupons")
def list_coupons(
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    seller=Depends(require_seller),
    db: Database = Depends(get_db),
):
    result = coupons.list_coupons(db, seller, is_active, page, limit)
    return {"success": True, "count": len(result["items"]), "total": result["total"], "data": serialize_docs(result["items"])}


@app.get("/api/coupons/{coupon_id}")
def get_coupon(coupon_id: str, seller=Depends(require_seller), db: Database = Depends(get_db)):
    return {"success": True, "data": serialize_doc(coupons.get_coupon(db, coupon_id, seller))}


@app.put("/api/coupons/{coupon_id}")
def update_coupon(coupon_id: str, req: CouponUpdateRequest, seller=Depends(require_seller), db: Database = Depends(get_db)):
    coupon = coupons.update_coupon(db, coupon_id, seller, req.model_dump(exclude_none=True))
    return {"success": True, "message": "Coupon updated successfully", "data": serialize_doc(coupon)}


@app.delete("/api/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, seller=Depends(require_seller), db: Database = Depends(get_db)):
    coupons.delete_coupon(db, coupon_id, seller)
    return {"success": True, "message": "Coupon deleted successfully"}


# Reviews
@app.get("/api/reviews/product/{product_id}")
def product_reviews(
    product_id: str,
    rating: Optional[int] = Query(None, ge=1, le=5),
    verified: bool = False,
    sort: str = "newest",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    result = reviews.list_product_reviews(db, product_id, rating, verified, sort, page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "rating_stats": result["rating_stats"],
        "data": serialize_docs(result["items"]),
    }


@app.get("/api/reviews/user/mine")
def my_reviews(user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = reviews.list_user_reviews(db, user)
    return {"success": True, "count": len(items), "data": serialize_docs(items)}


@app.get("/api/reviews/admin/pending")
def pending_reviews(admin=Depends(require_admin), db: Database = Depends(get_db)):
    items = reviews.list_pending_reviews(db)
    return {"success": True, "count": len(items), "data": serialize_docs(items)}


@app.post("/api/reviews", status_code=201)
def add_review(req: ReviewCreateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    review = reviews.add_review(db, user, req.product_id, req.rating, req.comment, req.title)
    return {"success": True, "message": "Review added successfully", "data": serialize_doc(review)}


@app.put("/api/reviews/{review_id}")
def update_review(review_id: str, req: ReviewUpdateRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    review = reviews.update_review(db, review_id, user, req.model_dump(exclude_none=True))
    return {"success": True, "message": "Review updated successfully", "data": serialize_doc(review)}


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    reviews.delete_review(db, review_id, user)
    return {"success": True, "message": "Review deleted successfully"}


@app.put("/api/reviews/{review_id}/moderate")
def moderate_review(review_id: str, req: ModerateReviewRequest, admin=Depends(require_admin), db: Database = Depends(get_db)):
    review = reviews.moderate_review(db, review_id, req.status)
    return {"success": True, "message": f"Review {req.status} successfully", "data": serialize_doc(review)}


@app.post("/api/reviews/{review_id}/helpful")
def mark_helpful(review_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": {"helpful_count": reviews.toggle_helpful(db, review_id, user)}}


# Notifications
@app.get("/api/notifications")
def list_notifications(
    is_read: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    result = notifications.list_notifications(db, str(user["_id"]), is_read, page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "unread_count": result["unread_count"],
        "data": serialize_docs(result["items"]),
    }


@app.put("/api/notifications/read-all")
def mark_all_notifications_read(user=Depends(get_current_user), db: Database = Depends(get_db)):
    notifications.mark_all_read(db, str(user["_id"]))
    return {"success": True, "message": "All notifications marked as read"}


@app.put("/api/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "data": serialize_doc(notifications.mark_read(db, notification_id, str(user["_id"])))}


@app.delete("/api/notifications/{notification_id}")
def delete_notification(notification_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    notifications.delete_notification(db, notification_id, str(user["_id"]))
    return {"success": True, "message": "Notification deleted"}


# Messages
@app.get("/api/messages/conversations")
def list_conversations(user=Depends(get_current_user), db: Database = Depends(get_db)):
    conversations = messages.list_conversations(db, str(user["_id"]))
    return {"success": True, "count": len(conversations), "data": serialize_docs(conversations)}


@app.post("/api/messages/conversations")
def open_conversation(req: ConversationRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    conversation = messages.get_or_create_conversation(db, str(user["_id"]), req.participant_id, req.product_id)
    return {"success": True, "data": serialize_doc(conversation)}


@app.get("/api/messages/{conversation_id}")
def get_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    result = messages.get_messages(db, conversation_id, str(user["_id"]), page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "page": result["page"],
        "data": serialize_docs(result["items"]),
    }


@app.post("/api/messages/{conversation_id}", status_code=201)
def send_message(conversation_id: str, req: SendMessageRequest, user=Depends(get_current_user), db: Database = Depends(get_db)):
    message = messages.send_message(db, conversation_id, str(user["_id"]), req.content, req.message_type, req.attachments)
    return {"success": True, "data": serialize_doc(message)}


@app.put("/api/messages/{conversation_id}/read")
def mark_conversation_read(conversation_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    messages.mark_conversation_read(db, conversation_id, str(user["_id"]))
    return {"success": True, "message": "Messages marked as read"}


@app.delete("/api/messages/{message_id}")
def delete_message(message_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    messages.delete_message(db, message_id, str(user["_id"]))
    return {"success": True, "message": "Message deleted"}


# Admin
@app.get("/api/admin/users")
def admin_list_users(
    role: Optional[str] = None,
    status: Optional[AccountStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    result = accounts.list_users(db, role, status, search, page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "page": result["page"],
        "data": serialize_docs(result["items"]),
    }


@app.put("/api/admin/users/{user_id}/status")
def admin_update_user_status(user_id: str, req: AccountStatusRequest, admin=Depends(require_admin), db: Database = Depends(get_db)):
    user = accounts.update_account_status(db, user_id, req.status, admin)
    return {"success": True, "message": f"User status updated to {req.status}", "data": accounts.public_user(user)}


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    accounts.delete_user(db, user_id, admin)
    return {"success": True, "message": "User deleted successfully"}


@app.get("/api/admin/products")
def admin_list_products(
    status: Optional[ProductStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    result = catalog.list_all_products(db, status, search, page, limit)
    return {
        "success": True,
        "count": len(result["items"]),
        "total": result["total"],
        "page": result["page"],
        "data": serialize_docs(result["items"]),
    }


@app.put("/api/admin/products/{product_id}/moderate")
def admin_moderate_product(product_id: str, req: ModerateProductRequest, admin=Depends(require_admin), db: Database = Depends(get_db)):
    product = catalog.moderate_product(db, product_id, req.status, admin)
    return {"success": True, "message": f"Product status set to {product['status']}", "data": serialize_doc(product)}


@app.on_event("startup")
def on_startup():
    config.configure_logging()
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; API requests will fail until configured")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
