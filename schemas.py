"""
Database Schemas for the marketplace

Each Pydantic model maps to a MongoDB collection (lowercased class name).
References to other documents are stored as string ids.

Collections:
- user
- category
- product
- order
- coupon
- review
- notification
- conversation
- message
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["buyer", "seller", "admin"]
AccountStatus = Literal["active", "suspended", "deactivated"]
ListingStatus = Literal["active", "inactive", "out-of-stock"]
ProductStatus = Literal["active", "inactive", "out-of-stock", "rejected"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["credit_card", "paypal", "bank_transfer", "cash_on_delivery"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
DiscountType = Literal["percentage", "fixed"]
ReviewStatus = Literal["pending", "approved", "rejected"]
MessageType = Literal["text", "image", "file", "product"]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class Address(BaseModel):
    full_name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool = False


class CartEntry(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    added_at: Optional[datetime] = None


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    email: EmailStr = Field(..., description="Email address (unique, lowercase)")
    password_hash: str = Field(..., description="BCrypt password hash")
    phone: Optional[str] = None
    role: Role = "buyer"
    account_status: AccountStatus = "active"
    addresses: List[Address] = Field(default_factory=list)
    wishlist: List[str] = Field(default_factory=list, description="Product ids")
    cart: List[CartEntry] = Field(default_factory=list)
    shop_name: Optional[str] = None
    shop_description: Optional[str] = None
    last_login: Optional[datetime] = None


class Category(BaseModel):
    """Categories collection schema (name and slug unique)"""
    name: str
    slug: str
    description: Optional[str] = Field(None, max_length=500)
    is_active: bool = True


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    title: str = Field(..., min_length=1, description="Product title")
    description: str = Field(..., max_length=5000)
    price: float = Field(..., ge=0, description="Price in USD")
    compare_price: Optional[float] = Field(None, ge=0)
    seller_id: str
    category_id: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Image URLs")
    stock: int = Field(0, ge=0, description="Units in stock")
    status: ProductStatus = "active"
    brand: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    rating: float = Field(0, ge=0, le=5, description="Mean of approved review ratings")
    review_count: int = Field(0, ge=0)
    sales: int = Field(0, ge=0, description="Units sold")
    views: int = 0


class OrderItem(BaseModel):
    product_id: str
    title: str
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price captured at order time")
    variant: Optional[dict] = None


class StatusEntry(BaseModel):
    status: OrderStatus
    date: datetime
    note: str = ""


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    order_number: str
    buyer_id: str
    items: List[OrderItem]
    subtotal: float
    tax: float
    shipping_cost: float
    discount: float = 0
    total_amount: float
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    status: OrderStatus = "pending"
    status_history: List[StatusEntry] = Field(default_factory=list)
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None


class CouponUsage(BaseModel):
    usage_count: int = 0
    last_used: Optional[datetime] = None


class Coupon(BaseModel):
    """
    Coupons collection schema
    Collection name: "coupon"
    """
    code: str = Field(..., description="Unique, stored uppercase")
    description: str
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    min_purchase_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0, description="Ceiling for percentage discounts")
    start_date: datetime
    expiry_date: datetime
    usage_limit: Optional[int] = Field(None, ge=0, description="None means unlimited")
    used_count: int = 0
    user_usage_limit: int = Field(1, ge=1)
    used_by: Dict[str, CouponUsage] = Field(default_factory=dict, description="Usage keyed by user id")
    applicable_categories: List[str] = Field(default_factory=list)
    applicable_products: List[str] = Field(default_factory=list)
    excluded_products: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_by: str


class Review(BaseModel):
    """
    Reviews collection schema
    Collection name: "review" (unique per product_id + user_id)
    """
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=100)
    comment: str = Field(..., max_length=1000)
    verified_purchase: bool = False
    helpful: List[str] = Field(default_factory=list, description="User ids")
    status: ReviewStatus = "pending"


class Notification(BaseModel):
    """Notifications collection schema"""
    recipient_id: str
    type: str = Field(..., description="order_placed | order_shipped | order_delivered | order_cancelled | general")
    title: str
    message: str
    related_order_id: Optional[str] = None
    is_read: bool = False
    read_at: Optional[datetime] = None


class LastMessage(BaseModel):
    content: str
    sender_id: str
    created_at: datetime


class Conversation(BaseModel):
    """
    Conversations collection schema
    Collection name: "conversation"
    """
    participants: List[str] = Field(..., min_length=2, max_length=2, description="User ids")
    product_id: Optional[str] = None
    last_message: Optional[LastMessage] = None
    unread_counts: Dict[str, int] = Field(default_factory=dict, description="User id -> unread messages")


class Message(BaseModel):
    """Messages collection schema"""
    conversation_id: str
    sender_id: str
    content: str = Field(..., min_length=1, max_length=2000)
    message_type: MessageType = "text"
    attachments: List[str] = Field(default_factory=list)
    read_by: Dict[str, datetime] = Field(default_factory=dict, description="User id -> read time")
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
