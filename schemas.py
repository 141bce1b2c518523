"""
Request and response schemas for the Marketplace API

Request bodies are validated here; response models are read straight off
the ORM rows (from_attributes). Money fields are integer pesewas.
"""

import re
from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, field_validator

from models import AccountStatus, AddressType, OrderStatus, PaymentMethod

GHANA_PHONE = r"^(\+233|0)(23|24|25|54|55|59|27|57|26|56|20|50)\d{7}$"
MTN_PHONE = r"^0(24|54|55|59)\d{7}$"
GPS_ADDRESS = r"^[A-Z]{2}-\d{3,4}-\d{4}$"


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


BlankAsNone = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Auth / Users
# -----------------------------
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, description="At least 6 characters")
    first_name: str = Field(..., min_length=2, max_length=100)
    last_name: str = Field(..., min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=GHANA_PHONE)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=2, max_length=100)
    last_name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=GHANA_PHONE)
    avatar_url: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class UserOut(ORMModel):
    id: int
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    role: str
    status: str
    email_verified: bool
    phone_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class UserStatusUpdate(BaseModel):
    status: AccountStatus


# -----------------------------
# Addresses
# -----------------------------
class AddressIn(BaseModel):
    label: str = Field(..., min_length=1, max_length=50)
    type: AddressType = AddressType.HOME
    full_name: str = Field(..., min_length=2, max_length=200)
    phone: str = Field(..., pattern=GHANA_PHONE)
    region: str = Field(..., min_length=1)
    city: str = Field(..., min_length=2)
    area: Optional[str] = None
    street_address: str = Field(..., min_length=5)
    gps_address: BlankAsNone = Field(None, pattern=GPS_ADDRESS)
    is_default: bool = False


class AddressUpdate(BaseModel):
    label: Optional[str] = Field(None, min_length=1, max_length=50)
    type: Optional[AddressType] = None
    full_name: Optional[str] = Field(None, min_length=2, max_length=200)
    phone: Optional[str] = Field(None, pattern=GHANA_PHONE)
    region: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=2)
    area: Optional[str] = None
    street_address: Optional[str] = Field(None, min_length=5)
    gps_address: BlankAsNone = Field(None, pattern=GPS_ADDRESS)
    is_default: Optional[bool] = None


class AddressOut(ORMModel):
    id: int
    label: str
    type: str
    full_name: str
    phone: str
    region: str
    city: str
    area: Optional[str] = None
    street_address: str
    gps_address: Optional[str] = None
    is_default: bool
    created_at: datetime


# -----------------------------
# Catalog
# -----------------------------
class CategoryIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: int = 0
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryRef(ORMModel):
    id: int
    name: str
    slug: str


class CategoryOut(ORMModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: int
    is_active: bool


class ProductIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=200)
    description: Optional[str] = None
    price_pesewas: int = Field(..., gt=0, description="Price in pesewas")
    compare_price_pesewas: Optional[int] = Field(None, gt=0)
    category_id: int
    stock_quantity: int = Field(0, ge=0)
    low_stock_threshold: int = Field(5, ge=0)
    track_inventory: bool = True
    allow_backorder: bool = False
    sku: Optional[str] = Field(None, max_length=64)
    images: List[str] = Field(default_factory=list, description="Image URLs")
    is_active: bool = True
    is_featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=200)
    description: Optional[str] = None
    price_pesewas: Optional[int] = Field(None, gt=0)
    compare_price_pesewas: Optional[int] = Field(None, gt=0)
    category_id: Optional[int] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)
    track_inventory: Optional[bool] = None
    allow_backorder: Optional[bool] = None
    sku: Optional[str] = Field(None, max_length=64)
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ProductOut(ORMModel):
    id: int
    seller_id: int
    category_id: int
    name: str
    slug: str
    description: Optional[str] = None
    price_pesewas: int
    compare_price_pesewas: Optional[int] = None
    stock_quantity: int
    low_stock_threshold: int
    track_inventory: bool
    allow_backorder: bool
    in_stock: bool
    sku: Optional[str] = None
    images: List[str] = []
    is_active: bool
    is_featured: bool
    average_rating: float = 0
    review_count: int = 0
    created_at: datetime
    category: Optional[CategoryRef] = None


class StockUpdate(BaseModel):
    stock_quantity: int = Field(..., ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


# -----------------------------
# Orders / Checkout
# -----------------------------
class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class OrderCreate(BaseModel):
    items: Optional[List[OrderItemIn]] = Field(None, min_length=1, description="Omit to check out the cart")
    address_id: Optional[int] = Field(None, description="Saved address; overrides inline shipping fields")
    shipping_full_name: Optional[str] = Field(None, min_length=2)
    shipping_phone: Optional[str] = Field(None, pattern=GHANA_PHONE)
    shipping_region: Optional[str] = None
    shipping_city: Optional[str] = Field(None, min_length=2)
    shipping_area: Optional[str] = None
    shipping_street_address: Optional[str] = Field(None, min_length=5)
    shipping_gps_address: BlankAsNone = Field(None, pattern=GPS_ADDRESS)
    customer_email: EmailStr
    customer_phone: str = Field(..., pattern=GHANA_PHONE)
    payment_method: PaymentMethod
    momo_phone_number: Optional[str] = None
    delivery_notes: Optional[str] = None


class OrderItemOut(ORMModel):
    id: int
    product_id: Optional[int] = None
    seller_id: Optional[int] = None
    product_name: str
    product_image: Optional[str] = None
    quantity: int
    unit_price_pesewas: int
    total_price_pesewas: int


class PaymentOut(ORMModel):
    id: int
    order_id: int
    method: str
    status: str
    amount_pesewas: int
    gateway_provider: Optional[str] = None
    gateway_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime


class OrderSummary(ORMModel):
    id: int
    order_number: str
    status: str
    total_pesewas: int
    shipping_full_name: str
    customer_email: str
    created_at: datetime


class OrderOut(OrderSummary):
    user_id: int
    subtotal_pesewas: int
    shipping_fee_pesewas: int
    shipping_phone: str
    shipping_region: str
    shipping_city: str
    shipping_area: Optional[str] = None
    shipping_street_address: str
    shipping_gps_address: Optional[str] = None
    customer_phone: str
    notes: Optional[str] = None
    tracking_number: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemOut] = []
    active_payment: Optional[PaymentOut] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


# -----------------------------
# Cart / Wishlist
# -----------------------------
class CartItemIn(BaseModel):
    product_id: int
    quantity: int = Field(1, ge=1, le=99)


class CartQuantity(BaseModel):
    quantity: int = Field(..., ge=1, le=99)


class CartProduct(ORMModel):
    id: int
    name: str
    slug: str
    price_pesewas: int
    stock_quantity: int
    images: List[str] = []
    is_active: bool
    in_stock: bool


class CartItemOut(ORMModel):
    id: int
    product_id: int
    quantity: int
    price_at_add_pesewas: int
    product: CartProduct


class WishlistAdd(BaseModel):
    product_id: int
    note: Optional[str] = Field(None, max_length=200)


class WishlistItemOut(ORMModel):
    id: int
    product_id: int
    note: Optional[str] = None
    created_at: datetime
    product: CartProduct


# -----------------------------
# Reviews
# -----------------------------
class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5, description="Rating must be between 1 and 5")
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    comment: Optional[str] = Field(None, min_length=10, max_length=1000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=3, max_length=100)
    comment: Optional[str] = Field(None, min_length=10, max_length=1000)


class ReviewOut(ORMModel):
    id: int
    product_id: int
    rating: int
    title: Optional[str] = None
    comment: Optional[str] = None
    is_verified_purchase: bool
    created_at: datetime


# -----------------------------
# Payments
# -----------------------------
class PaystackInitRequest(BaseModel):
    order_id: int
    email: EmailStr
    callback_url: Optional[str] = None


class MomoInitRequest(BaseModel):
    order_id: int
    phone_number: str = Field(..., description="MTN Ghana number, e.g. 0244123456")

    @field_validator("phone_number")
    @classmethod
    def mtn_number(cls, v: str) -> str:
        cleaned = re.sub(r"[\s-]", "", v)
        if not re.match(MTN_PHONE, cleaned):
            raise ValueError("Invalid MTN Ghana phone number")
        return cleaned


class WebhookData(BaseModel):
    reference: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[int] = None


class WebhookEvent(BaseModel):
    event: str
    data: WebhookData = Field(default_factory=WebhookData)


# -----------------------------
# Query parameters
# -----------------------------
SortField = Literal["price_pesewas", "created_at", "name"]
ReviewSort = Literal["recent", "rating_high", "rating_low"]
