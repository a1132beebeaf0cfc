"""Pydantic schemas for request/response validation.

Wire format is camelCase; the models accept snake_case too so services can
build responses from plain dicts or ORM objects.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from models import OrderStatus, PaymentStatus, Role

# Decimal amounts go over the wire as JSON numbers
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


# --- Authentication ---

class RegisterRequest(CamelModel):
    """Schema for account registration."""
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None


class LoginRequest(CamelModel):
    """Schema for login request."""
    email: EmailStr
    password: str


class TokenResponse(CamelModel):
    """Schema for login response."""
    token: str
    token_type: str = "bearer"
    user_id: int
    role: Role


class UserResponse(CamelModel):
    """Schema for user response."""
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    role: Role
    created_at: datetime


# --- Catalog ---

class VariantOption(CamelModel):
    """One selectable product dimension, e.g. size or color."""
    type: str
    options: List[str]


class CategoryCreate(CamelModel):
    """Schema for creating a category. Name and slug are checked by the service."""
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class CategoryUpdate(CamelModel):
    """Schema for updating a category."""
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class CategoryResponse(CamelModel):
    """Schema for category response."""
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    product_count: Optional[int] = None
    created_at: Optional[datetime] = None


class CategorySummary(CamelModel):
    id: int
    name: str
    slug: str


class ProductCreate(CamelModel):
    """Schema for creating a product."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    price: Decimal = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    images: List[str] = []
    category_id: int
    featured: bool = False
    variants: Optional[List[VariantOption]] = None


class ProductUpdate(CamelModel):
    """Schema for updating a product."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    category_id: Optional[int] = None
    featured: Optional[bool] = None
    variants: Optional[List[VariantOption]] = None


class ProductResponse(CamelModel):
    """Schema for product response."""
    id: int
    title: str
    description: str
    price: Money
    stock: int
    category_id: int
    category: Optional[CategorySummary] = None
    images: List[str]
    variants: Optional[List[VariantOption]] = None
    featured: bool
    created_at: Optional[datetime] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class ProductListResponse(CamelModel):
    """Schema for a page of products."""
    products: List[ProductResponse]
    pagination: Pagination


# --- Cart and wishlist ---

class CartItemRequest(CamelModel):
    """Schema for adding or updating a cart line."""
    product_id: int
    quantity: int = 1
    variant: Optional[str] = None


class CartLine(CamelModel):
    """A cart line with the price captured when it was added."""
    product_id: int
    title: str
    price: Money
    quantity: int
    image: Optional[str] = None
    variant: Optional[str] = None
    stock: int


class CartResponse(CamelModel):
    """Schema for cart response."""
    items: List[CartLine]
    total_items: int
    total_price: Money


class WishlistRequest(CamelModel):
    product_id: int


class WishlistItem(CamelModel):
    product_id: int
    title: str
    price: Money
    image: Optional[str] = None


class WishlistResponse(CamelModel):
    items: List[WishlistItem]
    total_items: int


# --- Orders ---

class AddressInput(CamelModel):
    """Shipping address captured at checkout."""
    full_name: str = Field(..., min_length=2)
    phone: str = Field(..., min_length=1)
    address_line: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)


class OrderItemInput(CamelModel):
    """One checkout line. ``price`` is what the client saw, if it sends it."""
    product_id: int
    quantity: int = Field(..., gt=0)
    price: Optional[Decimal] = None
    variant: Optional[str] = None


class CreateOrderRequest(CamelModel):
    """Schema for placing an order."""
    items: List[OrderItemInput] = Field(..., min_length=1)
    address: AddressInput
    subtotal: Optional[Decimal] = None
    shipping: Optional[Decimal] = None
    total: Optional[Decimal] = None
    gateway_order_id: Optional[str] = None


class CreateOrderResponse(CamelModel):
    """Schema for order placement response."""
    success: bool = True
    order_id: int
    message: str


class AddressResponse(CamelModel):
    id: int
    full_name: str
    phone: str
    address_line: str
    city: str
    state: str
    pincode: str


class ProductSummary(CamelModel):
    id: int
    title: str
    images: List[str] = []


class OrderItemResponse(CamelModel):
    """Schema for an order line."""
    id: int
    product_id: int
    quantity: int
    price: Money
    variant: Optional[str] = None
    product: Optional[ProductSummary] = None


class OrderResponse(CamelModel):
    """Schema for order response."""
    id: int
    user_id: int
    status: OrderStatus
    subtotal: Money
    shipping: Money
    total: Money
    payment_status: PaymentStatus
    payment_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    created_at: datetime
    address: Optional[AddressResponse] = None
    order_items: List[OrderItemResponse] = []


class OrdersListResponse(CamelModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]


class OrderStatusUpdate(CamelModel):
    """Schema for an admin status change."""
    status: OrderStatus


# --- Payments ---

class PaymentIntentRequest(CamelModel):
    """Schema for creating a gateway payment intent."""
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None


class PaymentIntentResponse(CamelModel):
    """Gateway intent descriptor; ``amount`` is in minor currency units."""
    gateway_order_id: str
    amount: int
    currency: str


class VerifyPaymentRequest(CamelModel):
    """Schema for the payment verification callback."""
    gateway_order_id: str
    payment_id: str
    signature: str
    local_order_id: int


class VerifyPaymentResponse(CamelModel):
    success: bool
    message: str


# --- Admin reporting ---

class RecentOrder(CamelModel):
    id: int
    total: Money
    status: OrderStatus
    created_at: datetime
    customer_name: str
    customer_email: str


class DashboardResponse(CamelModel):
    total_orders: int
    total_revenue: Money
    total_products: int
    total_customers: int
    recent_orders: List[RecentOrder]


class CustomerResponse(CamelModel):
    id: int
    name: str
    email: str
    role: Role
    created_at: datetime
    order_count: int


class CustomersListResponse(CamelModel):
    customers: List[CustomerResponse]
