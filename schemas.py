"""
Data schemas for the storefront API

Entity models are what the storage layer keeps, one per collection:
User, Category, Product, CartItem, Order, OrderItem. Request/response bodies
are declared below them. Every model speaks camelCase on the wire
(``productId``, ``totalAmount``) and accepts snake_case as well.
"""
from typing import List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Core domain models

class User(CamelModel):
    id: int
    username: str
    email: str
    password_hash: str
    name: Optional[str] = None
    is_admin: bool = False
    address: Optional[str] = None
    phone: Optional[str] = None


class Category(CamelModel):
    id: int
    name: str
    slug: str


class Product(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    category_id: int
    inventory: int = Field(0, ge=0)
    featured: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CartItem(CamelModel):
    id: int
    user_id: int
    product_id: int
    quantity: int = Field(..., gt=0)


class Order(CamelModel):
    id: int
    user_id: int
    status: str = "pending"
    total_amount: float
    shipping_address: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class OrderItem(CamelModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    # Frozen at purchase time; later product price changes do not touch it.
    price: float


# Request bodies

class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=3)
    email: EmailStr
    password: str = Field(..., min_length=6)
    confirm_password: str
    name: Optional[str] = None

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class LoginRequest(CamelModel):
    username: str
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2)
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    phone: Optional[str] = None


class CategoryIn(CamelModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)


class ProductIn(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    category_id: int
    inventory: int = Field(0, ge=0)
    featured: bool = False


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image_url: Optional[str] = None
    category_id: Optional[int] = None
    inventory: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None


class CartItemIn(CamelModel):
    product_id: int
    quantity: int = Field(1, gt=0)


class CartQuantityIn(CamelModel):
    quantity: int = Field(..., gt=0)


class OrderIn(CamelModel):
    shipping_address: str
    # Accepted for compatibility with clients that send their cart; the
    # server always rebuilds line items from the stored cart.
    items: Optional[List[CartItemIn]] = None

    @field_validator("shipping_address")
    @classmethod
    def address_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Shipping address is required")
        return v


class OrderStatusIn(CamelModel):
    status: str


# Response bodies

class UserOut(CamelModel):
    id: int
    username: str
    email: str
    name: Optional[str] = None
    is_admin: bool = False
    address: Optional[str] = None
    phone: Optional[str] = None


class AuthResponse(CamelModel):
    token: str
    user: UserOut


class CartItemOut(CartItem):
    product: Optional[Product] = None


class OrderItemOut(OrderItem):
    product: Optional[Product] = None


class OrderOut(Order):
    items: List[OrderItemOut] = Field(default_factory=list)
