"""
Database Schemas for the E‑commerce API

Each Pydantic model corresponds to a collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"

The *Out models describe stored documents as the API returns them: the
repository adds `id`, `created_at` and `updated_at` to every document.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, EmailStr


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class Stored(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Core domain models

class User(BaseModel):
    email: EmailStr
    password: str = Field(..., description="BCrypt hashed password")
    first_name: str
    last_name: str
    role: UserRole = UserRole.USER


class UserOut(Stored):
    email: EmailStr
    first_name: str
    last_name: str
    role: UserRole = UserRole.USER


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    image_url: str
    images: List[str] = Field(default_factory=list)
    category: str
    stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    features: List[str] = Field(default_factory=list)
    is_active: bool = True


class ProductOut(Product, Stored):
    pass


class Category(BaseModel):
    id: str
    name: str
    description: str
    product_count: int


class Review(BaseModel):
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ReviewOut(Review, Stored):
    pass


class CartItem(BaseModel):
    id: str = Field(..., description="Product id")
    quantity: int = Field(1, ge=1)
    name: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    total_price: float = 0


class Address(BaseModel):
    first_name: str
    last_name: str
    address1: str
    address2: Optional[str] = None
    city: str
    state: str
    zip_code: str
    country: str
    phone: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Unit price at order time")


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: Address
    billing_address: Address


class OrderOut(Order, Stored):
    pass


class ProductPage(BaseModel):
    data: List[ProductOut]
    total: int
    page: int
    limit: int
    total_pages: int
