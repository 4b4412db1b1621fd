"""
Database Schemas for the storefront

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, EmailStr
from bson import ObjectId

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered")
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered"]


class User(BaseModel):
    name: Optional[str] = None
    email: EmailStr
    password_hash: str
    is_admin: bool = False
    cart_id: Optional[ObjectId] = None
    orders: List[ObjectId] = []

    model_config = {"arbitrary_types_allowed": True}


class Category(BaseModel):
    name: str
    description: str
    image: Optional[str] = None
    products: List[ObjectId] = []  # mirrors product.category_id

    model_config = {"arbitrary_types_allowed": True}


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    images: List[str] = []
    stock: int = Field(0, ge=0)
    category_id: ObjectId

    model_config = {"arbitrary_types_allowed": True}


class CartItem(BaseModel):
    product_id: ObjectId
    quantity: int = Field(1, ge=1)

    model_config = {"arbitrary_types_allowed": True}


class Cart(BaseModel):
    user_id: ObjectId
    items: List[CartItem] = []

    model_config = {"arbitrary_types_allowed": True}


class OrderItem(BaseModel):
    product_id: ObjectId
    quantity: int = Field(..., ge=1)
    price: float  # unit price when the order was placed

    model_config = {"arbitrary_types_allowed": True}


class Order(BaseModel):
    user_id: ObjectId
    items: List[OrderItem]
    reference_number: str
    total_amount: float
    status: OrderStatus = "Pending"
    shipping_address: Optional[str] = None

    model_config = {"arbitrary_types_allowed": True}
