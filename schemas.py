"""
Database Schemas for the health-goods storefront

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercased class name (e.g., Product -> "product", Order -> "order").
Models without a collection are embedded documents or request bodies.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, field_validator


Category = Literal["Health Supplements", "Medical Supplies", "General Merchandise"]
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]
PaymentStatus = Literal["Pending", "Completed", "Failed", "Refunded"]
PaymentMethod = Literal["Credit Card", "Debit Card", "PayPal"]
ShippingMethod = Literal["Standard", "Express", "Next Day"]


# -----------------------------------------------------------------------------
# Catalog
# -----------------------------------------------------------------------------

class Discount(BaseModel):
    """Time-bounded percentage discount embedded in a product"""
    percentage: float = Field(0, ge=0, le=100, description="Percent off the list price")
    valid_until: Optional[datetime] = Field(None, description="Discount applies up to this instant")


class ProductImage(BaseModel):
    url: str
    alt: str = "Product image"


class Specification(BaseModel):
    name: str
    value: str


class Review(BaseModel):
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., max_length=500)
    created_at: Optional[datetime] = None


class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Product(BaseModel):
    """Health-goods product schema"""
    name: str = Field(..., min_length=1, max_length=100, description="Product name")
    description: str = Field(..., max_length=2000, description="Detailed description")
    price: float = Field(..., ge=0, description="List price")
    category: Category = Field(..., description="Catalog category")
    subcategory: Optional[str] = None
    stock: int = Field(..., ge=0, description="Units in stock")
    images: List[ProductImage] = Field(default_factory=list)
    brand: Optional[str] = None
    specifications: List[Specification] = Field(default_factory=list)
    is_active: bool = Field(True, description="Listed in the storefront")
    discount: Discount = Field(default_factory=Discount)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    subcategory: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[ProductImage]] = None
    brand: Optional[str] = None
    specifications: Optional[List[Specification]] = None
    is_active: Optional[bool] = None
    discount: Optional[Discount] = None

    @field_validator(
        "name", "description", "price", "category", "stock", "images", "specifications", "is_active",
        mode="before",
    )
    @classmethod
    def reject_null(cls, v):
        # omit a field to leave it unchanged; only subcategory, brand and discount may be cleared
        if v is None:
            raise ValueError("field cannot be null")
        return v


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0, description="Absolute units in stock")


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)


# -----------------------------------------------------------------------------
# Orders
# -----------------------------------------------------------------------------

class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderLineIn(BaseModel):
    """A requested line; prices are never taken from the client"""
    product_id: str = Field(..., description="Mongo ObjectId of product as string")
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    lines: List[OrderLineIn] = Field(default_factory=list)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    shipping_method: ShippingMethod


class OrderLine(BaseModel):
    """Embedded in orders.lines; price is the effective unit price at placement"""
    product_id: str
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class PaymentDetails(BaseModel):
    transaction_id: Optional[str] = None
    payment_date: Optional[datetime] = None


class Order(BaseModel):
    """Orders collection schema (collection name: order)"""
    user_id: str = Field(..., description="Reference to the owning user")
    lines: List[OrderLine]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    shipping_method: ShippingMethod
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0, description="subtotal + shipping_cost")
    status: OrderStatus = "Pending"
    payment_status: PaymentStatus = "Pending"
    payment_details: PaymentDetails = Field(default_factory=PaymentDetails)
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StatusUpdate(BaseModel):
    status: OrderStatus


class PaymentUpdate(BaseModel):
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None
