"""
Request / Response Schemas
==========================

Pydantic models for the HTTP layer.

- *Create / *Update: validated input (invalid input -> HTTP 422)
- Customer / Product / Order: responses read straight off the table entities
  (from_attributes=True)
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
# +27 82 123 4567, (555) 123-4567, 555.123.4567
PHONE_PATTERN = r"^\+?[0-9(][0-9 ().-]{5,18}[0-9]$"


class EntityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    partition_key: str
    row_key: str
    timestamp: Optional[datetime] = None
    etag: str


# ============================================================================
# CUSTOMERS
# ============================================================================


class CustomerContact(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    phone: str = Field(pattern=PHONE_PATTERN)


class CustomerCreate(CustomerContact):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)


class CustomerUpdate(CustomerContact):
    """Only contact fields change; names are fixed once created."""


class Customer(EntityOut):
    first_name: str
    last_name: str
    full_name: str
    email: str
    phone: str
    id_image_url: Optional[str] = None


# ============================================================================
# PRODUCTS
# ============================================================================


class ProductCreate(BaseModel):
    product_name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=255)
    price: float = Field(ge=0, lt=10**10, allow_inf_nan=False)
    stock_quantity: int = Field(ge=0)
    category: str = Field(default="", max_length=100)


class ProductUpdate(ProductCreate):
    pass


class Product(EntityOut):
    product_name: str
    description: Optional[str] = None
    price: float
    stock_quantity: int
    category: Optional[str] = None
    product_image_url: Optional[str] = None


# ============================================================================
# ORDERS
# ============================================================================


class BuyRequest(BaseModel):
    customer_row_key: str = Field(min_length=1)
    product_row_key: str = Field(min_length=1)


class OrderSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    full_name: str
    product_name: str
    formatted_price: str


class Order(EntityOut):
    customer_row_key: str
    product_row_key: str
    order_date: datetime
    total_amount: Decimal
    status: str
    snapshot: OrderSnapshot


# ============================================================================
# ACTIVITIES / DOCUMENTS / DASHBOARD
# ============================================================================


class ActivityCreate(BaseModel):
    message: str = Field(min_length=1, max_length=1000)


class Activities(BaseModel):
    activities: List[str]


class FileList(BaseModel):
    files: List[str]


class DashboardStats(BaseModel):
    total_customers: int
    total_products: int
    total_orders: int
    available_products: int
    total_revenue: Decimal
