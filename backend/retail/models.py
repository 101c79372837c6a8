"""
Table Entities
==============

Defines the table store schema using SQLAlchemy ORM.

Tables:
- customers: People who buy products
- products: Items for sale (stock_quantity is the only invariant-bearing field)
- orders: One purchased product per order, with a frozen display snapshot
- queue_messages: Backing table for the activity queue

Every entity is addressed by a two-part key:
- partition_key: fixed category label ("customers", "products", "orders")
- row_key: unique instance id (uuid4 string)

Concurrency:
    etag is an opaque version stamp. SQLAlchemy's version_id_col makes every
    UPDATE conditional on the etag the row was read with
    (UPDATE ... WHERE row_key = ? AND etag = ?) and generates a new etag on
    each write. A lost update shows up as StaleDataError at commit time.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.orm import composite
from sqlalchemy.types import TypeDecorator

from retail.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_row_key() -> str:
    return str(uuid.uuid4())


def new_etag(current_version=None) -> str:
    return uuid.uuid4().hex


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC.

    SQLite drops tzinfo on storage; this normalises both directions so that
    comparisons against utcnow() never mix naive and aware values.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    RETURNED = "Returned"


# ============================================================================
# TABLE ENTITY MIXIN
# ============================================================================


class TableEntity:
    """
    Columns shared by every keyed record.

    Attributes:
        partition_key: Category label, part of the primary key
        row_key: Unique id within the partition, part of the primary key
        timestamp: Last write time (UTC), stamped on insert and update
    """

    partition_key = Column(String(64), primary_key=True)
    row_key = Column(String(64), primary_key=True, default=new_row_key)
    timestamp = Column(UTCDateTime, default=utcnow, onupdate=utcnow)


# ============================================================================
# CUSTOMER
# ============================================================================


class Customer(TableEntity, Base):
    """
    Customers who place orders.

    Attributes:
        first_name / last_name: Identity, fixed once created
        email / phone: Contact fields, editable
        id_image_url: Optional uploaded attachment (blob URL)
    """

    __tablename__ = "customers"

    etag = Column(String(32), nullable=False)

    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(254), nullable=False)
    phone = Column(String(32), nullable=False)
    id_image_url = Column(String(500), nullable=True)

    __mapper_args__ = {"version_id_col": etag, "version_id_generator": new_etag}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


# ============================================================================
# PRODUCT
# ============================================================================


class Product(TableEntity, Base):
    """
    Products available for purchase.

    Attributes:
        product_name: Display name (max 100 chars)
        description: Free text (max 255 chars)
        price: Unit price as stored (floating point)
        stock_quantity: Units on hand, never negative
        category: Free-form grouping label
        product_image_url: Optional uploaded image (blob URL)
    """

    __tablename__ = "products"

    etag = Column(String(32), nullable=False)

    product_name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    price = Column(Float, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    category = Column(String(100), nullable=True)
    product_image_url = Column(String(500), nullable=True)

    __mapper_args__ = {"version_id_col": etag, "version_id_generator": new_etag}


# ============================================================================
# ORDER
# ============================================================================


@dataclass
class OrderSnapshot:
    """Display copies taken from the customer and product at purchase time.

    Never refreshed: later edits to the customer or product leave it as is.
    """

    full_name: str
    product_name: str
    formatted_price: str


class Order(TableEntity, Base):
    """
    A single purchased product.

    Attributes:
        customer_row_key / product_row_key: References by id (no cascade)
        order_date: Purchase time (UTC)
        total_amount: Fixed-point price at purchase time
        status: Pending, Completed or Returned
        snapshot: OrderSnapshot composite over the three display columns
    """

    __tablename__ = "orders"

    etag = Column(String(32), nullable=False)

    customer_row_key = Column(String(64), nullable=False, index=True)
    product_row_key = Column(String(64), nullable=False, index=True)
    order_date = Column(UTCDateTime, nullable=False, default=utcnow)
    total_amount = Column(Numeric(12, 2, asdecimal=True), nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)

    # Denormalized display data
    full_name = Column(String(101), nullable=False, default="")
    product_name = Column(String(100), nullable=False, default="")
    formatted_price = Column(String(32), nullable=False, default="")

    snapshot = composite(OrderSnapshot, full_name, product_name, formatted_price)

    __mapper_args__ = {"version_id_col": etag, "version_id_generator": new_etag}


# ============================================================================
# QUEUE MESSAGE
# ============================================================================


class QueueMessage(Base):
    """
    One message on a named queue. Append-only; peeked oldest first.
    """

    __tablename__ = "queue_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    queue_name = Column(String(63), nullable=False, index=True)
    body = Column(Text, nullable=False)
    inserted_at = Column(UTCDateTime, nullable=False, default=utcnow)
