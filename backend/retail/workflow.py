"""
Order Workflow
==============

Purchase and return of a single product unit.

Purchase:
    1. Look up customer and product (rejected if either is missing or the
       product is out of stock)
    2. Write the order (status Completed, price frozen as a fixed-point total)
    3. Write the product with stock_quantity - 1
    4. Queue an activity message

Return:
    1. Look up the order (must be Completed)
    2. Write the order with status Returned
    3. Write the product with stock_quantity + 1, if the product still exists
    4. Queue an activity message

Steps 2 and 3 are separate commits. If step 3 fails, the order from step 2
stays written and the stock is left as it was; the caller gets the storage
error. The product write is conditional on the etag read in step 1, so a
concurrent purchase of the same product surfaces as PreconditionFailed
instead of silently overselling. There is no retry and no compensation.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from opentelemetry import trace
from sqlalchemy.orm import Session

from retail import crud, models
from retail.errors import InvalidOperation
from retail.models import OrderSnapshot, OrderStatus, new_row_key, utcnow
from retail.notifications import ActivityNotifier

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Fixed partition labels, one per table
CUSTOMERS_PARTITION = "customers"
PRODUCTS_PARTITION = "products"
ORDERS_PARTITION = "orders"

CENTS = Decimal("0.01")


def to_amount(price: float) -> Decimal:
    """Convert a stored float price to a two-place decimal amount.

    Goes through str() so 199.99 becomes Decimal("199.99"), not the binary
    expansion of the float.
    """
    return Decimal(str(price)).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_price(amount: Decimal, currency_symbol: str) -> str:
    return f"{currency_symbol}{amount:,.2f}"


class OrderWorkflow:
    def __init__(self, db: Session, notifier: ActivityNotifier, currency_symbol: str = "$"):
        self.db = db
        self.notifier = notifier
        self.currency_symbol = currency_symbol

    def purchase(self, customer_id: str, product_id: str) -> models.Order:
        """
        Sell one unit of a product to a customer.

        Returns:
            The new order (status Completed)

        Raises:
            InvalidOperation: missing customer or product, or no stock left
            PreconditionFailed: the product changed after it was read; the
                order has already been written at that point
        """
        with tracer.start_as_current_span("purchase") as span:
            span.set_attribute("order.customer_id", customer_id or "")
            span.set_attribute("order.product_id", product_id or "")

            with tracer.start_as_current_span("load_customer_and_product"):
                customer = crud.find_entity(self.db, models.Customer, CUSTOMERS_PARTITION, customer_id)
                product = crud.find_entity(self.db, models.Product, PRODUCTS_PARTITION, product_id)

            if customer is None or product is None or product.stock_quantity <= 0:
                span.add_event(
                    "purchase_rejected",
                    {
                        "customer_found": customer is not None,
                        "product_found": product is not None,
                        "in_stock": product is not None and product.stock_quantity > 0,
                    },
                )
                raise InvalidOperation("Invalid product or customer")

            product_etag = product.etag
            total_amount = to_amount(product.price)
            order = models.Order(
                partition_key=ORDERS_PARTITION,
                row_key=new_row_key(),
                customer_row_key=customer.row_key,
                product_row_key=product.row_key,
                order_date=utcnow(),
                total_amount=total_amount,
                status=OrderStatus.COMPLETED.value,
                snapshot=OrderSnapshot(
                    full_name=customer.full_name,
                    product_name=product.product_name,
                    formatted_price=format_price(total_amount, self.currency_symbol),
                ),
            )

            with tracer.start_as_current_span("save_order"):
                crud.add_entity(self.db, order)
                span.set_attribute("order.id", order.row_key)

            with tracer.start_as_current_span("update_inventory"):
                product.stock_quantity -= 1
                crud.update_entity(self.db, product, if_match=product_etag)

            logger.info(
                "order %s: %s bought %s for %s (stock now %d)",
                order.row_key,
                order.snapshot.full_name,
                order.snapshot.product_name,
                order.snapshot.formatted_price,
                product.stock_quantity,
            )
            self.notifier.notify(
                f"Order placed: {order.snapshot.full_name} bought "
                f"'{order.snapshot.product_name}' for {order.snapshot.formatted_price}"
            )
            return order

    def return_order(self, order_id: str) -> models.Order:
        """
        Take back the unit sold by a completed order.

        Returns:
            The order, now Returned

        Raises:
            NotFound: no such order
            InvalidOperation: the order is not Completed (e.g. already returned)
        """
        with tracer.start_as_current_span("return_order") as span:
            span.set_attribute("order.id", order_id or "")
            if not order_id:
                raise InvalidOperation("Order id is required")

            order = crud.get_entity(self.db, models.Order, ORDERS_PARTITION, order_id)
            if order.status != OrderStatus.COMPLETED.value:
                span.add_event("return_rejected", {"order.status": order.status})
                raise InvalidOperation("Order is not active")

            with tracer.start_as_current_span("save_order"):
                order.status = OrderStatus.RETURNED.value
                order.timestamp = utcnow()
                crud.update_entity(self.db, order)

            with tracer.start_as_current_span("update_inventory") as inventory_span:
                product = crud.find_entity(
                    self.db, models.Product, PRODUCTS_PARTITION, order.product_row_key
                )
                if product is None:
                    inventory_span.add_event("product_missing", {"product_id": order.product_row_key})
                    logger.info(
                        "order %s returned; product %s no longer exists, stock not restored",
                        order.row_key,
                        order.product_row_key,
                    )
                else:
                    product.stock_quantity += 1
                    crud.update_entity(self.db, product)

            self.notifier.notify(
                f"Product returned: '{order.snapshot.product_name}' by {order.snapshot.full_name}"
            )
            return order
