"""
Retail Service
==============

One facade over the table, blob, file share and queue stores, used by the
HTTP layer. Customers, products, documents and the dashboard are plain
storage calls; buying and returning go through OrderWorkflow.

Every successful write queues a human-readable activity message. Those
messages are best effort (see notifications.py).
"""

import logging
from datetime import timedelta
from decimal import Decimal
from io import BytesIO
from typing import BinaryIO, List, Optional

from sqlalchemy.orm import Session

from retail import crud, models, schemas
from retail.config import Settings
from retail.errors import InvalidOperation, NotFound, PreconditionFailed
from retail.models import OrderStatus, new_row_key, utcnow
from retail.notifications import ActivityNotifier, NotificationResult
from retail.storage import BlobStorage, FileShareStorage
from retail.workflow import (
    CUSTOMERS_PARTITION,
    ORDERS_PARTITION,
    PRODUCTS_PARTITION,
    OrderWorkflow,
)

logger = logging.getLogger(__name__)


class RetailService:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        blobs: Optional[BlobStorage] = None,
        shares: Optional[FileShareStorage] = None,
    ):
        self.db = db
        self.settings = settings
        self.blobs = blobs or BlobStorage(settings.blob_root, settings.blob_base_url)
        self.shares = shares or FileShareStorage(settings.file_share_root)
        self.notifier = ActivityNotifier(db, settings.activity_queue)
        self.workflow = OrderWorkflow(db, self.notifier, settings.currency_symbol)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def add_customer(
        self,
        data: schemas.CustomerCreate,
        id_image_name: Optional[str] = None,
        id_image: Optional[BinaryIO] = None,
    ) -> models.Customer:
        customer = models.Customer(
            partition_key=CUSTOMERS_PARTITION,
            row_key=new_row_key(),
            **data.model_dump(),
        )
        if id_image_name and id_image is not None:
            customer.id_image_url = self.blobs.upload_file(
                self.settings.customer_ids_container, id_image_name, id_image
            )
        crud.add_entity(self.db, customer)
        logger.info("customer %s registered", customer.row_key)
        self.send_activity(f"New customer registered: {customer.full_name}")
        return customer

    def list_customers(self) -> List[models.Customer]:
        return crud.query_entities(
            self.db,
            models.Customer,
            models.Customer.partition_key == CUSTOMERS_PARTITION,
            order_by=models.Customer.last_name,
        )

    def get_customer(self, customer_id: str) -> Optional[models.Customer]:
        return crud.find_entity(self.db, models.Customer, CUSTOMERS_PARTITION, customer_id)

    def update_customer(
        self, customer_id: str, data: schemas.CustomerUpdate, if_match: Optional[str] = None
    ) -> models.Customer:
        customer = crud.get_entity(self.db, models.Customer, CUSTOMERS_PARTITION, customer_id)
        customer.email = data.email
        customer.phone = data.phone
        crud.update_entity(self.db, customer, if_match=if_match)
        self.send_activity(f"Customer updated: {customer.full_name}")
        return customer

    def delete_customer(self, customer_id: str) -> None:
        customer = crud.get_entity(self.db, models.Customer, CUSTOMERS_PARTITION, customer_id)
        full_name, image_url = customer.full_name, customer.id_image_url
        crud.delete_entity(self.db, models.Customer, CUSTOMERS_PARTITION, customer_id)
        self._discard_blob(self.settings.customer_ids_container, image_url)
        self.send_activity(f"Customer deleted: {full_name}")

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def add_product(
        self,
        data: schemas.ProductCreate,
        image_name: Optional[str] = None,
        image: Optional[BinaryIO] = None,
    ) -> models.Product:
        product = models.Product(
            partition_key=PRODUCTS_PARTITION,
            row_key=new_row_key(),
            **data.model_dump(),
        )
        if image_name and image is not None:
            product.product_image_url = self.blobs.upload_file(
                self.settings.product_images_container, image_name, image
            )
        crud.add_entity(self.db, product)
        logger.info("product %s added", product.row_key)
        self.send_activity(f"New product added: '{product.product_name}'")
        return product

    def list_products(self) -> List[models.Product]:
        return crud.query_entities(
            self.db,
            models.Product,
            models.Product.partition_key == PRODUCTS_PARTITION,
            order_by=models.Product.product_name,
        )

    def get_product(self, product_id: str) -> Optional[models.Product]:
        return crud.find_entity(self.db, models.Product, PRODUCTS_PARTITION, product_id)

    def update_product(
        self,
        product_id: str,
        data: schemas.ProductUpdate,
        image_name: Optional[str] = None,
        image: Optional[BinaryIO] = None,
        if_match: Optional[str] = None,
    ) -> models.Product:
        if not product_id:
            raise InvalidOperation("Product ID is required")

        product = crud.get_entity(self.db, models.Product, PRODUCTS_PARTITION, product_id)
        if if_match is not None and if_match != product.etag:
            # Fail before uploading anything
            raise PreconditionFailed(f"product '{product_id}' was modified (etag {if_match} is stale)")

        for field, value in data.model_dump().items():
            setattr(product, field, value)

        replaced_url = None
        if image_name and image is not None:
            replaced_url = product.product_image_url
            product.product_image_url = self.blobs.upload_file(
                self.settings.product_images_container, image_name, image
            )

        crud.update_entity(self.db, product, if_match=if_match)
        self._discard_blob(self.settings.product_images_container, replaced_url)
        self.send_activity(f"Product updated: '{product.product_name}'")
        return product

    def delete_product(self, product_id: str) -> None:
        """Delete the record, then try to delete its image.

        Orders referencing the product stay as they are.
        """
        product = crud.get_entity(self.db, models.Product, PRODUCTS_PARTITION, product_id)
        name, image_url = product.product_name, product.product_image_url
        crud.delete_entity(self.db, models.Product, PRODUCTS_PARTITION, product_id)
        self._discard_blob(self.settings.product_images_container, image_url)
        self.send_activity(f"Product deleted: '{name}'")

    def _discard_blob(self, container: str, url: Optional[str]) -> None:
        if not url:
            return
        try:
            self.blobs.delete_file(container, BlobStorage.name_from_url(url))
        except (NotFound, InvalidOperation, OSError) as exc:
            logger.warning("could not delete blob %s: %s", url, exc)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def buy_product(self, customer_id: str, product_id: str) -> models.Order:
        return self.workflow.purchase(customer_id, product_id)

    def return_product(self, order_id: str) -> models.Order:
        return self.workflow.return_order(order_id)

    def list_orders(self, skip: int = 0, limit: int = 100) -> List[models.Order]:
        return crud.query_entities(
            self.db,
            models.Order,
            models.Order.partition_key == ORDERS_PARTITION,
            order_by=models.Order.order_date.desc(),
            skip=skip,
            limit=limit,
        )

    def list_active_orders(self) -> List[models.Order]:
        return crud.query_entities(
            self.db,
            models.Order,
            models.Order.partition_key == ORDERS_PARTITION,
            models.Order.status == OrderStatus.COMPLETED.value,
            order_by=models.Order.order_date.desc(),
        )

    def list_overdue_orders(self, days: Optional[int] = None) -> List[models.Order]:
        """Completed orders placed more than `days` (default overdue_days) ago."""
        days = self.settings.overdue_days if days is None else days
        cutoff = utcnow() - timedelta(days=days)
        return crud.query_entities(
            self.db,
            models.Order,
            models.Order.partition_key == ORDERS_PARTITION,
            models.Order.status == OrderStatus.COMPLETED.value,
            models.Order.order_date < cutoff,
            order_by=models.Order.order_date,
        )

    def get_order(self, order_id: str) -> Optional[models.Order]:
        return crud.find_entity(self.db, models.Order, ORDERS_PARTITION, order_id)

    def delete_order(self, order_id: str) -> None:
        """Administrative removal. Does not touch product stock."""
        crud.delete_entity(self.db, models.Order, ORDERS_PARTITION, order_id)
        logger.info("order %s deleted", order_id)
        self.send_activity(f"Order deleted: {order_id}")

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    def send_activity(self, message: str) -> NotificationResult:
        return self.notifier.notify(message)

    def recent_activities(self, max_messages: int = 10) -> List[str]:
        return self.notifier.recent_activities(max_messages)

    # ------------------------------------------------------------------
    # Documents and contracts
    # ------------------------------------------------------------------

    def upload_document(self, filename: str, data: BinaryIO) -> str:
        name = self.shares.upload_file(self.settings.documents_share, filename, data)
        self.send_activity(f"Document uploaded: {name}")
        return name

    def list_documents(self) -> List[str]:
        return self.shares.list_files(self.settings.documents_share)

    def download_document(self, filename: str) -> BinaryIO:
        return self.shares.download_file(self.settings.documents_share, filename)

    def upload_contract(self, filename: str, data: BinaryIO) -> str:
        if not filename or not filename.lower().endswith(".pdf"):
            raise InvalidOperation("Please select a valid PDF file.")
        content = data.read()
        if not content:
            raise InvalidOperation("Please select a valid PDF file.")
        name = self.shares.upload_file(self.settings.contracts_share, filename, BytesIO(content))
        self.send_activity(f"Contract uploaded: {name}")
        return name

    def list_contracts(self) -> List[str]:
        return self.shares.list_files(self.settings.contracts_share)

    def download_contract(self, filename: str) -> BinaryIO:
        return self.shares.download_file(self.settings.contracts_share, filename)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard_stats(self) -> schemas.DashboardStats:
        customers = self.list_customers()
        products = self.list_products()
        orders = self.list_active_orders()
        return schemas.DashboardStats(
            total_customers=len(customers),
            total_products=len(products),
            total_orders=len(orders),
            available_products=sum(p.stock_quantity for p in products),
            total_revenue=sum((o.total_amount for o in orders), Decimal("0.00")),
        )
