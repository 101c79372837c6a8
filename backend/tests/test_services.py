from datetime import timedelta
from decimal import Decimal
from io import BytesIO

import pytest

from retail import crud, schemas
from retail.errors import InvalidOperation, NotFound, PreconditionFailed
from retail.storage import BlobStorage
from retail.workflow import CUSTOMERS_PARTITION, ORDERS_PARTITION, PRODUCTS_PARTITION


def image_path(settings, container, url):
    return settings.blob_root / container / BlobStorage.name_from_url(url)


# ----------------------------------------------------------------------------
# Customers
# ----------------------------------------------------------------------------


def test_add_customer(service, customer, settings):
    assert customer.partition_key == CUSTOMERS_PARTITION
    assert customer.full_name == "Ada Lovelace"
    assert service.get_customer(customer.row_key).email == "ada@example.com"
    assert "New customer registered: Ada Lovelace" in service.recent_activities()[0]


def test_add_customer_with_id_image(service, settings):
    customer = service.add_customer(
        schemas.CustomerCreate(first_name="Alan", last_name="Turing", email="alan@example.com", phone="555-123-4567"),
        "id.jpg",
        BytesIO(b"jpeg"),
    )

    assert customer.id_image_url.startswith("/blobs/customerids/")
    path = image_path(settings, "customerids", customer.id_image_url)
    assert path.read_bytes() == b"jpeg"
    customer_id = customer.row_key

    service.delete_customer(customer_id)
    assert not path.exists()
    assert service.get_customer(customer_id) is None


def test_update_customer_contact(service, customer):
    etag = customer.etag

    updated = service.update_customer(
        customer.row_key, schemas.CustomerUpdate(email="ada@lovelace.org", phone="+441234567890"), if_match=etag
    )

    assert updated.email == "ada@lovelace.org"
    assert updated.first_name == "Ada"
    with pytest.raises(PreconditionFailed):
        service.update_customer(
            customer.row_key, schemas.CustomerUpdate(email="x@example.com", phone="+441234567890"), if_match=etag
        )


def test_list_customers(service, customer):
    assert [c.row_key for c in service.list_customers()] == [customer.row_key]


# ----------------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------------


def test_add_product_with_image(service, settings):
    product = service.add_product(
        schemas.ProductCreate(product_name="Toaster", price=349.5, stock_quantity=4, category="Kitchen"),
        "toaster.png",
        BytesIO(b"png"),
    )

    assert product.partition_key == PRODUCTS_PARTITION
    assert image_path(settings, "productimages", product.product_image_url).read_bytes() == b"png"
    assert service.get_product(product.row_key).category == "Kitchen"


def test_update_product_replaces_fields_and_image(service, settings):
    product = service.add_product(
        schemas.ProductCreate(product_name="Toaster", price=349.5, stock_quantity=4), "old.png", BytesIO(b"old")
    )
    old_url = product.product_image_url

    updated = service.update_product(
        product.row_key,
        schemas.ProductUpdate(product_name="Toaster XL", price=399.0, stock_quantity=6),
        "new.png",
        BytesIO(b"new"),
        if_match=product.etag,
    )

    assert updated.product_name == "Toaster XL"
    assert updated.stock_quantity == 6
    assert image_path(settings, "productimages", updated.product_image_url).read_bytes() == b"new"
    assert not image_path(settings, "productimages", old_url).exists()


def test_update_product_with_stale_etag(service, product):
    with pytest.raises(PreconditionFailed):
        service.update_product(
            product.row_key,
            schemas.ProductUpdate(product_name="Kettle", price=1.0, stock_quantity=1),
            if_match="stale",
        )
    assert service.get_product(product.row_key).price == 200.0


def test_update_missing_product(service):
    with pytest.raises(NotFound):
        service.update_product("nope", schemas.ProductUpdate(product_name="X", price=1.0, stock_quantity=1))
    with pytest.raises(InvalidOperation):
        service.update_product("", schemas.ProductUpdate(product_name="X", price=1.0, stock_quantity=1))


def test_delete_product_removes_image(service, settings):
    product = service.add_product(
        schemas.ProductCreate(product_name="Toaster", price=349.5, stock_quantity=4), "t.png", BytesIO(b"png")
    )
    path = image_path(settings, "productimages", product.product_image_url)
    product_id = product.row_key

    service.delete_product(product_id)

    assert not path.exists()
    assert service.get_product(product_id) is None


def test_delete_product_when_image_already_gone(service, settings):
    product = service.add_product(
        schemas.ProductCreate(product_name="Toaster", price=349.5, stock_quantity=4), "t.png", BytesIO(b"png")
    )
    image_path(settings, "productimages", product.product_image_url).unlink()
    product_id = product.row_key

    service.delete_product(product_id)

    assert service.get_product(product_id) is None
    assert "Product deleted: 'Toaster'" in service.recent_activities(32)[-1]


def test_delete_missing_product(service):
    with pytest.raises(NotFound):
        service.delete_product("nope")


# ----------------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------------


def test_active_orders_exclude_returned(service, customer, product):
    kept = service.buy_product(customer.row_key, product.row_key)
    returned = service.buy_product(customer.row_key, product.row_key)
    service.return_product(returned.row_key)

    assert [o.row_key for o in service.list_active_orders()] == [kept.row_key]
    assert {o.row_key for o in service.list_orders()} == {kept.row_key, returned.row_key}
    assert service.get_order(returned.row_key).status == "Returned"
    assert service.get_order("nope") is None


def test_overdue_orders(service, db, customer, product):
    old = service.buy_product(customer.row_key, product.row_key)
    recent = service.buy_product(customer.row_key, product.row_key)
    old.order_date = old.order_date - timedelta(days=31)
    crud.update_entity(db, old)

    assert [o.row_key for o in service.list_overdue_orders()] == [old.row_key]
    assert {o.row_key for o in service.list_overdue_orders(days=0)} == {old.row_key, recent.row_key}


def test_delete_order_leaves_stock(service, customer, product):
    order_id = service.buy_product(customer.row_key, product.row_key).row_key

    service.delete_order(order_id)

    assert service.get_order(order_id) is None
    assert service.get_product(product.row_key).stock_quantity == 2
    with pytest.raises(NotFound):
        service.delete_order(order_id)


# ----------------------------------------------------------------------------
# Documents, contracts, dashboard
# ----------------------------------------------------------------------------


def test_documents(service):
    assert service.upload_document("returns-policy.pdf", BytesIO(b"policy")) == "returns-policy.pdf"

    assert service.list_documents() == ["returns-policy.pdf"]
    assert service.download_document("returns-policy.pdf").read() == b"policy"
    assert "Document uploaded: returns-policy.pdf" in service.recent_activities(32)[-1]


def test_contracts_accept_only_non_empty_pdf(service):
    with pytest.raises(InvalidOperation):
        service.upload_contract("contract.docx", BytesIO(b"doc"))
    with pytest.raises(InvalidOperation):
        service.upload_contract("contract.pdf", BytesIO(b""))

    service.upload_contract("supplier.PDF", BytesIO(b"%PDF-1.7"))

    assert service.list_contracts() == ["supplier.PDF"]
    assert service.download_contract("supplier.PDF").read() == b"%PDF-1.7"
    with pytest.raises(NotFound):
        service.download_contract("missing.pdf")


def test_dashboard_stats(service, customer, make_product):
    kettle = make_product(name="Kettle", price=200.0, stock=3)
    mug = make_product(name="Mug", price=19.99, stock=10)
    service.buy_product(customer.row_key, kettle.row_key)
    service.buy_product(customer.row_key, mug.row_key)
    returned = service.buy_product(customer.row_key, mug.row_key)
    service.return_product(returned.row_key)

    stats = service.dashboard_stats()

    assert stats.total_customers == 1
    assert stats.total_products == 2
    assert stats.total_orders == 2
    assert stats.available_products == 2 + 9
    assert stats.total_revenue == Decimal("219.99")


def test_orders_reference_records_by_id(service, customer, product):
    order_id = service.buy_product(customer.row_key, product.row_key).row_key
    service.delete_customer(customer.row_key)

    stored = service.get_order(order_id)
    assert stored.partition_key == ORDERS_PARTITION
    assert stored.snapshot.full_name == "Ada Lovelace"
