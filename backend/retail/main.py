"""
Retail Backend with OpenTelemetry Instrumentation
"""

import logging
import time
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from retail import schemas
from retail.config import Settings, get_settings
from retail.database import init_db, make_engine, make_session_factory
from retail.errors import InvalidOperation, NotFound, PreconditionFailed
from retail.services import RetailService
from retail.storage import BlobStorage

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Retail API",
    description="Customers, products and orders over table, blob, file and queue storage",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

tracer = trace.get_tracer(__name__)

# Prometheus metrics
http_requests_total = Counter("http_requests_total", "Total HTTP requests", ["method", "endpoint", "status"])
http_request_duration_seconds = Histogram("http_request_duration_seconds", "HTTP request duration", ["method", "endpoint"])
orders_total = Counter("orders_total", "Order workflow outcomes", ["status"])
revenue_total = Counter("revenue_total", "Total revenue from completed purchases")


# ============================================================================
# DEPENDENCIES
# ============================================================================


@lru_cache
def get_engine() -> Engine:
    return make_engine(get_settings().database_url)


@lru_cache
def get_session_factory() -> sessionmaker:
    return make_session_factory(get_engine())


def get_db():
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def get_service(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)) -> RetailService:
    return RetailService(db, settings)


# ============================================================================
# MIDDLEWARE / ERROR MAPPING
# ============================================================================


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    http_requests_total.labels(method=request.method, endpoint=endpoint, status=str(response.status_code)).inc()
    http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)
    return response


def _error_response(request: Request, status_code: int, exc: Exception) -> JSONResponse:
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error_response(request, 404, exc)


@app.exception_handler(InvalidOperation)
async def invalid_operation_handler(request: Request, exc: InvalidOperation):
    return _error_response(request, 400, exc)


@app.exception_handler(PreconditionFailed)
async def precondition_failed_handler(request: Request, exc: PreconditionFailed):
    return _error_response(request, 412, exc)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    # Form input validated inside a route (multipart endpoints)
    logger.warning("%s %s -> 422: %d validation error(s)", request.method, request.url.path, exc.error_count())
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors(include_url=False))})


def _stream(data, media_type: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "retail-backend"}


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Customers
@app.post("/customers/", response_model=schemas.Customer, status_code=201)
def create_customer(
    first_name: str = Form(...),
    last_name: str = Form(...),
    email: str = Form(...),
    phone: str = Form(...),
    id_image: Optional[UploadFile] = File(default=None),
    service: RetailService = Depends(get_service),
):
    data = schemas.CustomerCreate(first_name=first_name, last_name=last_name, email=email, phone=phone)
    if id_image is not None and id_image.filename:
        return service.add_customer(data, id_image.filename, id_image.file)
    return service.add_customer(data)


@app.get("/customers/", response_model=List[schemas.Customer])
def list_customers(service: RetailService = Depends(get_service)):
    return service.list_customers()


@app.get("/customers/{customer_id}", response_model=schemas.Customer)
def get_customer(customer_id: str, service: RetailService = Depends(get_service)):
    customer = service.get_customer(customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@app.put("/customers/{customer_id}", response_model=schemas.Customer)
def update_customer(
    customer_id: str,
    contact: schemas.CustomerUpdate,
    if_match: Optional[str] = Header(default=None),
    service: RetailService = Depends(get_service),
):
    return service.update_customer(customer_id, contact, if_match=if_match)


@app.delete("/customers/{customer_id}", status_code=204)
def delete_customer(customer_id: str, service: RetailService = Depends(get_service)):
    service.delete_customer(customer_id)
    return Response(status_code=204)


# Products
@app.post("/products/", response_model=schemas.Product, status_code=201)
def create_product(
    product_name: str = Form(...),
    price: float = Form(...),
    stock_quantity: int = Form(...),
    description: str = Form(""),
    category: str = Form(""),
    product_image: Optional[UploadFile] = File(default=None),
    service: RetailService = Depends(get_service),
):
    data = schemas.ProductCreate(
        product_name=product_name,
        description=description,
        price=price,
        stock_quantity=stock_quantity,
        category=category,
    )
    if product_image is not None and product_image.filename:
        return service.add_product(data, product_image.filename, product_image.file)
    return service.add_product(data)


@app.get("/products/", response_model=List[schemas.Product])
def list_products(service: RetailService = Depends(get_service)):
    return service.list_products()


@app.get("/products/{product_id}", response_model=schemas.Product)
def get_product(product_id: str, service: RetailService = Depends(get_service)):
    product = service.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@app.put("/products/{product_id}", response_model=schemas.Product)
def update_product(
    product_id: str,
    product_name: str = Form(...),
    price: float = Form(...),
    stock_quantity: int = Form(...),
    description: str = Form(""),
    category: str = Form(""),
    product_image: Optional[UploadFile] = File(default=None),
    if_match: Optional[str] = Header(default=None),
    service: RetailService = Depends(get_service),
):
    data = schemas.ProductUpdate(
        product_name=product_name,
        description=description,
        price=price,
        stock_quantity=stock_quantity,
        category=category,
    )
    if product_image is not None and product_image.filename:
        return service.update_product(
            product_id, data, product_image.filename, product_image.file, if_match=if_match
        )
    return service.update_product(product_id, data, if_match=if_match)


@app.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: str, service: RetailService = Depends(get_service)):
    service.delete_product(product_id)
    return Response(status_code=204)


@app.get("/blobs/{container}/{blob_name}")
def get_blob(container: str, blob_name: str, settings: Settings = Depends(get_settings)):
    blobs = BlobStorage(settings.blob_root, settings.blob_base_url)
    return FileResponse(blobs.blob_path(container, blob_name), media_type="application/octet-stream")


# Orders
@app.post("/orders/buy", response_model=schemas.Order, status_code=201)
def buy_product(request: schemas.BuyRequest, service: RetailService = Depends(get_service)):
    with tracer.start_as_current_span("buy_product") as span:
        try:
            order = service.buy_product(request.customer_row_key, request.product_row_key)
        except InvalidOperation:
            orders_total.labels(status="rejected").inc()
            raise
        except PreconditionFailed as exc:
            span.record_exception(exc)
            orders_total.labels(status="conflict").inc()
            raise

        orders_total.labels(status="success").inc()
        revenue_total.inc(float(order.total_amount))
        span.add_event("order_created", {"order_id": order.row_key, "total_amount": float(order.total_amount)})
        return order


@app.post("/orders/{order_id}/return", response_model=schemas.Order)
def return_product(order_id: str, service: RetailService = Depends(get_service)):
    order = service.return_product(order_id)
    orders_total.labels(status="returned").inc()
    return order


@app.get("/orders/", response_model=List[schemas.Order])
def list_active_orders(service: RetailService = Depends(get_service)):
    return service.list_active_orders()


@app.get("/orders/all", response_model=List[schemas.Order])
def list_orders(skip: int = 0, limit: int = 100, service: RetailService = Depends(get_service)):
    return service.list_orders(skip=skip, limit=limit)


@app.get("/orders/overdue", response_model=List[schemas.Order])
def list_overdue_orders(
    days: Optional[int] = Query(default=None, ge=0, le=36500), service: RetailService = Depends(get_service)
):
    return service.list_overdue_orders(days)


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(order_id: str, service: RetailService = Depends(get_service)):
    order = service.get_order(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@app.delete("/orders/{order_id}", status_code=204)
def delete_order(order_id: str, service: RetailService = Depends(get_service)):
    service.delete_order(order_id)
    return Response(status_code=204)


# Activities
@app.get("/activities/", response_model=schemas.Activities)
def recent_activities(
    max_messages: int = Query(default=10, ge=1, le=32), service: RetailService = Depends(get_service)
):
    return {"activities": service.recent_activities(max_messages)}


@app.post("/activities/", status_code=202)
def send_activity(activity: schemas.ActivityCreate, service: RetailService = Depends(get_service)):
    result = service.send_activity(activity.message)
    return {"delivered": result.delivered}


# Documents
@app.post("/documents/", status_code=201)
def upload_document(document: UploadFile = File(...), service: RetailService = Depends(get_service)):
    if not document.filename:
        raise HTTPException(status_code=400, detail="Please select a file.")
    return {"name": service.upload_document(document.filename, document.file)}


@app.get("/documents/", response_model=schemas.FileList)
def list_documents(service: RetailService = Depends(get_service)):
    return {"files": service.list_documents()}


@app.get("/documents/{filename}")
def download_document(filename: str, service: RetailService = Depends(get_service)):
    return _stream(service.download_document(filename), "application/octet-stream", filename)


# Contracts
@app.post("/contracts/", status_code=201)
def upload_contract(contract: UploadFile = File(...), service: RetailService = Depends(get_service)):
    return {"name": service.upload_contract(contract.filename or "", contract.file)}


@app.get("/contracts/", response_model=schemas.FileList)
def list_contracts(service: RetailService = Depends(get_service)):
    return {"files": service.list_contracts()}


@app.get("/contracts/{filename}")
def download_contract(filename: str, service: RetailService = Depends(get_service)):
    return _stream(service.download_contract(filename), "application/pdf", filename)


# Dashboard
@app.get("/dashboard", response_model=schemas.DashboardStats)
def dashboard(service: RetailService = Depends(get_service)):
    return service.dashboard_stats()


FastAPIInstrumentor.instrument_app(app)


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    init_db(get_engine())
    logger.info("Retail backend started (tables at %s)", settings.database_url)
    logger.info("OpenTelemetry instrumentation active; Prometheus metrics at /metrics")
