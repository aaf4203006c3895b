from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager, contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, ClassVar, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from restaurant_pos import crud, orders, receipts
from restaurant_pos.config import settings
from restaurant_pos.db import engine, get_db
from restaurant_pos.models import (
    Category,
    Customer,
    DiningTable,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Product,
    TableStatus,
)
from restaurant_pos.seed import init_db

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    def format(self, record):
        return json.dumps({
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        })


def configure_logging() -> None:
    root_logger = logging.getLogger()
    # Leave a root logger that is already set up (uvicorn --log-config, pytest) alone.
    if root_logger.handlers:
        return
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    if settings.debug:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("Starting %s", settings.restaurant_name)
    init_db(engine)
    yield
    engine.dispose()


app = FastAPI(title="Restaurant POS", lifespan=lifespan)


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def _noop() -> dict:
    return {"data": None, "meta": _meta(warnings=["no_fields_to_update"])}


@contextmanager
def _committing(db: Session, conflict: str):
    try:
        yield
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info("Integrity error: %s", exc.orig)
        raise HTTPException(status_code=409, detail=conflict) from exc


def _money(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _category_data(category: Category) -> dict:
    return {
        "category_id": category.id,
        "name": category.name,
        "color": category.color,
        "description": category.description,
    }


def _product_data(product: Product) -> dict:
    return {
        "product_id": product.id,
        "category_id": product.category_id,
        "name": product.name,
        "description": product.description,
        "price": _money(product.price),
        "cost_price": _money(product.cost_price),
        "image": product.image,
        "sku": product.sku,
        "stock_quantity": product.stock_quantity,
        "min_stock": product.min_stock,
        "preparation_time": product.preparation_time,
        "active": product.active,
    }


def _order_data(order: Order) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "table_number": order.table_number,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_email": order.customer_email,
        "subtotal": _money(order.subtotal),
        "tax": _money(order.tax),
        "discount": _money(order.discount),
        "total": _money(order.total),
        "status": order.status,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "notes": order.notes,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }


def _order_item_data(item: OrderItem) -> dict:
    return {
        "order_item_id": item.id,
        "order_id": item.order_id,
        "product_id": item.product_id,
        "product_name": item.product.name if item.product is not None else None,
        "quantity": item.quantity,
        "price": _money(item.price),
        "cost_price": _money(item.cost_price),
        "subtotal": _money(item.subtotal),
        "profit": _money(item.profit),
        "notes": item.notes,
    }


def _payment_data(payment: Payment) -> dict:
    return {
        "payment_id": payment.id,
        "order_id": payment.order_id,
        "amount": _money(payment.amount),
        "method": payment.method,
        "reference": payment.reference,
        "notes": payment.notes,
    }


def _table_data(table: DiningTable) -> dict:
    return {
        "table_id": table.id,
        "number": table.number,
        "name": table.name,
        "capacity": table.capacity,
        "section": table.section,
        "status": table.status,
    }


def _customer_data(customer: Customer) -> dict:
    return {
        "customer_id": customer.id,
        "name": customer.name,
        "phone": customer.phone,
        "email": customer.email,
        "address": customer.address,
        "birth_date": customer.birth_date.isoformat() if customer.birth_date else None,
        "loyalty_points": customer.loyalty_points,
        "total_orders": customer.total_orders,
        "total_spent": _money(customer.total_spent),
    }


def _order_detail(db: Session, order_id: int) -> dict:
    order = crud.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    data = _order_data(order)
    data["items"] = [_order_item_data(item) for item in order.items]
    data["payments"] = [_payment_data(payment) for payment in order.payments]
    return data


class PartialUpdate(BaseModel):
    """PATCH body: absent fields are left alone, `null` clears a nullable column."""

    not_nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            nulls = sorted(key for key in cls.not_nullable if key in data and data[key] is None)
            if nulls:
                raise ValueError(f"cannot be null: {', '.join(nulls)}")
        return data


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


class CategoryCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Soups", "color": "#f97316", "description": "Hot soups"}}}
    name: str
    color: str = "#2563eb"
    description: Optional[str] = None


class CategoryUpdate(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"name", "color"})
    name: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None


@app.get("/api/v1/categories", tags=["Categories"])
def list_categories(db: Session = Depends(get_db)) -> dict:
    data = [_category_data(category) for category in crud.list_categories(db)]
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/categories/{category_id}", tags=["Categories"])
def get_category(category_id: int, db: Session = Depends(get_db)) -> dict:
    category = crud.get_category(db, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="category not found")
    return {"data": _category_data(category), "meta": _meta()}


@app.post("/api/v1/categories", tags=["Categories"])
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)) -> dict:
    with _committing(db, "category name already exists"):
        category = crud.create_category(db, payload.name, payload.color, payload.description)
    db.refresh(category)
    return {"data": _category_data(category), "meta": _meta()}


@app.patch("/api/v1/categories/{category_id}", tags=["Categories"])
def update_category(category_id: int, payload: CategoryUpdate, db: Session = Depends(get_db)) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _noop()
    with _committing(db, "category name already exists"):
        category = crud.update_category(db, category_id, changes)
        if not category:
            raise HTTPException(status_code=404, detail="category not found")
    db.refresh(category)
    return {"data": _category_data(category), "meta": _meta()}


@app.delete("/api/v1/categories/{category_id}", tags=["Categories"])
def delete_category(category_id: int, db: Session = Depends(get_db)) -> dict:
    if not crud.delete_category(db, category_id):
        raise HTTPException(status_code=404, detail="category not found")
    db.commit()
    return {"data": {"category_id": category_id, "deleted": True}, "meta": _meta()}


class ProductCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "category_id": 2,
                "name": "Grilled Salmon",
                "price": 18.5,
                "cost_price": 7.25,
                "sku": "MAIN-SALMON",
                "stock_quantity": 20,
            }
        }
    }
    category_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    price: Decimal
    image: Optional[str] = None
    sku: Optional[str] = None
    cost_price: Optional[Decimal] = None
    stock_quantity: int = 0
    min_stock: int = 5
    preparation_time: int = 0


class ProductUpdate(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset(
        {"name", "price", "stock_quantity", "min_stock", "preparation_time"}
    )
    category_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    image: Optional[str] = None
    sku: Optional[str] = None
    cost_price: Optional[Decimal] = None
    stock_quantity: Optional[int] = None
    min_stock: Optional[int] = None
    preparation_time: Optional[int] = None


@app.get("/api/v1/products", tags=["Products"])
def list_products(
    category_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    data = [_product_data(product) for product in crud.list_products(db, category_id)]
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/products/{product_id}", tags=["Products"])
def get_product(product_id: int, db: Session = Depends(get_db)) -> dict:
    product = crud.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="product not found")
    return {"data": _product_data(product), "meta": _meta()}


@app.post("/api/v1/products", tags=["Products"])
def create_product(payload: ProductCreate, db: Session = Depends(get_db)) -> dict:
    with _committing(db, "sku already exists or category is invalid"):
        product = crud.create_product(db, **payload.model_dump())
    db.refresh(product)
    return {"data": _product_data(product), "meta": _meta()}


@app.patch("/api/v1/products/{product_id}", tags=["Products"])
def update_product(product_id: int, payload: ProductUpdate, db: Session = Depends(get_db)) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _noop()
    with _committing(db, "sku already exists or category is invalid"):
        product = crud.update_product(db, product_id, changes)
        if not product:
            raise HTTPException(status_code=404, detail="product not found")
    db.refresh(product)
    return {"data": _product_data(product), "meta": _meta()}


@app.delete("/api/v1/products/{product_id}", tags=["Products"])
def delete_product(product_id: int, db: Session = Depends(get_db)) -> dict:
    if not crud.delete_product(db, product_id):
        raise HTTPException(status_code=404, detail="product not found")
    db.commit()
    return {"data": {"product_id": product_id, "active": False}, "meta": _meta()}


class OrderCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"table_number": 3, "customer_name": "Sara"}}}
    table_number: int
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None


class OrderUpdate(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"payment_method", "payment_status"})
    discount: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[PaymentStatus] = None
    notes: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None


class OrderItemCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"product_id": 12, "quantity": 2}}}
    product_id: int
    quantity: int
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class PaymentCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"amount": 22.0, "method": "card", "reference": "AUTH-4471"}}}
    amount: Decimal
    method: PaymentMethod = PaymentMethod.cash
    reference: Optional[str] = None
    notes: Optional[str] = None


class CartLineInput(BaseModel):
    product_id: int
    quantity: int
    notes: Optional[str] = None


class CheckoutCreate(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "table_number": 3,
                "items": [{"product_id": 12, "quantity": 2}, {"product_id": 7, "quantity": 1}],
            }
        }
    }
    table_number: int
    items: list[CartLineInput] = Field(default_factory=list)
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None


@app.get("/api/v1/orders/active", tags=["Orders"])
def list_active_orders(db: Session = Depends(get_db)) -> dict:
    data = [_order_data(order) for order in crud.list_active_orders(db)]
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/orders", tags=["Orders"])
def list_orders(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> dict:
    data = [_order_data(order) for order in crud.list_orders(db, limit)]
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/orders/{order_id}", tags=["Orders"])
def get_order(order_id: int, db: Session = Depends(get_db)) -> dict:
    return {"data": _order_detail(db, order_id), "meta": _meta()}


@app.post("/api/v1/orders", tags=["Orders"])
def create_order(payload: OrderCreate, db: Session = Depends(get_db)) -> dict:
    with _committing(db, "order number collision, retry"):
        order = orders.create_order(db, **payload.model_dump())
    db.refresh(order)
    return {"data": _order_data(order), "meta": _meta()}


@app.post("/api/v1/orders/{order_id}/items", tags=["Orders"])
def add_order_item(order_id: int, payload: OrderItemCreate, db: Session = Depends(get_db)) -> dict:
    item = orders.add_order_item(db, order_id, payload.product_id, payload.quantity, payload.notes)
    if item is None:
        raise HTTPException(status_code=404, detail="order or product not found")
    db.commit()
    return {"data": _order_detail(db, order_id), "meta": _meta()}


@app.post("/api/v1/orders/{order_id}/totals:recalculate", tags=["Orders"])
def recalculate_order_total(order_id: int, db: Session = Depends(get_db)) -> dict:
    order = orders.update_order_total(db, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="order not found")
    db.commit()
    db.refresh(order)
    return {"data": _order_data(order), "meta": _meta()}


@app.put("/api/v1/orders/{order_id}/status", tags=["Orders"])
def update_order_status(order_id: int, payload: OrderStatusUpdate, db: Session = Depends(get_db)) -> dict:
    try:
        order = orders.update_order_status(db, order_id, payload.status)
    except orders.InvalidStatusTransition as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if order is None:
        raise HTTPException(status_code=404, detail="order not found")
    db.commit()
    db.refresh(order)
    return {"data": _order_data(order), "meta": _meta()}


@app.patch("/api/v1/orders/{order_id}", tags=["Orders"])
def update_order(order_id: int, payload: OrderUpdate, db: Session = Depends(get_db)) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _noop()
    with _committing(db, "order update rejected"):
        order = orders.update_order(db, order_id, changes)
        if order is None:
            raise HTTPException(status_code=404, detail="order not found")
    db.refresh(order)
    return {"data": _order_data(order), "meta": _meta()}


@app.get("/api/v1/orders/{order_id}/payments", tags=["Payments"])
def list_order_payments(order_id: int, db: Session = Depends(get_db)) -> dict:
    if not db.get(Order, order_id):
        raise HTTPException(status_code=404, detail="order not found")
    data = [_payment_data(payment) for payment in crud.list_payments(db, order_id)]
    return {"data": data, "meta": _meta()}


@app.post("/api/v1/orders/{order_id}/payments", tags=["Payments"])
def record_payment(order_id: int, payload: PaymentCreate, db: Session = Depends(get_db)) -> dict:
    payment = orders.record_payment(db, order_id, **payload.model_dump())
    if payment is None:
        raise HTTPException(status_code=404, detail="order not found")
    db.commit()
    return {"data": _order_detail(db, order_id), "meta": _meta()}


@app.get("/api/v1/orders/{order_id}/receipt", tags=["Orders"], response_class=PlainTextResponse)
def order_receipt(order_id: int, db: Session = Depends(get_db)) -> str:
    order = crud.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    store = crud.get_settings(db)
    return receipts.render_receipt(order, store["restaurant_name"], store["currency"])


@app.get("/api/v1/orders/{order_id}/kitchen-ticket", tags=["Orders"], response_class=PlainTextResponse)
def order_kitchen_ticket(order_id: int, db: Session = Depends(get_db)) -> str:
    order = crud.get_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    return receipts.render_kitchen_ticket(order)


@app.post("/api/v1/checkout", tags=["Checkout"])
def checkout(payload: CheckoutCreate, db: Session = Depends(get_db)) -> dict:
    lines = [orders.CartLine(line.product_id, line.quantity, line.notes) for line in payload.items]
    try:
        order = orders.checkout(
            db,
            payload.table_number,
            lines,
            customer_name=payload.customer_name,
            customer_phone=payload.customer_phone,
            customer_email=payload.customer_email,
            notes=payload.notes,
        )
    except orders.CheckoutError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": _order_detail(db, order.id), "meta": _meta()}


class TableCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"number": 13, "capacity": 8, "section": "Terrace"}}}
    number: int
    name: Optional[str] = None
    capacity: int = 4
    section: Optional[str] = None
    status: TableStatus = TableStatus.available


class TableUpdate(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"number", "capacity", "status"})
    number: Optional[int] = None
    name: Optional[str] = None
    capacity: Optional[int] = None
    section: Optional[str] = None
    status: Optional[TableStatus] = None


class TableStatusUpdate(BaseModel):
    status: TableStatus


@app.get("/api/v1/tables", tags=["Tables"])
def list_tables(db: Session = Depends(get_db)) -> dict:
    data = [_table_data(table) for table in crud.list_tables(db)]
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/tables/{table_id}", tags=["Tables"])
def get_table(table_id: int, db: Session = Depends(get_db)) -> dict:
    table = crud.get_table(db, table_id)
    if not table:
        raise HTTPException(status_code=404, detail="table not found")
    return {"data": _table_data(table), "meta": _meta()}


@app.post("/api/v1/tables", tags=["Tables"])
def create_table(payload: TableCreate, db: Session = Depends(get_db)) -> dict:
    with _committing(db, "table number already exists"):
        table = crud.create_table(db, **payload.model_dump())
    db.refresh(table)
    return {"data": _table_data(table), "meta": _meta()}


@app.patch("/api/v1/tables/{table_id}", tags=["Tables"])
def update_table(table_id: int, payload: TableUpdate, db: Session = Depends(get_db)) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _noop()
    with _committing(db, "table number already exists"):
        table = crud.update_table(db, table_id, changes)
        if not table:
            raise HTTPException(status_code=404, detail="table not found")
    db.refresh(table)
    return {"data": _table_data(table), "meta": _meta()}


@app.put("/api/v1/tables/{table_id}/status", tags=["Tables"])
def update_table_status(table_id: int, payload: TableStatusUpdate, db: Session = Depends(get_db)) -> dict:
    table = crud.update_table_status(db, table_id, payload.status)
    if not table:
        raise HTTPException(status_code=404, detail="table not found")
    db.commit()
    db.refresh(table)
    return {"data": _table_data(table), "meta": _meta()}


@app.delete("/api/v1/tables/{table_id}", tags=["Tables"])
def delete_table(table_id: int, db: Session = Depends(get_db)) -> dict:
    if not crud.delete_table(db, table_id):
        raise HTTPException(status_code=404, detail="table not found")
    db.commit()
    return {"data": {"table_id": table_id, "deleted": True}, "meta": _meta()}


class CustomerCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"name": "Omar Haddad", "phone": "+15550100"}}}
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    birth_date: Optional[date] = None


class CustomerUpdate(PartialUpdate):
    not_nullable: ClassVar[frozenset[str]] = frozenset({"name"})
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    birth_date: Optional[date] = None


@app.get("/api/v1/customers", tags=["Customers"])
def list_customers(db: Session = Depends(get_db)) -> dict:
    data = [_customer_data(customer) for customer in crud.list_customers(db)]
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/customers/{customer_id}", tags=["Customers"])
def get_customer(customer_id: int, db: Session = Depends(get_db)) -> dict:
    customer = crud.get_customer(db, customer_id)
    if not customer:
        raise HTTPException(status_code=404, detail="customer not found")
    return {"data": _customer_data(customer), "meta": _meta()}


@app.post("/api/v1/customers", tags=["Customers"])
def create_customer(payload: CustomerCreate, db: Session = Depends(get_db)) -> dict:
    fields = payload.model_dump()
    with _committing(db, "phone number already registered"):
        customer = crud.create_customer(db, fields.pop("name"), **fields)
    db.refresh(customer)
    return {"data": _customer_data(customer), "meta": _meta()}


@app.patch("/api/v1/customers/{customer_id}", tags=["Customers"])
def update_customer(customer_id: int, payload: CustomerUpdate, db: Session = Depends(get_db)) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _noop()
    with _committing(db, "phone number already registered"):
        customer = crud.update_customer(db, customer_id, changes)
        if not customer:
            raise HTTPException(status_code=404, detail="customer not found")
    db.refresh(customer)
    return {"data": _customer_data(customer), "meta": _meta()}


@app.delete("/api/v1/customers/{customer_id}", tags=["Customers"])
def delete_customer(customer_id: int, db: Session = Depends(get_db)) -> dict:
    if not crud.delete_customer(db, customer_id):
        raise HTTPException(status_code=404, detail="customer not found")
    db.commit()
    return {"data": {"customer_id": customer_id, "deleted": True}, "meta": _meta()}


@app.get("/api/v1/stats", tags=["Dashboard"])
def get_stats(db: Session = Depends(get_db)) -> dict:
    stats: dict[str, Any] = crud.get_stats(db)
    stats["total_revenue"] = _money(stats["total_revenue"])
    return {"data": stats, "meta": _meta()}


class SettingsUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {"restaurant_name": "Cedar Grill", "currency": "EUR"}}}
    restaurant_name: Optional[str] = None
    restaurant_name_ar: Optional[str] = None
    currency: Optional[str] = None
    language: Optional[str] = None
    theme_color: Optional[str] = None
    print_receipt: Optional[bool] = None
    print_kitchen: Optional[bool] = None


@app.get("/api/v1/settings", tags=["Settings"])
def get_settings(db: Session = Depends(get_db)) -> dict:
    return {"data": crud.get_settings(db), "meta": _meta()}


@app.put("/api/v1/settings", tags=["Settings"])
def update_settings(payload: SettingsUpdate, db: Session = Depends(get_db)) -> dict:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return _noop()
    data = crud.update_settings(db, changes)
    db.commit()
    return {"data": data, "meta": _meta()}
