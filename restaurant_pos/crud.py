"""Data-access functions for the POS entities.

Every function takes an open ``Session``. Writers only flush; committing is
left to the caller so several calls can share one transaction. Lookups of a
missing row return ``None``. Partial updates receive a mapping holding only
the fields the caller supplied; an empty mapping is a no-op that returns
``None`` without touching storage.
"""

import enum
from decimal import Decimal
from typing import Any, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from restaurant_pos import config
from restaurant_pos.models import (
    Category,
    Customer,
    DiningTable,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    Product,
    Setting,
)

CATEGORY_FIELDS = {"name", "color", "description"}
PRODUCT_FIELDS = {
    "category_id",
    "name",
    "description",
    "price",
    "image",
    "sku",
    "cost_price",
    "stock_quantity",
    "min_stock",
    "preparation_time",
}
TABLE_FIELDS = {"number", "name", "capacity", "section", "status"}
CUSTOMER_FIELDS = {"name", "phone", "email", "address", "birth_date"}

CLOSED_ORDER_STATUSES = (OrderStatus.completed.value, OrderStatus.cancelled.value)


def enum_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    return value


def clean_changes(changes: Mapping[str, Any], fields: set[str]) -> dict:
    return {key: enum_value(value) for key, value in changes.items() if key in fields}


def _apply_changes(db: Session, model, row_id: int, changes: Mapping[str, Any], fields: set[str]):
    updates = clean_changes(changes, fields)
    if not updates:
        return None
    row = db.get(model, row_id)
    if row is None:
        return None
    for key, value in updates.items():
        setattr(row, key, value)
    db.flush()
    return row


def _delete(db: Session, model, row_id: int) -> bool:
    row = db.get(model, row_id)
    if row is None:
        return False
    db.delete(row)
    db.flush()
    return True


# Categories


def list_categories(db: Session) -> list[Category]:
    return list(db.scalars(select(Category).order_by(Category.name)))


def get_category(db: Session, category_id: int) -> Optional[Category]:
    return db.get(Category, category_id)


def create_category(
    db: Session, name: str, color: str = "#2563eb", description: Optional[str] = None
) -> Category:
    category = Category(name=name, color=color, description=description)
    db.add(category)
    db.flush()
    return category


def update_category(db: Session, category_id: int, changes: Mapping[str, Any]) -> Optional[Category]:
    return _apply_changes(db, Category, category_id, changes, CATEGORY_FIELDS)


def delete_category(db: Session, category_id: int) -> bool:
    # products.category_id is cleared by the ON DELETE SET NULL action
    deleted = _delete(db, Category, category_id)
    if deleted:
        db.expire_all()
    return deleted


# Products


def list_products(db: Session, category_id: Optional[int] = None) -> list[Product]:
    query = select(Product).where(Product.active.is_(True))
    if category_id is not None:
        query = query.where(Product.category_id == category_id)
    return list(db.scalars(query.order_by(Product.id)))


def get_product(db: Session, product_id: int) -> Optional[Product]:
    return db.get(Product, product_id)


def create_product(
    db: Session,
    name: str,
    price: Decimal,
    category_id: Optional[int] = None,
    description: Optional[str] = None,
    image: Optional[str] = None,
    sku: Optional[str] = None,
    cost_price: Optional[Decimal] = None,
    stock_quantity: int = 0,
    min_stock: int = 5,
    preparation_time: int = 0,
) -> Product:
    product = Product(
        category_id=category_id,
        name=name,
        description=description,
        price=price,
        image=image,
        sku=sku,
        cost_price=cost_price,
        stock_quantity=stock_quantity,
        min_stock=min_stock,
        preparation_time=preparation_time,
        active=True,
    )
    db.add(product)
    db.flush()
    return product


def update_product(db: Session, product_id: int, changes: Mapping[str, Any]) -> Optional[Product]:
    return _apply_changes(db, Product, product_id, changes, PRODUCT_FIELDS)


def delete_product(db: Session, product_id: int) -> bool:
    product = db.get(Product, product_id)
    if product is None:
        return False
    product.active = False
    db.flush()
    return True


# Orders


def list_active_orders(db: Session) -> list[Order]:
    query = (
        select(Order)
        .where(Order.status.not_in(CLOSED_ORDER_STATUSES))
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    return list(db.scalars(query))


def list_orders(db: Session, limit: int = 50) -> list[Order]:
    query = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit)
    return list(db.scalars(query))


def get_order(db: Session, order_id: int) -> Optional[Order]:
    query = (
        select(Order)
        .where(Order.id == order_id)
        .options(selectinload(Order.items).selectinload(OrderItem.product), selectinload(Order.payments))
    )
    return db.scalars(query).first()


def list_payments(db: Session, order_id: int) -> list[Payment]:
    query = select(Payment).where(Payment.order_id == order_id).order_by(Payment.id)
    return list(db.scalars(query))


# Tables


def list_tables(db: Session) -> list[DiningTable]:
    return list(db.scalars(select(DiningTable).order_by(DiningTable.number)))


def get_table(db: Session, table_id: int) -> Optional[DiningTable]:
    return db.get(DiningTable, table_id)


def get_table_by_number(db: Session, number: int) -> Optional[DiningTable]:
    return db.scalars(select(DiningTable).where(DiningTable.number == number)).first()


def create_table(
    db: Session,
    number: int,
    name: Optional[str] = None,
    capacity: int = 4,
    section: Optional[str] = None,
    status: str = "available",
) -> DiningTable:
    table = DiningTable(
        number=number,
        name=name if name is not None else f"Table {number}",
        capacity=capacity,
        section=section,
        status=enum_value(status),
    )
    db.add(table)
    db.flush()
    return table


def update_table(db: Session, table_id: int, changes: Mapping[str, Any]) -> Optional[DiningTable]:
    return _apply_changes(db, DiningTable, table_id, changes, TABLE_FIELDS)


def update_table_status(db: Session, table_id: int, status: str) -> Optional[DiningTable]:
    return _apply_changes(db, DiningTable, table_id, {"status": status}, TABLE_FIELDS)


def delete_table(db: Session, table_id: int) -> bool:
    return _delete(db, DiningTable, table_id)


# Customers


def list_customers(db: Session) -> list[Customer]:
    return list(db.scalars(select(Customer).order_by(Customer.name)))


def get_customer(db: Session, customer_id: int) -> Optional[Customer]:
    return db.get(Customer, customer_id)


def create_customer(db: Session, name: str, **fields: Any) -> Customer:
    customer = Customer(name=name, **clean_changes(fields, CUSTOMER_FIELDS))
    db.add(customer)
    db.flush()
    return customer


def update_customer(db: Session, customer_id: int, changes: Mapping[str, Any]) -> Optional[Customer]:
    return _apply_changes(db, Customer, customer_id, changes, CUSTOMER_FIELDS)


def delete_customer(db: Session, customer_id: int) -> bool:
    return _delete(db, Customer, customer_id)


# Settings

SETTING_KEYS = (
    "restaurant_name",
    "restaurant_name_ar",
    "currency",
    "language",
    "theme_color",
    "print_receipt",
    "print_kitchen",
)
BOOLEAN_SETTINGS = {"print_receipt", "print_kitchen"}


def _decode_setting(key: str, value: str) -> Any:
    if key in BOOLEAN_SETTINGS:
        return value.lower() in ("1", "true", "yes", "on")
    return value


def _encode_setting(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def get_settings(db: Session) -> dict:
    """Runtime settings: stored values over the configured defaults.

    The tax rate is not a setting; it is fixed by the order engine.
    """
    values = {key: getattr(config.settings, key) for key in SETTING_KEYS}
    for row in db.scalars(select(Setting).where(Setting.key.in_(SETTING_KEYS))):
        values[row.key] = _decode_setting(row.key, row.value)
    return values


def update_settings(db: Session, changes: Mapping[str, Any]) -> Optional[dict]:
    """Store the supplied settings. An explicit ``None`` restores the default."""
    updates = {key: value for key, value in changes.items() if key in SETTING_KEYS}
    if not updates:
        return None
    for key, value in updates.items():
        row = db.get(Setting, key)
        if value is None:
            if row is not None:
                db.delete(row)
        elif row is None:
            db.add(Setting(key=key, value=_encode_setting(value)))
        else:
            row.value = _encode_setting(value)
    db.flush()
    return get_settings(db)


# Statistics


def get_stats(db: Session) -> dict:
    """Point-in-time dashboard figures, recomputed on every call."""
    active_orders = db.scalar(
        select(func.count()).select_from(Order).where(Order.status.not_in(CLOSED_ORDER_STATUSES))
    )
    total_products = db.scalar(select(func.count()).select_from(Product).where(Product.active.is_(True)))
    total_revenue = db.scalar(
        select(func.coalesce(func.sum(Order.total), 0)).where(
            Order.payment_status == PaymentStatus.paid.value
        )
    )
    total_customers = db.scalar(select(func.count()).select_from(Customer))
    return {
        "active_orders": active_orders or 0,
        "total_products": total_products or 0,
        "total_revenue": Decimal(str(total_revenue or 0)).quantize(Decimal("0.01")),
        "total_customers": total_customers or 0,
    }
