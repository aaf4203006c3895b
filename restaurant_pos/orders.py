"""Order lifecycle: creation, line items, totals, status and checkout.

Order totals are always derived from the stored line items:

    subtotal = sum(item.subtotal)
    tax      = subtotal * TAX_RATE
    total    = subtotal + tax - discount

Completing or cancelling an order frees the dining table whose ``number``
equals the order's ``table_number``. Nothing else in the engine changes a
table's status; checkout marks the table occupied itself.
"""

import logging
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping, Optional, Union
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from restaurant_pos import crud
from restaurant_pos.config import settings
from restaurant_pos.models import (
    DiningTable,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
    Product,
    TableStatus,
)

logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.10")
CENTS = Decimal("0.01")

ORDER_FIELDS = {
    "discount",
    "payment_method",
    "payment_status",
    "notes",
    "customer_name",
    "customer_phone",
    "customer_email",
}

TABLE_RELEASING_STATUSES = {OrderStatus.completed, OrderStatus.cancelled}

# Only consulted when settings.enforce_status_transitions is on.
ALLOWED_TRANSITIONS = {
    OrderStatus.pending: {
        OrderStatus.preparing,
        OrderStatus.ready,
        OrderStatus.served,
        OrderStatus.completed,
        OrderStatus.cancelled,
    },
    OrderStatus.preparing: {OrderStatus.ready, OrderStatus.served, OrderStatus.completed, OrderStatus.cancelled},
    OrderStatus.ready: {OrderStatus.served, OrderStatus.completed, OrderStatus.cancelled},
    OrderStatus.served: {OrderStatus.completed, OrderStatus.cancelled},
    OrderStatus.completed: set(),
    OrderStatus.cancelled: set(),
}


class OrderError(Exception):
    pass


class InvalidStatusTransition(OrderError):
    def __init__(self, current: OrderStatus, requested: OrderStatus) -> None:
        super().__init__(f"cannot move order from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


class CheckoutError(OrderError):
    pass


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    notes: Optional[str] = None


def money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def generate_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{uuid4().hex[:6].upper()}"


def create_order(
    db: Session,
    table_number: int,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    customer_email: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    order = Order(
        order_number=generate_order_number(),
        table_number=table_number,
        customer_name=customer_name,
        customer_phone=customer_phone,
        customer_email=customer_email,
        notes=notes,
        subtotal=Decimal("0"),
        tax=Decimal("0"),
        discount=Decimal("0"),
        total=Decimal("0"),
        status=OrderStatus.pending.value,
    )
    db.add(order)
    db.flush()
    logger.info("Created order %s for table %s", order.order_number, table_number)
    return order


def add_order_item(
    db: Session,
    order_id: int,
    product_id: int,
    quantity: int,
    notes: Optional[str] = None,
) -> Optional[OrderItem]:
    """Attach a line item priced from the product as it is right now.

    Price and cost are copied onto the item, so later catalogue edits never
    change what an existing order is worth. Returns ``None`` and writes
    nothing when the product or the order does not exist.
    """
    # Lock the order before any other read so concurrent adds queue up here.
    order = db.get(Order, order_id, with_for_update=True)
    if order is None:
        return None
    product = db.get(Product, product_id)
    if product is None:
        logger.debug("Product %s not found; item not added to order %s", product_id, order_id)
        return None

    price = money(product.price)
    cost_price = money(product.cost_price or 0)
    subtotal = money(price * quantity)
    item = OrderItem(
        product_id=product.id,
        quantity=quantity,
        price=price,
        cost_price=cost_price,
        subtotal=subtotal,
        profit=money(subtotal - cost_price * quantity),
        notes=notes,
    )
    order.items.append(item)
    db.flush()
    update_order_total(db, order_id)
    return item


def update_order_total(db: Session, order_id: int) -> Optional[Order]:
    # Re-entrant for callers that already hold the lock; SQLite ignores it.
    order = db.scalars(select(Order).where(Order.id == order_id).with_for_update()).first()
    if order is None:
        return None
    summed = db.scalar(
        select(func.coalesce(func.sum(OrderItem.subtotal), 0)).where(OrderItem.order_id == order_id)
    )
    subtotal = money(summed or 0)
    tax = money(subtotal * TAX_RATE)
    order.subtotal = subtotal
    order.tax = tax
    order.total = subtotal + tax - money(order.discount or 0)
    db.flush()
    _settle(db, order)
    return order


def _settle(db: Session, order: Order) -> None:
    """Keep ``payment_status`` in step with recorded payments and the total.

    An order is ``paid`` only while it has a positive total that its payments
    cover; a later item or discount change can move it back to ``pending``.
    Orders without payments, and refunded orders, are left as they are.
    """
    if order.payment_status == PaymentStatus.refunded.value:
        return
    count, paid = db.execute(
        select(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.order_id == order.id
        )
    ).one()
    if not count:
        return
    paid = money(paid or 0)
    total = money(order.total)
    if total > 0 and paid >= total:
        if order.payment_status != PaymentStatus.paid.value:
            order.payment_status = PaymentStatus.paid.value
            logger.info("Order %s settled (%s paid)", order.order_number, paid)
    elif order.payment_status == PaymentStatus.paid.value:
        order.payment_status = PaymentStatus.pending.value
        logger.info("Order %s reopened: %s paid of %s", order.order_number, paid, total)
    db.flush()


def _release_table(db: Session, table_number: int) -> None:
    table = db.scalars(select(DiningTable).where(DiningTable.number == table_number)).first()
    if table is None:
        logger.warning("No table numbered %s to release", table_number)
        return
    table.status = TableStatus.available.value
    logger.info("Table %s is available again", table_number)


def update_order_status(db: Session, order_id: int, status: Union[OrderStatus, str]) -> Optional[Order]:
    new_status = OrderStatus(status)
    order = db.get(Order, order_id)
    if order is None:
        return None
    current = OrderStatus(order.status)
    if settings.enforce_status_transitions and new_status != current:
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransition(current, new_status)
    order.status = new_status.value
    if new_status in TABLE_RELEASING_STATUSES:
        _release_table(db, order.table_number)
    db.flush()
    logger.info("Order %s: %s -> %s", order.order_number, current.value, new_status.value)
    return order


def update_order(db: Session, order_id: int, changes: Mapping[str, Any]) -> Optional[Order]:
    """Partially update payment, discount, notes and customer details."""
    updates = crud.clean_changes(changes, ORDER_FIELDS)
    if not updates:
        return None
    order = db.get(Order, order_id)
    if order is None:
        return None
    if "discount" in updates:
        updates["discount"] = money(updates["discount"] or 0)
    for key, value in updates.items():
        setattr(order, key, value)
    db.flush()
    if "discount" in updates:
        update_order_total(db, order_id)
    return order


def record_payment(
    db: Session,
    order_id: int,
    amount: Decimal,
    method: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Optional[Payment]:
    order = db.get(Order, order_id, with_for_update=True)
    if order is None:
        return None
    method = crud.enum_value(method)
    payment = Payment(amount=money(amount), method=method, reference=reference, notes=notes)
    order.payments.append(payment)
    order.payment_method = method
    db.flush()
    _settle(db, order)
    return payment


def checkout(
    db: Session,
    table_number: int,
    lines: Iterable[CartLine],
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    customer_email: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    """Place a cart as a new order and seat the table, all or nothing.

    The order, its items and the table status change are committed in one
    transaction. Any failure rolls the whole sequence back and surfaces as
    ``CheckoutError``.
    """
    lines = list(lines)
    try:
        if not lines:
            raise CheckoutError("cart is empty")
        table = crud.get_table_by_number(db, table_number)
        if table is None:
            raise CheckoutError(f"table {table_number} not found")
        order = create_order(
            db,
            table_number,
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            notes=notes,
        )
        for line in lines:
            item = add_order_item(db, order.id, line.product_id, line.quantity, notes=line.notes)
            if item is None:
                raise CheckoutError(f"product {line.product_id} not found")
        table.status = TableStatus.occupied.value
        db.commit()
    except CheckoutError as exc:
        db.rollback()
        logger.warning("Checkout for table %s rolled back: %s", table_number, exc)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Checkout for table %s failed", table_number)
        raise CheckoutError("order could not be saved") from exc
    db.refresh(order)
    return order
