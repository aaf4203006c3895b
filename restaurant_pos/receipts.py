from datetime import datetime
from decimal import Decimal

from restaurant_pos.models import Order

RECEIPT_WIDTH = 40


def _line(left: str, right: str, width: int = RECEIPT_WIDTH) -> str:
    gap = max(width - len(left) - len(right), 1)
    return f"{left}{' ' * gap}{right}"


def _amount(value: Decimal, currency: str) -> str:
    return f"{currency} {Decimal(value):.2f}"


def _product_name(item) -> str:
    return item.product.name if item.product is not None else f"Product #{item.product_id}"


def render_receipt(order: Order, restaurant_name: str, currency: str, printed_at: datetime | None = None) -> str:
    printed_at = printed_at or datetime.now()
    rule = "-" * RECEIPT_WIDTH
    lines = [
        restaurant_name.center(RECEIPT_WIDTH).rstrip(),
        f"Order {order.order_number}".center(RECEIPT_WIDTH).rstrip(),
        f"Table {order.table_number}".center(RECEIPT_WIDTH).rstrip(),
        rule,
    ]
    for item in order.items:
        lines.append(_line(f"{item.quantity} x {_product_name(item)}", _amount(item.subtotal, currency)))
    lines.append(rule)
    lines.append(_line("Subtotal", _amount(order.subtotal, currency)))
    lines.append(_line("Tax", _amount(order.tax, currency)))
    if order.discount:
        lines.append(_line("Discount", f"-{_amount(order.discount, currency)}"))
    lines.append(_line("TOTAL", _amount(order.total, currency)))
    lines.append(rule)
    lines.append(f"Date: {printed_at:%Y-%m-%d %H:%M}".center(RECEIPT_WIDTH).rstrip())
    lines.append("Thank you!".center(RECEIPT_WIDTH).rstrip())
    return "\n".join(lines) + "\n"


def render_kitchen_ticket(order: Order) -> str:
    """Kitchen copy: quantities and names only, no prices."""
    lines = [
        "KITCHEN ORDER",
        f"#{order.order_number}",
        f"Table {order.table_number}",
        "-" * RECEIPT_WIDTH,
    ]
    for item in order.items:
        lines.append(f"{item.quantity:>3} x {_product_name(item)}")
        if item.notes:
            lines.append(f"      ! {item.notes}")
    if order.notes:
        lines.append("-" * RECEIPT_WIDTH)
        lines.append(f"Notes: {order.notes}")
    return "\n".join(lines) + "\n"
